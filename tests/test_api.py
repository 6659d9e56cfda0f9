from datetime import date

import pytest

from app.models import MedicineSheet

API = "/api"


@pytest.fixture()
def stocked(factory):
    patient = factory.patient()
    rx = factory.prescription(patient)
    med = factory.medicine(name="Metformin", tablets_per_sheet=10)
    sheet = factory.sheet(med, consumed_tablets=9, in_use=True)
    spare = factory.sheet(med, expiry_date=date(2025, 6, 1))
    rule = factory.rule(rx, med, id=5, morning_count=2)
    return patient, rx, med, sheet, spare, rule


def test_health(client):
    res = client.get("/")
    assert res.status_code == 200


def test_instructions_envelope(client, stocked):
    patient, rx, med, sheet, spare, rule = stocked

    res = client.get(f"{API}/patients/{patient.id}/medicine-instructions", params={"date": "2024-02-01"})

    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    data = body["data"]
    assert data["date"] == "2024-02-01"
    assert data["has_instructions"] is True
    [item] = data["instructions"]
    assert item["rule_id"] == 5
    assert item["slot"] == "morning"
    assert item["tablet_count"] == 2
    assert item["status"] == "pending"
    assert item["stock_status"] == "available"
    assert item["sheet_id"] == sheet.id


def test_instructions_default_to_today(client, stocked):
    patient = stocked[0]
    res = client.get(f"{API}/patients/{patient.id}/medicine-instructions")
    assert res.json()["data"]["date"] == "2024-02-01"


def test_instructions_unknown_patient(client):
    res = client.get(f"{API}/patients/999/medicine-instructions")
    assert res.status_code == 404
    body = res.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "NOT_FOUND"


def test_execute_is_idempotent(client, db, stocked):
    patient, rx, med, sheet, spare, rule = stocked
    payload = {"rule_id": 5, "slot": "morning", "date": "2024-02-01"}

    first = client.post(f"{API}/executions", json=payload)
    second = client.post(f"{API}/executions", json=payload)

    assert first.status_code == 201
    assert first.json()["data"]["status"] == "ok"
    assert first.json()["data"]["already_executed"] is False
    assert first.json()["data"]["draws"] == [
        {"sheet_id": sheet.id, "qty": 1},
        {"sheet_id": spare.id, "qty": 1},
    ]
    assert second.status_code == 200
    assert second.json()["data"]["already_executed"] is True

    db.expire_all()
    assert db.get(MedicineSheet, sheet.id).consumed_tablets == 10
    assert db.get(MedicineSheet, spare.id).consumed_tablets == 1

    listed = client.get(f"{API}/patients/{patient.id}/medicine-instructions").json()["data"]
    assert listed["instructions"][0]["status"] == "executed"
    assert listed["instructions"][0]["sheet_id"] == spare.id


def test_execute_stock_error(client, factory):
    rx = factory.prescription(factory.patient())
    rule = factory.rule(rx, factory.medicine())

    res = client.post(f"{API}/executions", json={"rule_id": rule.id, "slot": "morning", "date": "2024-02-01"})

    assert res.status_code == 409
    assert res.json()["error"]["code"] == "NO_STOCK"


def test_execute_bad_slot_is_validation_error(client, stocked):
    res = client.post(f"{API}/executions", json={"rule_id": 5, "slot": "night", "date": "2024-02-01"})
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unmark_and_history(client, db, stocked):
    patient, rx, med, sheet, spare, rule = stocked
    client.post(f"{API}/executions", json={"rule_id": 5, "slot": "morning", "date": "2024-02-01"})

    history = client.get(f"{API}/prescription-medicines/5/executions").json()["data"]
    assert [h["dose_date"] for h in history] == ["2024-02-01"]

    res = client.delete(f"{API}/executions/5/morning/2024-02-01")
    assert res.status_code == 200
    assert res.json()["data"]["tablet_count"] == 2

    db.expire_all()
    assert db.get(MedicineSheet, sheet.id).consumed_tablets == 9
    assert db.get(MedicineSheet, spare.id).consumed_tablets == 0

    again = client.delete(f"{API}/executions/5/morning/2024-02-01")
    assert again.status_code == 404


def test_rule_lifecycle(client, factory):
    rx = factory.prescription(factory.patient())
    med = factory.medicine(name="Atorvastatin")

    created = client.post(
        f"{API}/prescriptions/{rx.id}/medicines",
        json={"medicine_id": med.id, "evening_count": 1, "recurrence_type": "daily"},
    )
    assert created.status_code == 201
    rule = created.json()["data"]
    assert rule["anchor_date"] == "2024-02-01"
    assert rule["medicine_name"] == "Atorvastatin"

    dup = client.post(
        f"{API}/prescriptions/{rx.id}/medicines",
        json={"medicine_id": med.id, "evening_count": 1, "recurrence_type": "daily"},
    )
    assert dup.status_code == 409
    assert dup.json()["error"]["code"] == "DUPLICATE_RULE"

    edited = client.put(
        f"{API}/prescriptions/{rx.id}/medicines/{rule['id']}",
        json={"morning_count": 1, "recurrence_type": "interval", "recurrence_interval": 2},
    )
    assert edited.status_code == 200
    new_id = edited.json()["data"]["id"]
    assert new_id != rule["id"]

    listed = client.get(f"{API}/prescriptions/{rx.id}/medicines").json()["data"]
    assert [r["id"] for r in listed] == [new_id]

    removed = client.delete(f"{API}/prescriptions/{rx.id}/medicines/{new_id}")
    assert removed.json()["data"] == {"id": new_id, "is_active": False}
    assert client.get(f"{API}/prescriptions/{rx.id}/medicines").json()["data"] == []


def test_invalid_rule_is_400(client, factory):
    rx = factory.prescription(factory.patient())
    med = factory.medicine()

    res = client.post(
        f"{API}/prescriptions/{rx.id}/medicines",
        json={"medicine_id": med.id, "morning_count": 1, "recurrence_type": "weekly"},
    )

    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_RULE"
    assert "Day of week" in res.json()["error"]["msg"]


def test_sheet_endpoints(client, factory):
    med = factory.medicine(tablets_per_sheet=14)

    created = client.post(f"{API}/sheets", json={"medicine_id": med.id, "expiry_date": "2024-12-31"})
    assert created.status_code == 201
    sheet = created.json()["data"]
    assert sheet["remaining_tablets"] == 14
    assert sheet["is_in_use"] is False

    patched = client.patch(f"{API}/sheets/{sheet['id']}", json={"consumed_tablets": 3, "is_in_use": True})
    assert patched.status_code == 200
    assert patched.json()["data"]["remaining_tablets"] == 11
    assert patched.json()["data"]["is_in_use"] is True

    bad = client.patch(f"{API}/sheets/{sheet['id']}", json={"consumed_tablets": 15})
    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "INVALID_SHEET_UPDATE"

    inventory = client.get(f"{API}/medicines/{med.id}/inventory").json()["data"]
    assert inventory["active_sheet_id"] == sheet["id"]
    assert inventory["available_tablets"] == 11

    deleted = client.delete(f"{API}/sheets/{sheet['id']}")
    assert deleted.json()["data"] == {"id": sheet["id"], "deleted": True}
    assert client.get(f"{API}/medicines/{med.id}/inventory").json()["data"]["total_sheets"] == 0
