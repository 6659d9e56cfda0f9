from datetime import date

import pytest

from app.models import Medicine, MedicineSheet, SheetTransaction
from app.services.errors import InvalidSheetUpdate, NotFound
from app.services.inventory import TXN_ADJUSTMENT, consume
from app.services.medicine_sheets import add_sheet, delete_sheet, medicine_inventory, update_sheet

TODAY = date(2024, 2, 1)


def test_new_sheet_is_unopened(db, factory):
    med = factory.medicine()

    sheet = add_sheet(db, medicine_id=med.id, expiry_date=date(2024, 12, 31))

    assert sheet.consumed_tablets == 0
    assert sheet.remaining_tablets == 10
    assert sheet.is_in_use is False

    with pytest.raises(NotFound):
        add_sheet(db, medicine_id=12345, expiry_date=date(2024, 12, 31))


def test_override_consumed_logs_adjustment(db, factory):
    med = factory.medicine()
    sheet = factory.sheet(med, consumed_tablets=2)

    update_sheet(db, sheet.id, today=TODAY, consumed_tablets=6)

    assert sheet.consumed_tablets == 6
    txn = db.query(SheetTransaction).one()
    assert txn.txn_type == TXN_ADJUSTMENT
    assert txn.quantity_change == 4


@pytest.mark.parametrize("value", [-1, 11])
def test_override_out_of_range_rejected(db, factory, value):
    med = factory.medicine(tablets_per_sheet=10)
    sheet = factory.sheet(med, consumed_tablets=3)

    with pytest.raises(InvalidSheetUpdate):
        update_sheet(db, sheet.id, today=TODAY, consumed_tablets=value)

    db.expire_all()
    assert db.get(MedicineSheet, sheet.id).consumed_tablets == 3
    assert db.query(SheetTransaction).count() == 0


def test_putting_in_use_moves_the_flag(db, factory):
    med = factory.medicine()
    first = factory.sheet(med, in_use=True)
    second = factory.sheet(med, expiry_date=date(2025, 6, 1))

    update_sheet(db, second.id, today=TODAY, is_in_use=True)

    db.expire_all()
    assert second.is_in_use is True
    assert first.is_in_use is False
    assert sum(1 for s in db.get(Medicine, med.id).sheets if s.is_in_use) == 1


def test_clearing_in_use(db, factory):
    med = factory.medicine()
    sheet = factory.sheet(med, in_use=True)

    update_sheet(db, sheet.id, today=TODAY, is_in_use=False)

    db.expire_all()
    assert db.get(Medicine, med.id).active_sheet_id is None


def test_cannot_open_exhausted_or_expired_sheet(db, factory):
    med = factory.medicine()
    empty = factory.sheet(med, consumed_tablets=10)
    stale = factory.sheet(med, expiry_date=date(2024, 1, 31))

    with pytest.raises(InvalidSheetUpdate, match="exhausted"):
        update_sheet(db, empty.id, today=TODAY, is_in_use=True)
    with pytest.raises(InvalidSheetUpdate, match="expired"):
        update_sheet(db, stale.id, today=TODAY, is_in_use=True)

    db.expire_all()
    assert db.get(Medicine, med.id).active_sheet_id is None


def test_filling_open_sheet_closes_it(db, factory):
    med = factory.medicine()
    sheet = factory.sheet(med, consumed_tablets=5, in_use=True)

    update_sheet(db, sheet.id, today=TODAY, consumed_tablets=10)

    db.expire_all()
    assert db.get(Medicine, med.id).active_sheet_id is None


def test_unknown_sheet(db):
    with pytest.raises(NotFound):
        update_sheet(db, 77, today=TODAY, consumed_tablets=1)
    with pytest.raises(NotFound):
        delete_sheet(db, 77)


def test_delete_unused_sheet(db, factory):
    med = factory.medicine()
    sheet = factory.sheet(med, in_use=True)
    sheet_id = sheet.id

    delete_sheet(db, sheet_id)

    db.expire_all()
    assert db.get(MedicineSheet, sheet_id) is None
    assert db.get(Medicine, med.id).active_sheet_id is None


def test_sheet_with_dose_history_cannot_be_deleted(db, factory):
    med = factory.medicine()
    sheet = factory.sheet(med)
    consume(db, med.id, 1, TODAY, ref_type="EXECUTION", ref_id=1)
    db.commit()

    with pytest.raises(InvalidSheetUpdate):
        delete_sheet(db, sheet.id)
    assert db.get(MedicineSheet, sheet.id) is not None


def test_inventory_summary(db, factory):
    med = factory.medicine(tablets_per_sheet=10)
    open_sheet = factory.sheet(med, expiry_date=date(2024, 6, 1), consumed_tablets=4, in_use=True)
    factory.sheet(med, expiry_date=date(2024, 9, 1))
    factory.sheet(med, expiry_date=date(2024, 1, 15), consumed_tablets=2)

    summary = medicine_inventory(db, med.id, today=TODAY)

    assert summary["active_sheet_id"] == open_sheet.id
    assert summary["total_sheets"] == 3
    assert summary["sheets_in_use"] == 1
    assert summary["available_tablets"] == 6 + 10 + 8
    assert summary["usable_tablets"] == 6 + 10
    assert summary["expired_sheets"] == 1
    assert [s.expiry_date for s in summary["sheets"]] == [
        date(2024, 1, 15), date(2024, 6, 1), date(2024, 9, 1),
    ]

    with pytest.raises(NotFound):
        medicine_inventory(db, 999, today=TODAY)


def test_override_reads_current_row(db, factory, session_factory):
    med = factory.medicine()
    sheet = factory.sheet(med, consumed_tablets=2)
    assert sheet.consumed_tablets == 2  # loaded into this session

    other = session_factory()
    other.get(MedicineSheet, sheet.id).consumed_tablets = 5
    other.commit()
    other.close()

    update_sheet(db, sheet.id, today=TODAY, consumed_tablets=6)

    txn = db.query(SheetTransaction).one()
    assert txn.quantity_change == 1
    assert sheet.consumed_tablets == 6
