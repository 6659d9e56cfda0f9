# FILE: app/api/routes_prescription_medicines.py
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_today
from app.api.response import ok
from app.schemas.prescription import (
    PrescriptionMedicineCreate,
    PrescriptionMedicineOut,
    PrescriptionMedicineUpdate,
)
from app.services.prescription_medicines import (
    create_rule,
    deactivate_rule,
    list_rules,
    update_rule,
)

router = APIRouter(prefix="/prescriptions", tags=["Prescription Medicines"])


@router.get("/{prescription_id}/medicines")
def list_prescription_medicines(
    prescription_id: int,
    db: Session = Depends(get_db),
):
    rules = list_rules(db, prescription_id)
    return ok([PrescriptionMedicineOut.from_rule(r).model_dump() for r in rules])


@router.post("/{prescription_id}/medicines")
def add_prescription_medicine(
    prescription_id: int,
    payload: PrescriptionMedicineCreate,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """Add a medicine with its dosing rule; recurrence counts from today."""
    data = payload.model_dump()
    medicine_id = data.pop("medicine_id")
    rule = create_rule(db, prescription_id, medicine_id=medicine_id, data=data, today=today)
    return ok(PrescriptionMedicineOut.from_rule(rule).model_dump(), status_code=status.HTTP_201_CREATED)


@router.put("/{prescription_id}/medicines/{rule_id}")
def edit_prescription_medicine(
    prescription_id: int,
    rule_id: int,
    payload: PrescriptionMedicineUpdate,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """
    Change dosage / recurrence. Returns the replacement rule; the old one
    is kept inactive with its execution history.
    """
    rule = update_rule(db, prescription_id, rule_id, data=payload.model_dump(), today=today)
    return ok(PrescriptionMedicineOut.from_rule(rule).model_dump())


@router.delete("/{prescription_id}/medicines/{rule_id}")
def remove_prescription_medicine(
    prescription_id: int,
    rule_id: int,
    db: Session = Depends(get_db),
):
    deactivate_rule(db, prescription_id, rule_id)
    return ok({"id": rule_id, "is_active": False})
