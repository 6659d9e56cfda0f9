# FILE: app/services/medicine_instructions.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from app.models.medicine import Medicine
from app.models.prescription import (
    Patient,
    Prescription,
    PrescriptionMedicine,
    PrescriptionType,
    MedicineExecution,
    SLOT_ORDER,
)
from app.services.errors import NotFound
from app.services.inventory import SheetAvailability, available_sheet
from app.services.prescription_medicines import supersede_heads
from app.services.recurrence import is_due, refill_tablets, slot_counts

STATUS_PENDING = "pending"
STATUS_EXECUTED = "executed"

_SLOT_RANK = {s.value: i for i, s in enumerate(SLOT_ORDER)}


@dataclass
class Instruction:
    rule_id: int
    prescription_id: int
    prescription_type: str
    medicine_id: int
    medicine_name: str
    medicine_strength: Optional[str]
    slot: str
    tablet_count: int
    status: str
    executed_at: Optional[datetime]
    stock_status: str
    sheet_id: Optional[int]
    sheet_remaining: int
    refill_tablets: Optional[int] = None  # weekly_refill prescriptions only


def active_rules_for_patient(db: Session, patient_id: int, on_date: date) -> List[PrescriptionMedicine]:
    """Active rules of every prescription of the patient still valid on `on_date`."""
    return (
        db.query(PrescriptionMedicine)
        .join(Prescription, Prescription.id == PrescriptionMedicine.prescription_id)
        .options(
            joinedload(PrescriptionMedicine.medicine),
            joinedload(PrescriptionMedicine.prescription),
        )
        .filter(
            Prescription.patient_id == patient_id,
            PrescriptionMedicine.is_active.is_(True),
            or_(Prescription.valid_till.is_(None), Prescription.valid_till >= on_date),
        )
        .all()
    )


def _executions_on(db: Session, rule_ids: List[int], on_date: date) -> Dict[Tuple[int, str], MedicineExecution]:
    """
    Executions on `on_date` keyed by (current rule id, slot).
    Doses recorded under a rule an edit replaced count for its replacement.
    """
    if not rule_ids:
        return {}
    heads = supersede_heads(db, rule_ids)
    rows = (
        db.query(MedicineExecution)
        .filter(
            MedicineExecution.prescription_medicine_id.in_(list(heads)),
            MedicineExecution.dose_date == on_date,
        )
        .order_by(MedicineExecution.id.asc())
        .all()
    )
    out: Dict[Tuple[int, str], MedicineExecution] = {}
    for r in rows:
        out.setdefault((heads[r.prescription_medicine_id], r.slot), r)
    return out


def instructions_for(db: Session, patient_id: int, on_date: date, *, today: date) -> List[Instruction]:
    """
    The day's dosing instructions for one patient.

    One entry per due rule and non-zero slot, tagged pending/executed and
    with where the stock would come from. Rules of weekly_refill
    prescriptions also carry the week's tablet quantity per slot.
    Nothing is consumed here.
    Ordered by medicine name, slot (morning, afternoon, evening), rule id.
    """
    if not db.get(Patient, patient_id):
        raise NotFound("Patient not found")

    due = [r for r in active_rules_for_patient(db, patient_id, on_date) if is_due(r, on_date)]
    executed = _executions_on(db, [r.id for r in due], on_date)

    stock: Dict[int, SheetAvailability] = {}
    out: List[Instruction] = []

    for rule in due:
        med: Medicine = rule.medicine
        if med.id not in stock:
            stock[med.id] = available_sheet(db, med.id, today)
        avail = stock[med.id]
        weekly_refill = rule.prescription.prescription_type == PrescriptionType.WEEKLY_REFILL.value

        for slot, count in slot_counts(rule):
            rec = executed.get((rule.id, slot.value))
            out.append(
                Instruction(
                    rule_id=rule.id,
                    prescription_id=rule.prescription_id,
                    prescription_type=rule.prescription.prescription_type,
                    medicine_id=med.id,
                    medicine_name=med.name,
                    medicine_strength=med.strength,
                    slot=slot.value,
                    tablet_count=count,
                    status=STATUS_EXECUTED if rec else STATUS_PENDING,
                    executed_at=rec.executed_at if rec else None,
                    stock_status=avail.status,
                    sheet_id=avail.sheet_id,
                    sheet_remaining=avail.remaining_tablets,
                    refill_tablets=refill_tablets(rule, count) if weekly_refill else None,
                )
            )

    out.sort(key=lambda i: (i.medicine_name, _SLOT_RANK[i.slot], i.rule_id))
    return out
