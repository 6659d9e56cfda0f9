# FILE: app/services/medicine_executions.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.prescription import DoseSlot, PrescriptionMedicine, MedicineExecution
from app.services.errors import DosingError, NotFound
from app.services.inventory import Draw, consume, release
from app.services.prescription_medicines import supersede_heads
from app.services.recurrence import is_due

logger = logging.getLogger(__name__)

REF_EXECUTION = "EXECUTION"


@dataclass
class ExecutionResult:
    rule_id: int
    slot: str
    dose_date: date
    tablet_count: int
    already_executed: bool
    execution_id: Optional[int] = None
    executed_at: Optional[datetime] = None
    draws: List[Draw] = field(default_factory=list)


def _slot_value(slot: DoseSlot | str) -> str:
    try:
        return DoseSlot(slot).value
    except ValueError:
        raise NotFound(f"Unknown slot '{slot}'")


def _get_rule_or_404(db: Session, rule_id: int, *, active_only: bool = True) -> PrescriptionMedicine:
    q = db.query(PrescriptionMedicine).filter(PrescriptionMedicine.id == rule_id)
    if active_only:
        q = q.filter(PrescriptionMedicine.is_active.is_(True))
    rule = q.first()
    if not rule:
        raise NotFound("Prescription medicine not found")
    return rule


def _find_execution(db: Session, rule_id: int, slot: str, dose_date: date) -> Optional[MedicineExecution]:
    return (
        db.query(MedicineExecution)
        .filter(
            MedicineExecution.prescription_medicine_id == rule_id,
            MedicineExecution.slot == slot,
            MedicineExecution.dose_date == dose_date,
        )
        .first()
    )


def _find_replaced_rule_execution(
    db: Session, rule_id: int, slot: str, dose_date: date
) -> Optional[MedicineExecution]:
    """Same occurrence recorded under a rule this one superseded."""
    older = [rid for rid in supersede_heads(db, [rule_id]) if rid != rule_id]
    if not older:
        return None
    return (
        db.query(MedicineExecution)
        .filter(
            MedicineExecution.prescription_medicine_id.in_(older),
            MedicineExecution.slot == slot,
            MedicineExecution.dose_date == dose_date,
        )
        .order_by(MedicineExecution.id.asc())
        .first()
    )


def _executed_result(rule_id: int, rec: MedicineExecution) -> ExecutionResult:
    return ExecutionResult(
        rule_id=rule_id,
        slot=rec.slot,
        dose_date=rec.dose_date,
        tablet_count=rec.tablet_count,
        already_executed=True,
        execution_id=rec.id,
        executed_at=rec.executed_at,
    )


def _already_executed(db: Session, rule_id: int, slot: str, dose_date: date) -> ExecutionResult:
    rec = _find_execution(db, rule_id, slot, dose_date)
    if not rec:
        # conflict reported but no row visible: let the caller see the failure
        raise DosingError("Execution conflict could not be resolved")
    return _executed_result(rule_id, rec)


def mark_executed(
    db: Session,
    rule_id: int,
    slot: DoseSlot | str,
    dose_date: date,
    *,
    today: date,
) -> ExecutionResult:
    """
    Record that (rule, slot, date) was administered and deduct the stock.

    Idempotent: an existing record is a success without a second deduction.
    The record insert and the sheet updates commit together; a stock error
    rolls both back. A unique-key conflict means a concurrent request
    recorded the same occurrence first, which is also a success, as is a
    dose recorded under a rule this one replaced. Dates past the
    prescription's valid_till are not scheduled.
    """
    slot_value = _slot_value(slot)
    rule = _get_rule_or_404(db, rule_id)

    count = rule.count_for(slot_value)
    valid_till = rule.prescription.valid_till
    if count <= 0 or not is_due(rule, dose_date) or (valid_till is not None and dose_date > valid_till):
        raise NotFound(
            f"No {slot_value} dose scheduled for rule {rule_id} on {dose_date.isoformat()}"
        )

    if _find_execution(db, rule_id, slot_value, dose_date):
        return _already_executed(db, rule_id, slot_value, dose_date)

    earlier = _find_replaced_rule_execution(db, rule_id, slot_value, dose_date)
    if earlier:
        return _executed_result(rule_id, earlier)

    medicine_id = rule.medicine_id
    rec = MedicineExecution(
        prescription_medicine_id=rule_id,
        slot=slot_value,
        dose_date=dose_date,
        tablet_count=count,
    )
    db.add(rec)

    try:
        db.flush()  # claims the natural key
        consumption = consume(
            db,
            medicine_id,
            count,
            today,
            ref_type=REF_EXECUTION,
            ref_id=rec.id,
            remark=f"rule {rule_id} {slot_value} {dose_date.isoformat()}",
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Execution raced, already recorded rule_id=%s slot=%s date=%s",
            rule_id, slot_value, dose_date,
        )
        return _already_executed(db, rule_id, slot_value, dose_date)
    except DosingError as e:
        db.rollback()
        logger.warning(
            "Execution rejected rule_id=%s slot=%s date=%s code=%s msg=%s",
            rule_id, slot_value, dose_date, e.code, str(e),
        )
        raise

    db.refresh(rec)
    logger.info(
        "Execution recorded id=%s rule_id=%s slot=%s date=%s tablets=%s",
        rec.id, rule_id, slot_value, dose_date, count,
    )
    return ExecutionResult(
        rule_id=rule_id,
        slot=slot_value,
        dose_date=dose_date,
        tablet_count=count,
        already_executed=False,
        execution_id=rec.id,
        executed_at=rec.executed_at,
        draws=consumption.draws,
    )


def unmark_executed(
    db: Session,
    rule_id: int,
    slot: DoseSlot | str,
    dose_date: date,
    *,
    today: date,
) -> ExecutionResult:
    """Reverse an execution: delete the record and give the tablets back, atomically."""
    slot_value = _slot_value(slot)
    rule = _get_rule_or_404(db, rule_id, active_only=False)

    rec = _find_execution(db, rule_id, slot_value, dose_date)
    if not rec:
        raise NotFound("Execution not found")

    execution_id = rec.id
    tablet_count = rec.tablet_count
    try:
        draws = release(
            db,
            rule.medicine_id,
            ref_type=REF_EXECUTION,
            ref_id=execution_id,
            today=today,
            remark=f"undo rule {rule_id} {slot_value} {dose_date.isoformat()}",
        )
        db.delete(rec)
        db.commit()
    except DosingError:
        db.rollback()
        raise

    logger.info(
        "Execution reversed id=%s rule_id=%s slot=%s date=%s",
        execution_id, rule_id, slot_value, dose_date,
    )
    return ExecutionResult(
        rule_id=rule_id,
        slot=slot_value,
        dose_date=dose_date,
        tablet_count=tablet_count,
        already_executed=False,
        execution_id=execution_id,
        draws=draws,
    )


def executions_for(db: Session, rule_id: int) -> List[MedicineExecution]:
    _get_rule_or_404(db, rule_id, active_only=False)
    return (
        db.query(MedicineExecution)
        .filter(MedicineExecution.prescription_medicine_id == rule_id)
        .order_by(MedicineExecution.dose_date.desc(), MedicineExecution.id.desc())
        .all()
    )
