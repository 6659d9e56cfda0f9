# FILE: app/services/prescription_medicines.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Iterable, List

from sqlalchemy.orm import Session, joinedload

from app.models.medicine import Medicine
from app.models.prescription import Prescription, PrescriptionMedicine
from app.services.errors import NotFound, DuplicateRule
from app.services.recurrence import validate_rule

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "morning_count",
    "afternoon_count",
    "evening_count",
    "recurrence_type",
    "recurrence_interval",
    "recurrence_day_of_week",
)


def _get_prescription_or_404(db: Session, prescription_id: int) -> Prescription:
    rx = db.get(Prescription, prescription_id)
    if not rx:
        raise NotFound("Prescription not found")
    return rx


def _get_active_rule_or_404(db: Session, prescription_id: int, rule_id: int) -> PrescriptionMedicine:
    rule = (
        db.query(PrescriptionMedicine)
        .filter(
            PrescriptionMedicine.id == rule_id,
            PrescriptionMedicine.prescription_id == prescription_id,
            PrescriptionMedicine.is_active.is_(True),
        )
        .first()
    )
    if not rule:
        raise NotFound("Prescription medicine not found")
    return rule


def _normalized(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: data.get(k) for k in RULE_FIELDS}
    out["morning_count"] = out["morning_count"] or 0
    out["afternoon_count"] = out["afternoon_count"] or 0
    out["evening_count"] = out["evening_count"] or 0
    if out["recurrence_interval"] is None:
        out["recurrence_interval"] = 1
    # day of week only means something for weekly rules
    if out["recurrence_type"] != "weekly":
        out["recurrence_day_of_week"] = None
    return out


def supersede_heads(db: Session, rule_ids: Iterable[int]) -> Dict[int, int]:
    """
    Map each given rule id, and every older rule an edit replaced with it,
    to the given (current) rule id. Doses recorded under a replaced rule
    still count for the rule that took over.
    """
    heads = {rid: rid for rid in rule_ids}
    frontier = list(heads)
    while frontier:
        rows = (
            db.query(PrescriptionMedicine.id, PrescriptionMedicine.superseded_by_id)
            .filter(PrescriptionMedicine.superseded_by_id.in_(frontier))
            .all()
        )
        frontier = []
        for old_id, new_id in rows:
            if old_id not in heads:
                heads[old_id] = heads[new_id]
                frontier.append(old_id)
    return heads


def list_rules(db: Session, prescription_id: int) -> List[PrescriptionMedicine]:
    _get_prescription_or_404(db, prescription_id)
    return (
        db.query(PrescriptionMedicine)
        .join(Medicine, Medicine.id == PrescriptionMedicine.medicine_id)
        .options(joinedload(PrescriptionMedicine.medicine))
        .filter(
            PrescriptionMedicine.prescription_id == prescription_id,
            PrescriptionMedicine.is_active.is_(True),
        )
        .order_by(Medicine.name.asc(), PrescriptionMedicine.id.asc())
        .all()
    )


def create_rule(
    db: Session,
    prescription_id: int,
    *,
    medicine_id: int,
    data: Dict[str, Any],
    today: date,
) -> PrescriptionMedicine:
    """
    Add a medicine to a prescription.
    The rule's recurrence counts from `today` (its anchor).
    """
    values = _normalized(data)
    validate_rule(**values)

    _get_prescription_or_404(db, prescription_id)
    if not db.get(Medicine, medicine_id):
        raise NotFound("Medicine not found")

    existing = (
        db.query(PrescriptionMedicine.id)
        .filter(
            PrescriptionMedicine.prescription_id == prescription_id,
            PrescriptionMedicine.medicine_id == medicine_id,
            PrescriptionMedicine.is_active.is_(True),
        )
        .first()
    )
    if existing:
        raise DuplicateRule("This medicine is already in this prescription")

    rule = PrescriptionMedicine(
        prescription_id=prescription_id,
        medicine_id=medicine_id,
        anchor_date=today,
        is_active=True,
        **values,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Rule created rule_id=%s prescription_id=%s medicine_id=%s", rule.id, prescription_id, medicine_id)
    return rule


def update_rule(
    db: Session,
    prescription_id: int,
    rule_id: int,
    *,
    data: Dict[str, Any],
    today: date,
) -> PrescriptionMedicine:
    """
    Edit dosage/recurrence.

    The old row is frozen (deactivated, pointed at its replacement) and a
    new rule anchored at `today` takes over, so executions already recorded
    against the old rule keep their meaning. A dose of the old rule taken
    earlier today still covers the same slot of the new rule (see
    supersede_heads).
    """
    values = _normalized(data)
    validate_rule(**values)

    old = _get_active_rule_or_404(db, prescription_id, rule_id)

    new = PrescriptionMedicine(
        prescription_id=old.prescription_id,
        medicine_id=old.medicine_id,
        anchor_date=today,
        is_active=True,
        **values,
    )
    old.is_active = False
    db.add(new)
    db.flush()
    old.superseded_by_id = new.id

    db.commit()
    db.refresh(new)
    logger.info("Rule superseded old_rule_id=%s new_rule_id=%s anchor=%s", old.id, new.id, today)
    return new


def deactivate_rule(db: Session, prescription_id: int, rule_id: int) -> None:
    """Soft delete; execution history keeps pointing at the row."""
    rule = _get_active_rule_or_404(db, prescription_id, rule_id)
    rule.is_active = False
    db.commit()
    logger.info("Rule deactivated rule_id=%s", rule_id)
