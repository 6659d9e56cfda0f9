# FILE: app/api/routes_medicine_instructions.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_today
from app.api.response import ok
from app.schemas.prescription import (
    ExecutionIn,
    ExecutionOut,
    ExecutionResultOut,
    InstructionOut,
    PatientInstructionsOut,
    Slot,
)
from app.services.medicine_executions import (
    executions_for,
    mark_executed,
    unmark_executed,
)
from app.services.medicine_instructions import instructions_for

router = APIRouter(tags=["Medicine Instructions / Executions"])


# -------------------------------------------------------------------
# Instructions (read-only)
# -------------------------------------------------------------------
@router.get("/patients/{patient_id}/medicine-instructions")
def get_medicine_instructions(
    patient_id: int,
    on_date: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """
    Doses due for the patient on the given date, each with
    pending/executed status and the sheet it would be drawn from.
    """
    target = on_date or today
    rows = instructions_for(db, patient_id, target, today=today)
    out = PatientInstructionsOut(
        patient_id=patient_id,
        date=target,
        instructions=[InstructionOut.model_validate(r) for r in rows],
        has_instructions=bool(rows),
    )
    return ok(out.model_dump())


# -------------------------------------------------------------------
# Executions
# -------------------------------------------------------------------
@router.post("/executions")
def post_execution(
    payload: ExecutionIn,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """Mark one dose as taken. Safe to repeat: stock is deducted once."""
    result = mark_executed(db, payload.rule_id, payload.slot, payload.date, today=today)
    code = status.HTTP_200_OK if result.already_executed else status.HTTP_201_CREATED
    return ok(ExecutionResultOut.model_validate(result).model_dump(), status_code=code)


@router.delete("/executions/{rule_id}/{slot}/{dose_date}")
def delete_execution(
    rule_id: int,
    slot: Slot,
    dose_date: date,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """Undo a recorded dose and return its tablets to the sheets."""
    result = unmark_executed(db, rule_id, slot, dose_date, today=today)
    return ok(ExecutionResultOut.model_validate(result).model_dump())


@router.get("/prescription-medicines/{rule_id}/executions")
def list_executions(
    rule_id: int,
    db: Session = Depends(get_db),
):
    rows = executions_for(db, rule_id)
    return ok([ExecutionOut.model_validate(r).model_dump() for r in rows])
