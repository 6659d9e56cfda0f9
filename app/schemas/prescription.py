# FILE: app/schemas/prescription.py
from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict

Slot = Literal["morning", "afternoon", "evening"]


# ---------- Rules (prescription medicines) ----------
# Counts / interval are range-checked by the recurrence validator so the
# caller gets an INVALID_RULE error instead of a generic 422.


class PrescriptionMedicineBase(BaseModel):
    morning_count: int = 0
    afternoon_count: int = 0
    evening_count: int = 0
    recurrence_type: str
    recurrence_interval: int = 1
    recurrence_day_of_week: Optional[int] = None


class PrescriptionMedicineCreate(PrescriptionMedicineBase):
    medicine_id: int


class PrescriptionMedicineUpdate(PrescriptionMedicineBase):
    pass


class PrescriptionMedicineOut(PrescriptionMedicineBase):
    id: int
    prescription_id: int
    medicine_id: int
    medicine_name: str
    medicine_strength: Optional[str] = None
    anchor_date: date
    is_active: bool
    superseded_by_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_rule(cls, rule) -> "PrescriptionMedicineOut":
        return cls(
            id=rule.id,
            prescription_id=rule.prescription_id,
            medicine_id=rule.medicine_id,
            medicine_name=rule.medicine.name,
            medicine_strength=rule.medicine.strength,
            morning_count=rule.morning_count,
            afternoon_count=rule.afternoon_count,
            evening_count=rule.evening_count,
            recurrence_type=rule.recurrence_type,
            recurrence_interval=rule.recurrence_interval,
            recurrence_day_of_week=rule.recurrence_day_of_week,
            anchor_date=rule.anchor_date,
            is_active=rule.is_active,
            superseded_by_id=rule.superseded_by_id,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


# ---------- Instructions ----------


class InstructionOut(BaseModel):
    rule_id: int
    prescription_id: int
    prescription_type: str
    medicine_id: int
    medicine_name: str
    medicine_strength: Optional[str] = None
    slot: Slot
    tablet_count: int
    status: Literal["pending", "executed"]
    executed_at: Optional[datetime] = None
    stock_status: Literal["available", "no_stock", "expired_stock"]
    sheet_id: Optional[int] = None
    sheet_remaining: int = 0
    refill_tablets: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PatientInstructionsOut(BaseModel):
    patient_id: int
    date: dt.date
    instructions: List[InstructionOut]
    has_instructions: bool


# ---------- Executions ----------


class ExecutionIn(BaseModel):
    rule_id: int
    slot: Slot
    date: dt.date


class SheetDrawOut(BaseModel):
    sheet_id: int
    qty: int

    model_config = ConfigDict(from_attributes=True)


class ExecutionResultOut(BaseModel):
    status: Literal["ok"] = "ok"
    rule_id: int
    slot: Slot
    dose_date: date
    tablet_count: int
    already_executed: bool
    execution_id: Optional[int] = None
    executed_at: Optional[datetime] = None
    draws: List[SheetDrawOut] = []

    model_config = ConfigDict(from_attributes=True)


class ExecutionOut(BaseModel):
    id: int
    prescription_medicine_id: int
    slot: Slot
    dose_date: date
    tablet_count: int
    executed_at: datetime

    model_config = ConfigDict(from_attributes=True)
