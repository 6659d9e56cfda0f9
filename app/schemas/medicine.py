# FILE: app/schemas/medicine.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


# ---------- Sheets ----------


class SheetCreate(BaseModel):
    medicine_id: int
    expiry_date: date


class SheetUpdate(BaseModel):
    consumed_tablets: Optional[int] = None
    is_in_use: Optional[bool] = None


class SheetOut(BaseModel):
    id: int
    medicine_id: int
    expiry_date: date
    consumed_tablets: int
    tablets_per_sheet: int
    remaining_tablets: int
    is_in_use: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Inventory ----------


class MedicineInventoryOut(BaseModel):
    medicine_id: int
    name: str
    strength: Optional[str] = None
    tablets_per_sheet: int
    active_sheet_id: Optional[int] = None
    sheets: List[SheetOut]
    total_sheets: int
    sheets_in_use: int
    available_tablets: int
    usable_tablets: int
    expired_sheets: int

    model_config = ConfigDict(from_attributes=True)
