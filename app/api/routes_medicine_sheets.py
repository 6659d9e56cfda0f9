# FILE: app/api/routes_medicine_sheets.py
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_today
from app.api.response import ok
from app.schemas.medicine import (
    MedicineInventoryOut,
    SheetCreate,
    SheetOut,
    SheetUpdate,
)
from app.services.medicine_sheets import (
    add_sheet,
    delete_sheet,
    medicine_inventory,
    update_sheet,
)

router = APIRouter(tags=["Medicine Sheets"])


@router.post("/sheets")
def create_sheet(
    payload: SheetCreate,
    db: Session = Depends(get_db),
):
    """New stock: consumed 0, not in use."""
    sheet = add_sheet(db, medicine_id=payload.medicine_id, expiry_date=payload.expiry_date)
    return ok(SheetOut.model_validate(sheet).model_dump(), status_code=status.HTTP_201_CREATED)


@router.patch("/sheets/{sheet_id}")
def patch_sheet(
    sheet_id: int,
    payload: SheetUpdate,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    """
    Manual correction of a sheet (consumed count and/or in-use flag).
    Putting a sheet in use takes the flag away from any other sheet of the medicine.
    """
    data = payload.model_dump(exclude_unset=True)
    sheet = update_sheet(
        db,
        sheet_id,
        today=today,
        consumed_tablets=data.get("consumed_tablets"),
        is_in_use=data.get("is_in_use"),
    )
    return ok(SheetOut.model_validate(sheet).model_dump())


@router.delete("/sheets/{sheet_id}")
def remove_sheet(
    sheet_id: int,
    db: Session = Depends(get_db),
):
    delete_sheet(db, sheet_id)
    return ok({"id": sheet_id, "deleted": True})


@router.get("/medicines/{medicine_id}/inventory")
def get_medicine_inventory(
    medicine_id: int,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    summary = medicine_inventory(db, medicine_id, today=today)
    return ok(MedicineInventoryOut.model_validate(summary).model_dump())
