# FILE: app/services/medicine_sheets.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.medicine import Medicine, MedicineSheet, SheetTransaction
from app.services.errors import NotFound, InvalidSheetUpdate
from app.services.inventory import (
    TXN_ADJUSTMENT,
    TXN_DOSE,
    create_sheet_transaction,
    lock_medicine,
)

logger = logging.getLogger(__name__)


def _get_sheet_or_404(db: Session, sheet_id: int) -> MedicineSheet:
    sheet = db.get(MedicineSheet, sheet_id)
    if not sheet:
        raise NotFound("Medicine sheet not found")
    return sheet


def add_sheet(db: Session, *, medicine_id: int, expiry_date: date) -> MedicineSheet:
    """New stock: nothing consumed, not opened."""
    med = db.get(Medicine, medicine_id)
    if not med:
        raise NotFound("Medicine not found")

    sheet = MedicineSheet(medicine_id=med.id, expiry_date=expiry_date, consumed_tablets=0)
    db.add(sheet)
    db.commit()
    db.refresh(sheet)
    logger.info("Sheet added medicine_id=%s sheet_id=%s expiry=%s", med.id, sheet.id, expiry_date)
    return sheet


def update_sheet(
    db: Session,
    sheet_id: int,
    *,
    today: date,
    consumed_tablets: Optional[int] = None,
    is_in_use: Optional[bool] = None,
) -> MedicineSheet:
    """
    Manual correction of ledger state.

    consumed_tablets must stay inside 0..tablets_per_sheet.
    is_in_use=True moves the medicine's single open-sheet reference here,
    which implicitly closes whichever sheet was open before.
    """
    sheet = _get_sheet_or_404(db, sheet_id)
    med = lock_medicine(db, sheet.medicine_id)
    # the adjustment delta must come from the row as it is under the lock
    db.refresh(sheet, with_for_update=True)
    per_sheet = int(med.tablets_per_sheet)

    try:
        if consumed_tablets is not None:
            value = int(consumed_tablets)
            if value < 0 or value > per_sheet:
                raise InvalidSheetUpdate(
                    f"Consumed tablets must be between 0 and {per_sheet}",
                    details={"consumed_tablets": value, "tablets_per_sheet": per_sheet},
                )
            delta = value - int(sheet.consumed_tablets or 0)
            if delta:
                sheet.consumed_tablets = value
                create_sheet_transaction(
                    db,
                    sheet=sheet,
                    qty=delta,
                    txn_type=TXN_ADJUSTMENT,
                    ref_type="MANUAL",
                    remark="Manual consumption override",
                )

        if is_in_use is True:
            if sheet.consumed_tablets >= per_sheet:
                raise InvalidSheetUpdate("An exhausted sheet cannot be put in use")
            if sheet.expiry_date < today:
                raise InvalidSheetUpdate("An expired sheet cannot be put in use")
            if med.active_sheet_id != sheet.id:
                logger.info(
                    "Active sheet set manually medicine_id=%s from=%s to=%s",
                    med.id, med.active_sheet_id, sheet.id,
                )
            med.active_sheet_id = sheet.id
        elif is_in_use is False and med.active_sheet_id == sheet.id:
            med.active_sheet_id = None

        # an exhausted sheet never stays open
        if med.active_sheet_id == sheet.id and sheet.consumed_tablets >= per_sheet:
            med.active_sheet_id = None

        db.commit()
    except InvalidSheetUpdate:
        db.rollback()
        raise

    db.refresh(sheet)
    return sheet


def delete_sheet(db: Session, sheet_id: int) -> None:
    """Only sheets no dose was ever drawn from can be removed."""
    sheet = _get_sheet_or_404(db, sheet_id)

    used = (
        db.query(SheetTransaction.id)
        .filter(SheetTransaction.sheet_id == sheet.id, SheetTransaction.txn_type == TXN_DOSE)
        .first()
    )
    if used:
        raise InvalidSheetUpdate("Sheet has dose history and cannot be deleted")

    med = lock_medicine(db, sheet.medicine_id)
    if med.active_sheet_id == sheet.id:
        med.active_sheet_id = None

    db.delete(sheet)
    db.commit()
    logger.info("Sheet deleted medicine_id=%s sheet_id=%s", med.id, sheet_id)


def medicine_inventory(db: Session, medicine_id: int, *, today: date) -> Dict[str, Any]:
    med = db.get(Medicine, medicine_id)
    if not med:
        raise NotFound("Medicine not found")

    sheets = sorted(med.sheets, key=lambda s: (s.expiry_date, s.id))
    per_sheet = int(med.tablets_per_sheet)

    return {
        "medicine_id": med.id,
        "name": med.name,
        "strength": med.strength,
        "tablets_per_sheet": per_sheet,
        "active_sheet_id": med.active_sheet_id,
        "sheets": sheets,
        "total_sheets": len(sheets),
        "sheets_in_use": 1 if med.active_sheet_id is not None else 0,
        "available_tablets": sum(per_sheet - int(s.consumed_tablets or 0) for s in sheets),
        "usable_tablets": sum(
            per_sheet - int(s.consumed_tablets or 0) for s in sheets if s.expiry_date >= today
        ),
        "expired_sheets": sum(1 for s in sheets if s.expiry_date < today),
    }
