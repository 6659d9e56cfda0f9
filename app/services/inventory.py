# FILE: app/services/inventory.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.medicine import Medicine, MedicineSheet, SheetTransaction
from app.services.errors import (
    NotFound,
    StockError,
    NoStock,
    InsufficientStock,
    ExpiredStock,
)

logger = logging.getLogger(__name__)

TXN_DOSE = "DOSE"
TXN_DOSE_REVERSAL = "DOSE_REVERSAL"
TXN_ADJUSTMENT = "ADJUSTMENT"

STATUS_AVAILABLE = "available"
STATUS_NO_STOCK = "no_stock"
STATUS_EXPIRED_STOCK = "expired_stock"


# -------------------------
# Snapshots / results
# -------------------------
@dataclass
class SheetSnapshot:
    id: int
    expiry_date: date
    consumed_tablets: int
    tablets_per_sheet: int

    @property
    def remaining(self) -> int:
        return self.tablets_per_sheet - self.consumed_tablets

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def is_expired(self, today: date) -> bool:
        return self.expiry_date < today


@dataclass
class Draw:
    sheet_id: int
    qty: int


@dataclass
class ConsumptionPlan:
    draws: List[Draw]
    active_sheet_id: Optional[int]
    exhausted_sheet_ids: List[int] = field(default_factory=list)


@dataclass
class ConsumptionResult:
    medicine_id: int
    tablet_count: int
    draws: List[Draw]
    active_sheet_id: Optional[int]


@dataclass
class SheetAvailability:
    medicine_id: int
    status: str
    sheet_id: Optional[int] = None
    remaining_tablets: int = 0
    expiry_date: Optional[date] = None
    reason: str = ""

    @property
    def available(self) -> bool:
        return self.status == STATUS_AVAILABLE


def snapshot_sheets(medicine: Medicine, sheets: Iterable[MedicineSheet]) -> List[SheetSnapshot]:
    per_sheet = int(medicine.tablets_per_sheet)
    return [
        SheetSnapshot(
            id=s.id,
            expiry_date=s.expiry_date,
            consumed_tablets=int(s.consumed_tablets or 0),
            tablets_per_sheet=per_sheet,
        )
        for s in sheets
    ]


# -------------------------
# Decide (pure)
# -------------------------
def select_sheet(
    sheets: Iterable[SheetSnapshot],
    active_sheet_id: Optional[int],
    today: date,
) -> SheetSnapshot:
    """
    Pick the sheet the next tablet comes from.

    - The open (active) sheet wins while it still has tablets.
      If it is expired that is an error: expired stock is surfaced,
      never skipped over.
    - Otherwise FEFO: earliest expiry among unexhausted, unexpired sheets
      (id as tie-breaker).
    - NoStock when nothing is left, ExpiredStock when only expired
      sheets still hold tablets.
    """
    sheets = list(sheets)

    if active_sheet_id is not None:
        active = next((s for s in sheets if s.id == active_sheet_id), None)
        if active is not None and not active.exhausted:
            if active.is_expired(today):
                raise ExpiredStock(
                    f"Sheet {active.id} in use expired on {active.expiry_date.isoformat()}",
                    details={"sheet_id": active.id, "expiry_date": active.expiry_date},
                )
            return active

    candidates = [s for s in sheets if not s.exhausted]
    if not candidates:
        raise NoStock("No stock available for this medicine")

    fresh = [s for s in candidates if not s.is_expired(today)]
    if not fresh:
        raise ExpiredStock(
            "All remaining sheets are expired",
            details={"sheet_ids": [s.id for s in candidates]},
        )

    return min(fresh, key=lambda s: (s.expiry_date, s.id))


def plan_consumption(
    sheets: Iterable[SheetSnapshot],
    active_sheet_id: Optional[int],
    tablet_count: int,
    today: date,
) -> ConsumptionPlan:
    """
    Work out which sheets a consumption of `tablet_count` tablets draws from.
    Excess over the open sheet rolls over to the next eligible sheet.
    Nothing is mutated; the caller applies the plan or discards it.
    """
    if tablet_count <= 0:
        raise ValueError("Tablet count must be > 0")

    # private copies so the selection sees the effect of earlier draws
    working = [
        SheetSnapshot(s.id, s.expiry_date, s.consumed_tablets, s.tablets_per_sheet)
        for s in sheets
    ]

    remaining = int(tablet_count)
    active = active_sheet_id
    draws: List[Draw] = []
    exhausted: List[int] = []

    while remaining > 0:
        try:
            sheet = select_sheet(working, active, today)
        except StockError as e:
            if not draws:
                raise
            raise InsufficientStock(
                f"Insufficient stock (short by {remaining} tablets)",
                details={"requested": int(tablet_count), "short_by": remaining, "cause": e.code},
            ) from e

        take = min(remaining, sheet.remaining)
        sheet.consumed_tablets += take
        draws.append(Draw(sheet_id=sheet.id, qty=take))
        remaining -= take

        if sheet.exhausted:
            exhausted.append(sheet.id)
            active = None
        else:
            active = sheet.id

    return ConsumptionPlan(draws=draws, active_sheet_id=active, exhausted_sheet_ids=exhausted)


# -------------------------
# Apply (session)
# -------------------------
def create_sheet_transaction(
    db: Session,
    *,
    sheet: MedicineSheet,
    qty: int,
    txn_type: str,
    ref_type: str = "",
    ref_id: Optional[int] = None,
    remark: str = "",
) -> SheetTransaction:
    """
    Central creator for SheetTransaction – always use this so audit is consistent.
    """
    txn = SheetTransaction(
        sheet_id=sheet.id,
        medicine_id=sheet.medicine_id,
        txn_type=txn_type,
        ref_type=ref_type,
        ref_id=ref_id,
        quantity_change=int(qty),
        remark=remark or "",
    )
    db.add(txn)
    return txn


def lock_medicine(db: Session, medicine_id: int) -> Medicine:
    med = db.execute(
        select(Medicine)
        .where(Medicine.id == medicine_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not med:
        raise NotFound(f"Medicine {medicine_id} not found")
    return med


def _lock_sheets(db: Session, medicine_id: int) -> List[MedicineSheet]:
    return list(db.execute(
        select(MedicineSheet)
        .where(MedicineSheet.medicine_id == medicine_id)
        .order_by(MedicineSheet.expiry_date.asc(), MedicineSheet.id.asc())
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all())


def available_sheet(db: Session, medicine_id: int, today: date) -> SheetAvailability:
    """
    Read-only look at where the next tablet would come from.
    Does not open (flag) the sheet; that only happens on consumption.
    """
    med = db.get(Medicine, medicine_id)
    if not med:
        raise NotFound(f"Medicine {medicine_id} not found")

    sheets = snapshot_sheets(med, med.sheets)
    try:
        sheet = select_sheet(sheets, med.active_sheet_id, today)
    except NoStock as e:
        return SheetAvailability(medicine_id=med.id, status=STATUS_NO_STOCK, reason=str(e))
    except ExpiredStock as e:
        return SheetAvailability(medicine_id=med.id, status=STATUS_EXPIRED_STOCK, reason=str(e))

    return SheetAvailability(
        medicine_id=med.id,
        status=STATUS_AVAILABLE,
        sheet_id=sheet.id,
        remaining_tablets=sheet.remaining,
        expiry_date=sheet.expiry_date,
    )


def consume(
    db: Session,
    medicine_id: int,
    tablet_count: int,
    today: date,
    *,
    ref_type: str = "",
    ref_id: Optional[int] = None,
    remark: str = "",
) -> ConsumptionResult:
    """
    Deduct tablets from the medicine's sheets inside the caller's transaction.

    The plan is computed first; rows are only touched once the whole
    count is known to be satisfiable, so a StockError leaves the sheets as
    they were. The caller commits or rolls back.
    """
    med = lock_medicine(db, medicine_id)
    rows = _lock_sheets(db, medicine_id)

    plan = plan_consumption(snapshot_sheets(med, rows), med.active_sheet_id, tablet_count, today)

    by_id: Dict[int, MedicineSheet] = {s.id: s for s in rows}
    for d in plan.draws:
        sheet = by_id[d.sheet_id]
        sheet.consumed_tablets = int(sheet.consumed_tablets or 0) + d.qty
        create_sheet_transaction(
            db,
            sheet=sheet,
            qty=d.qty,
            txn_type=TXN_DOSE,
            ref_type=ref_type,
            ref_id=ref_id,
            remark=remark,
        )

    for sid in plan.exhausted_sheet_ids:
        logger.info("Sheet exhausted medicine_id=%s sheet_id=%s", med.id, sid)

    if med.active_sheet_id != plan.active_sheet_id:
        logger.info(
            "Active sheet switched medicine_id=%s from=%s to=%s",
            med.id, med.active_sheet_id, plan.active_sheet_id,
        )
        med.active_sheet_id = plan.active_sheet_id

    db.flush()

    return ConsumptionResult(
        medicine_id=med.id,
        tablet_count=int(tablet_count),
        draws=plan.draws,
        active_sheet_id=plan.active_sheet_id,
    )


def release(
    db: Session,
    medicine_id: int,
    *,
    ref_type: str,
    ref_id: int,
    today: date,
    remark: str = "",
) -> List[Draw]:
    """
    Undo the DOSE movements booked against (ref_type, ref_id).
    Mirror of consume(): same locks, reversal rows in the log, and the
    sheet the dose was first drawn from becomes the open sheet again
    when the current open sheet is untouched and that sheet is neither
    exhausted nor expired on `today`.
    """
    med = lock_medicine(db, medicine_id)
    rows = _lock_sheets(db, medicine_id)
    by_id: Dict[int, MedicineSheet] = {s.id: s for s in rows}

    txns = (
        db.query(SheetTransaction)
        .filter(
            SheetTransaction.medicine_id == medicine_id,
            SheetTransaction.txn_type == TXN_DOSE,
            SheetTransaction.ref_type == ref_type,
            SheetTransaction.ref_id == ref_id,
        )
        .order_by(SheetTransaction.id.asc())
        .all()
    )

    reversed_draws: List[Draw] = []
    for t in txns:
        sheet = by_id.get(t.sheet_id)
        if sheet is None:
            continue
        current = int(sheet.consumed_tablets or 0)
        qty = min(int(t.quantity_change), current)
        if qty < int(t.quantity_change):
            # a manual override already lowered this sheet
            logger.warning(
                "Partial reversal sheet_id=%s booked=%s consumed=%s",
                sheet.id, t.quantity_change, current,
            )
        if qty <= 0:
            continue
        sheet.consumed_tablets = current - qty
        create_sheet_transaction(
            db,
            sheet=sheet,
            qty=-qty,
            txn_type=TXN_DOSE_REVERSAL,
            ref_type=ref_type,
            ref_id=ref_id,
            remark=remark,
        )
        reversed_draws.append(Draw(sheet_id=sheet.id, qty=qty))

    if reversed_draws:
        first = by_id[reversed_draws[0].sheet_id]
        current_active = by_id.get(med.active_sheet_id) if med.active_sheet_id else None
        if (current_active is None or int(current_active.consumed_tablets or 0) == 0) \
                and not first.is_exhausted and first.expiry_date >= today:
            med.active_sheet_id = first.id

    db.flush()
    return reversed_draws
