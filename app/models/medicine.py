# FILE: app/models/medicine.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, ForeignKey, Text,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


# -------------------------
# Masters
# -------------------------
class Medicine(Base):
    __tablename__ = "medicines"
    __table_args__ = (
        CheckConstraint("tablets_per_sheet > 0", name="ck_medicines_tablets_per_sheet"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    generic_name = Column(String(255), nullable=True)
    brand_name = Column(String(255), nullable=True)
    strength = Column(String(100), nullable=True)
    tablets_per_sheet = Column(Integer, nullable=False)
    additional_details = Column(Text, nullable=True)

    # The one sheet currently being drawn from (NULL = none open).
    # No FK: medicine_sheets already points back here.
    active_sheet_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    sheets = relationship(
        "MedicineSheet",
        back_populates="medicine",
        order_by="MedicineSheet.expiry_date",
    )
    rules = relationship("PrescriptionMedicine", back_populates="medicine")


# -------------------------
# Stock
# -------------------------
class MedicineSheet(Base):
    """
    One physical strip of tablets.
    Capacity comes from Medicine.tablets_per_sheet; in-use state comes from
    Medicine.active_sheet_id so only one sheet per medicine can be open.
    """
    __tablename__ = "medicine_sheets"
    __table_args__ = (
        CheckConstraint("consumed_tablets >= 0", name="ck_medicine_sheets_consumed"),
        Index("ix_medicine_sheets_med_exp", "medicine_id", "expiry_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    medicine_id = Column(Integer, ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False, index=True)
    expiry_date = Column(Date, nullable=False)
    consumed_tablets = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    medicine = relationship("Medicine", back_populates="sheets")
    transactions = relationship("SheetTransaction", back_populates="sheet", cascade="all, delete-orphan")

    @property
    def tablets_per_sheet(self) -> int:
        return int(self.medicine.tablets_per_sheet)

    @property
    def remaining_tablets(self) -> int:
        return self.tablets_per_sheet - int(self.consumed_tablets or 0)

    @property
    def is_exhausted(self) -> bool:
        return self.remaining_tablets <= 0

    @property
    def is_in_use(self) -> bool:
        return self.medicine is not None and self.medicine.active_sheet_id == self.id


class SheetTransaction(Base):
    """
    Append-only movement log per sheet.
    quantity_change is in tablets consumed: +n for a dose, -n for a reversal.
    """
    __tablename__ = "medicine_sheet_txns"
    __table_args__ = (
        Index("ix_sheet_txn_medicine_time", "medicine_id", "txn_time"),
        Index("ix_sheet_txn_ref", "ref_type", "ref_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sheet_id = Column(Integer, ForeignKey("medicine_sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    medicine_id = Column(Integer, ForeignKey("medicines.id", ondelete="CASCADE"), nullable=False)

    txn_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    txn_type = Column(String(30), nullable=False)  # DOSE / DOSE_REVERSAL / ADJUSTMENT
    ref_type = Column(String(30), default="")
    ref_id = Column(Integer, nullable=True)  # execution id for DOSE rows (no FK: reversals delete it)

    quantity_change = Column(Integer, nullable=False)
    remark = Column(String(500), default="")

    sheet = relationship("MedicineSheet", back_populates="transactions")
