# FILE: app/models/prescription.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, ForeignKey,
    CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


# -------------------------
# Enums
# -------------------------
class PrescriptionType(str, enum.Enum):
    DAILY_MONITORING = "daily_monitoring"
    WEEKLY_REFILL = "weekly_refill"


class RecurrenceType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    INTERVAL = "interval"


class DoseSlot(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


# Display / sort order of the day's slots
SLOT_ORDER = (DoseSlot.MORNING, DoseSlot.AFTERNOON, DoseSlot.EVENING)


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    phone_number = Column(String(20), nullable=True)
    medical_id_number = Column(String(64), unique=True, index=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    prescriptions = relationship("Prescription", back_populates="patient")


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    prescription_type = Column(String(30), nullable=False, default=PrescriptionType.DAILY_MONITORING.value)
    valid_till = Column(Date, nullable=True)  # NULL = open ended

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    patient = relationship("Patient", back_populates="prescriptions")
    medicines = relationship("PrescriptionMedicine", back_populates="prescription")


class PrescriptionMedicine(Base):
    """
    Dosing rule for one medicine inside one prescription.
    Rows are never hard-deleted: edits deactivate the row and point
    superseded_by_id at the replacement, removal just clears is_active.
    """
    __tablename__ = "prescription_medicines"
    __table_args__ = (
        CheckConstraint("morning_count >= 0 AND afternoon_count >= 0 AND evening_count >= 0",
                        name="ck_pm_counts"),
        CheckConstraint("recurrence_interval > 0", name="ck_pm_interval"),
        Index("ix_pm_prescription_active", "prescription_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False)
    medicine_id = Column(Integer, ForeignKey("medicines.id"), nullable=False, index=True)

    morning_count = Column(Integer, nullable=False, default=0)
    afternoon_count = Column(Integer, nullable=False, default=0)
    evening_count = Column(Integer, nullable=False, default=0)

    recurrence_type = Column(String(20), nullable=False, default=RecurrenceType.DAILY.value)
    recurrence_interval = Column(Integer, nullable=False, default=1)
    recurrence_day_of_week = Column(Integer, nullable=True)  # 0=Sunday .. 6=Saturday

    anchor_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    superseded_by_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    prescription = relationship("Prescription", back_populates="medicines")
    medicine = relationship("Medicine", back_populates="rules")
    executions = relationship("MedicineExecution", back_populates="rule")

    def count_for(self, slot: DoseSlot | str) -> int:
        value = DoseSlot(slot).value
        return int(getattr(self, f"{value}_count") or 0)


class MedicineExecution(Base):
    """One administered (rule, slot, date) occurrence."""
    __tablename__ = "medicine_executions"
    __table_args__ = (
        UniqueConstraint("prescription_medicine_id", "slot", "dose_date", name="uq_medicine_execution_occurrence"),
        Index("ix_medicine_execution_date", "dose_date"),
        # ids are stock references (SheetTransaction.ref_id) and must never be reused
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    prescription_medicine_id = Column(Integer, ForeignKey("prescription_medicines.id"), nullable=False)
    slot = Column(String(20), nullable=False)
    dose_date = Column(Date, nullable=False)
    tablet_count = Column(Integer, nullable=False)

    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    rule = relationship("PrescriptionMedicine", back_populates="executions")
