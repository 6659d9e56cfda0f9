"""Shared fixtures: in-memory SQLite schema, sessions, API client and row factories."""

from __future__ import annotations

import itertools
import os
from datetime import date

# the app builds its engine at import time; keep it off MySQL
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.api.deps import get_db, get_today
from app.db.base import Base
from app.main import app
from app.models import (
    Medicine,
    MedicineSheet,
    Patient,
    Prescription,
    PrescriptionMedicine,
)

TODAY = date(2024, 2, 1)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_today] = lambda: TODAY
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class Factory:
    """Creates committed rows with sensible defaults."""

    _seq = itertools.count(1)

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def patient(self, name: str = "Asha Menon") -> Patient:
        return self._save(Patient(name=name, medical_id_number=f"MID-{next(self._seq):05d}"))

    def medicine(self, name: str = "Metformin", tablets_per_sheet: int = 10, strength: str = "500mg") -> Medicine:
        return self._save(Medicine(name=name, strength=strength, tablets_per_sheet=tablets_per_sheet))

    def sheet(
        self,
        medicine: Medicine,
        *,
        expiry_date: date = date(2025, 1, 1),
        consumed_tablets: int = 0,
        in_use: bool = False,
    ) -> MedicineSheet:
        sheet = self._save(
            MedicineSheet(medicine_id=medicine.id, expiry_date=expiry_date, consumed_tablets=consumed_tablets)
        )
        if in_use:
            medicine.active_sheet_id = sheet.id
            self.db.commit()
        return sheet

    def prescription(
        self,
        patient: Patient,
        *,
        valid_till: date | None = None,
        prescription_type: str = "daily_monitoring",
    ) -> Prescription:
        return self._save(
            Prescription(patient_id=patient.id, valid_till=valid_till, prescription_type=prescription_type)
        )

    def rule(self, prescription: Prescription, medicine: Medicine, **kw) -> PrescriptionMedicine:
        values = dict(
            morning_count=1,
            afternoon_count=0,
            evening_count=0,
            recurrence_type="daily",
            recurrence_interval=1,
            recurrence_day_of_week=None,
            anchor_date=date(2024, 1, 1),
            is_active=True,
        )
        values.update(kw)
        return self._save(
            PrescriptionMedicine(prescription_id=prescription.id, medicine_id=medicine.id, **values)
        )


@pytest.fixture()
def factory(db):
    return Factory(db)
