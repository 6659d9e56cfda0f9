# app/api/deps.py
from __future__ import annotations

from datetime import date
from typing import Generator

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.utils.timezone import today_local


# =========================================================
# DB (per request)
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =========================================================
# CALENDAR
# =========================================================
def get_today() -> date:
    """
    The clinic's current date. Services never read the clock themselves;
    routes pass this in (tests override the dependency).
    """
    return today_local()
