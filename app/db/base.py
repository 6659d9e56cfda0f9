# app/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All engine tables (patients, prescriptions, medicines, sheets, executions) inherit from this."""
    pass
