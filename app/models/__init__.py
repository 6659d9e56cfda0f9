# app/models/__init__.py
from .medicine import Medicine, MedicineSheet, SheetTransaction
from .prescription import (
    Patient,
    Prescription,
    PrescriptionMedicine,
    MedicineExecution,
)
__all__ = [
    "Medicine",
    "MedicineSheet",
    "SheetTransaction",
    "Patient",
    "Prescription",
    "PrescriptionMedicine",
    "MedicineExecution",
]
