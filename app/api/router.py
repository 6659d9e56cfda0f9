# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_medicine_instructions,
    routes_medicine_sheets,
    routes_prescription_medicines,
)

api_router = APIRouter()

# Dosing
api_router.include_router(routes_medicine_instructions.router)
api_router.include_router(routes_prescription_medicines.router)

# Inventory
api_router.include_router(routes_medicine_sheets.router)
