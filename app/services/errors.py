# FILE: app/services/errors.py
from __future__ import annotations

from typing import Any, Optional


class DosingError(RuntimeError):
    """
    Base for every failure the engine reports to callers.
    code/status_code are rendered by the API exception handler.
    """
    code = "DOSING_ERROR"
    status_code = 400

    def __init__(self, msg: str, *, details: Optional[Any] = None):
        super().__init__(msg)
        self.details = details


class InvalidRule(DosingError):
    code = "INVALID_RULE"
    status_code = 400


class InvalidSheetUpdate(DosingError):
    code = "INVALID_SHEET_UPDATE"
    status_code = 400


class NotFound(DosingError):
    code = "NOT_FOUND"
    status_code = 404


class DuplicateRule(DosingError):
    code = "DUPLICATE_RULE"
    status_code = 409


# -------------------------
# Stock
# -------------------------
class StockError(DosingError):
    status_code = 409


class NoStock(StockError):
    code = "NO_STOCK"


class InsufficientStock(StockError):
    code = "INSUFFICIENT_STOCK"


class ExpiredStock(StockError):
    code = "EXPIRED_STOCK"
