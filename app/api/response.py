# FILE: app/api/response.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.services.errors import DosingError


def _respond(payload: Dict[str, Any], status_code: int) -> JSONResponse:
    # dates, datetimes and dataclass/pydantic values become JSON-safe here
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def ok(data: Any = None, *, status_code: int = 200) -> JSONResponse:
    """{"ok": true, "data": ...}"""
    return _respond({"ok": True, "data": data}, status_code)


def err(
    msg: str,
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """{"ok": false, "error": {"msg", "code", "details"}}"""
    return _respond(
        {"ok": False, "error": {"msg": msg, "code": code, "details": details}},
        status_code,
    )


def dosing_error(exc: DosingError) -> JSONResponse:
    """Render an engine error with its own code and HTTP status."""
    return err(str(exc), status_code=exc.status_code, code=exc.code, details=exc.details)
