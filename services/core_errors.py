

# services/core_errors.py
from __future__ import annotations

from fastapi import HTTPException

from app.errors import CoreError

CORE_ERROR_HTTP_MAP: dict[str, tuple[int, str]] = {
    "INVALID_AMOUNT": (422, "Invalid amount"),
    "INVALID_FEE": (422, "Invalid fee"),
    "PHONE_FORMAT": (422, "Invalid phone number"),
    "INVALID_REFUND_REQUEST": (400, None),
    "REFUND_NOT_FOUND": (404, "Refund not found"),
    "INVALID_TRANSITION": (409, "Refund already processed"),
    "GATEWAY_TIMEOUT": (504, "Gateway timeout"),
    "GATEWAY_UNAVAILABLE": (503, "Gateway unavailable"),
}


def error_kind(exc: Exception) -> str | None:
    if isinstance(exc, CoreError):
        return exc.error_kind
    return None


def raise_http_from_core_error(exc: Exception) -> None:
    """
    Convert core errors into HTTP responses; otherwise fail closed.
    A None message in the map means the error's own message is safe to show.
    """
    kind = error_kind(exc)
    if kind and kind in CORE_ERROR_HTTP_MAP:
        status, message = CORE_ERROR_HTTP_MAP[kind]
        detail = message if message is not None else getattr(exc, "message", kind)
        raise HTTPException(status_code=status, detail=detail)

    raise HTTPException(status_code=500, detail="Internal server error")
