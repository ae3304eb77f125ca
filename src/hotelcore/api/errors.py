"""Translate core errors into HTTP responses for worker routes."""

from __future__ import annotations

from fastapi.responses import JSONResponse

from hotelcore.domain.errors import (
    Conflict,
    CoreError,
    IdempotencyKeyMismatch,
    InvalidTransition,
    NoRate,
    NotEligible,
    RatePlanValidationError,
    ReservationNotFound,
)

_STATUS_BY_ERROR: list[tuple[type[CoreError], int]] = [
    (ReservationNotFound, 404),
    (Conflict, 409),
    (InvalidTransition, 409),
    (IdempotencyKeyMismatch, 409),
    (NotEligible, 403),
    (NoRate, 422),
    (RatePlanValidationError, 422),
]


def status_for(exc: CoreError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def error_response(exc: CoreError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"ok": False, "error": exc.code, "detail": str(exc)},
    )
