"""Worker task routes: hold sweep, outbox drain, payment outcomes.

Called by the scheduler / task queue. A 5xx response makes the caller retry,
so only unexpected failures return one; every handled outcome is a 2xx or a
4xx the caller should not retry.
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hotelcore.api.deps import get_publisher, get_sweeper
from hotelcore.api.errors import error_response
from hotelcore.api.task_auth import require_task_auth
from hotelcore.channel.publisher import AriPublisher
from hotelcore.domain.errors import CoreError
from hotelcore.domain.payments import on_payment_outcome
from hotelcore.domain.sweeper import HoldExpirySweeper
from hotelcore.observability.logging import get_logger
from hotelcore.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks", tags=["tasks"], dependencies=[Depends(require_task_auth)])

logger = get_logger(__name__)


class PaymentOutcomeRequest(BaseModel):
    reservation_id: str = Field(min_length=1)
    outcome: Literal["succeeded", "failed"]
    idempotency_key: str = Field(min_length=1)
    raw_payload: dict[str, Any] | None = None


def _failure(message: str, **context: Any) -> JSONResponse:
    logger.exception(
        message,
        extra={"extra_fields": safe_log_context(**context)},
    )
    return JSONResponse(status_code=500, content={"ok": False, "error": "processing failed"})


@router.post("/holds/sweep")
def sweep_holds(sweeper: HoldExpirySweeper = Depends(get_sweeper)) -> JSONResponse:
    """Run one hold expiry pass."""
    try:
        counts = sweeper.run_once()
    except Exception:
        return _failure("hold sweep failed")
    return JSONResponse(status_code=200, content={"ok": True, **counts})


@router.post("/ari/drain")
def drain_outbox(publisher: AriPublisher = Depends(get_publisher)) -> JSONResponse:
    """Run one outbox drain pass."""
    try:
        counts = publisher.drain()
    except Exception:
        return _failure("outbox drain failed")
    return JSONResponse(status_code=200, content={"ok": True, **counts})


@router.post("/payments/outcome")
def payment_outcome(body: PaymentOutcomeRequest) -> JSONResponse:
    """Apply a payment collaborator outcome. Replays return the recorded result."""
    logger.info(
        "payment outcome received",
        extra={
            "extra_fields": safe_log_context(
                reservation_id=body.reservation_id,
                outcome=body.outcome,
            )
        },
    )
    try:
        result = on_payment_outcome(
            body.reservation_id,
            body.outcome,
            body.idempotency_key,
            raw_payload=body.raw_payload,
        )
    except CoreError as e:
        logger.warning(
            "payment outcome rejected",
            extra={"extra_fields": safe_log_context(error=e.code, reservation_id=body.reservation_id)},
        )
        return error_response(e)
    except Exception:
        return _failure("payment outcome failed", reservation_id=body.reservation_id)
    return JSONResponse(status_code=200, content={"ok": True, **result})
