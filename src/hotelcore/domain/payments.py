"""Payment outcome handling - the idempotent contract with the payment collaborator.

The gateway adapter is out of scope; it calls on_payment_outcome() once per
delivery. Deliveries are deduplicated on (property_id, idempotency_key) and
every delivery, duplicates included, lands in the integration log.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.errors import IdempotencyKeyMismatch, InvalidTransition, ReservationNotFound
from hotelcore.domain.reservations import PAID_BUT_UNCONFIRMED, cancel, confirm
from hotelcore.infra.db import txn
from hotelcore.infra.repositories.integration_log_repository import log_integration
from hotelcore.infra.repositories.reservations_repository import (
    get_payment_outcome,
    lock_reservation,
    record_payment_outcome,
    set_payment_outcome_result,
    set_payment_state,
)
from hotelcore.observability.correlation import current_correlation_id

logger = logging.getLogger(__name__)

PaymentOutcome = Literal["succeeded", "failed"]

PAYMENT_CHANNEL = "payments"

# Already past confirmation: a payment settles the balance and nothing else
SETTLED_STATUSES = ("confirmed", "checked_in", "checked_out")


def on_payment_outcome(
    reservation_id: str,
    outcome: PaymentOutcome,
    idempotency_key: str,
    *,
    raw_payload: Any = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Apply a payment outcome to a reservation.

    succeeded -> confirm (late payments on expired holds included).
    failed    -> cancel if still a hold, otherwise record only.

    A replay with the same key, reservation and outcome returns the recorded
    result without side effects.

    Returns:
        {"status": "applied" | "duplicate", "reservation_id": str,
         "result_status": str}

    Raises:
        ValueError: If outcome is unknown.
        ReservationNotFound: If the reservation does not exist.
        IdempotencyKeyMismatch: If the key was recorded for another
            reservation or outcome.
    """
    if outcome not in ("succeeded", "failed"):
        raise ValueError(f"Unknown payment outcome: {outcome}")
    correlation_id = correlation_id or current_correlation_id()

    with txn() as cur:
        reservation = lock_reservation(cur, reservation_id=reservation_id)
        if reservation is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        property_id = reservation["property_id"]

        recorded = get_payment_outcome(cur, property_id=property_id, idempotency_key=idempotency_key)
        if recorded is None and record_payment_outcome(
            cur,
            property_id=property_id,
            idempotency_key=idempotency_key,
            reservation_id=reservation_id,
            outcome=outcome,
        ):
            result_status = _apply(cur, reservation, outcome, correlation_id)
            set_payment_outcome_result(
                cur,
                property_id=property_id,
                idempotency_key=idempotency_key,
                result_status=result_status,
            )
            log_integration(
                cur,
                direction="inbound",
                channel=PAYMENT_CHANNEL,
                status="applied",
                property_id=property_id,
                reference=idempotency_key,
                correlation_id=correlation_id,
                request_payload=raw_payload,
                response_payload={"result_status": result_status},
            )
            logger.info(
                "payment outcome applied",
                extra={
                    "extra_fields": {
                        "property_id": property_id,
                        "reservation_id": reservation_id,
                        "outcome": outcome,
                        "result_status": result_status,
                    }
                },
            )
            return {"status": "applied", "reservation_id": reservation_id, "result_status": result_status}

        if recorded is None:
            recorded = get_payment_outcome(cur, property_id=property_id, idempotency_key=idempotency_key)

        mismatch = recorded["reservation_id"] != reservation_id or recorded["outcome"] != outcome
        if mismatch:
            log_integration(
                cur,
                direction="inbound",
                channel=PAYMENT_CHANNEL,
                status="rejected",
                property_id=property_id,
                reference=idempotency_key,
                correlation_id=correlation_id,
                request_payload=raw_payload,
            )
        else:
            log_integration(
                cur,
                direction="inbound",
                channel=PAYMENT_CHANNEL,
                status="duplicate",
                property_id=property_id,
                reference=idempotency_key,
                correlation_id=correlation_id,
                request_payload=raw_payload,
                response_payload={"result_status": recorded["result_status"]},
            )

    # after commit, so the rejected delivery stays logged
    if mismatch:
        raise IdempotencyKeyMismatch("Idempotency key already used for a different payment outcome")
    return {
        "status": "duplicate",
        "reservation_id": reservation_id,
        "result_status": recorded["result_status"],
    }


def _apply(cur: PgCursor, reservation: dict[str, Any], outcome: str, correlation_id: str | None) -> str:
    reservation_id = reservation["id"]

    if outcome == "failed":
        if reservation["status"] == "hold":
            result = cancel(reservation_id, reason="payment_failed", correlation_id=correlation_id, cur=cur)
            set_payment_state(cur, reservation_id=reservation_id, payment_state="failed")
            return result["status"]
        return reservation["status"]

    if reservation["status"] in SETTLED_STATUSES:
        if reservation.get("payment_state") != "paid":
            set_payment_state(cur, reservation_id=reservation_id, payment_state="paid")
        return reservation["status"]

    try:
        result = confirm(reservation_id, payment_state="paid", correlation_id=correlation_id, cur=cur)
    except InvalidTransition:
        # Money arrived for a reservation that can no longer be confirmed
        set_payment_state(
            cur,
            reservation_id=reservation_id,
            payment_state="paid",
            reconciliation_note=PAID_BUT_UNCONFIRMED,
        )
        logger.warning(
            "payment received for unconfirmable reservation",
            extra={
                "extra_fields": {
                    "property_id": reservation["property_id"],
                    "reservation_id": reservation_id,
                    "status": reservation["status"],
                }
            },
        )
        return reservation["status"]
    return result["status"]
