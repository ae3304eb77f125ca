"""Reservation state machine - holds, confirmation, expiry, cancellation, stay.

Lifecycle:
    hold -> confirmed | cancelled | expired
    confirmed -> cancelled | checked_in
    checked_in -> checked_out
    expired -> confirmed   (late payment, fresh allocation)

Every transition runs in one transaction that first locks the reservation
row. Inventory-changing transitions (hold creation, pay-on-arrival creation,
confirm, expire, cancel) emit exactly one batch of inventory/availability
deltas from that same transaction. A no-op replay emits nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Sequence

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.allocation import allocate_units, lock_candidate_rooms
from hotelcore.domain.ari_events import emit_inventory_deltas
from hotelcore.domain.dates import DateRange
from hotelcore.domain.errors import (
    Conflict,
    IdempotencyKeyMismatch,
    InvalidTransition,
    ReservationNotFound,
)
from hotelcore.domain.pricing import GuestContext, PriceQuote
from hotelcore.domain.quote import quote, resolve_quote_lock
from hotelcore.infra.db import savepoint, txn
from hotelcore.infra.property_settings import get_property_settings
from hotelcore.infra.repositories.allocations_repository import release_reservation_allocations
from hotelcore.infra.repositories.reservations_repository import (
    get_reservation_by_idempotency_key,
    get_reservation_lines,
    insert_reservation,
    insert_reservation_line,
    lock_reservation,
    set_total_amount,
    update_status,
)
from hotelcore.infra.time import utc_now
from hotelcore.observability.correlation import current_correlation_id

logger = logging.getLogger(__name__)

HOLD_TTL = timedelta(minutes=10)

PAID_BUT_UNCONFIRMED = "paid_but_unconfirmed"

TRANSITIONS: dict[str, frozenset[str]] = {
    "hold": frozenset({"confirmed", "cancelled", "expired"}),
    "confirmed": frozenset({"cancelled", "checked_in"}),
    "checked_in": frozenset({"checked_out"}),
    "expired": frozenset({"confirmed"}),
    "cancelled": frozenset(),
    "checked_out": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


@dataclass(frozen=True)
class HoldLine:
    """One requested line: quantity rooms of a type under a plan.

    room_id pins a specific physical room (quantity must be 1); otherwise
    rooms are auto-assigned. quote_token reuses a locked quote.
    """

    room_type_id: str
    rate_plan_id: str
    quantity: int = 1
    occupancy: int = 2
    room_id: str | None = None
    quote_token: str | None = None


@dataclass(frozen=True)
class GuestContact:
    name: str | None = None
    email: str | None = None
    phone: str | None = None


def _affected_pairs(lines: Iterable[dict[str, Any]]) -> list[tuple[str, str]]:
    return sorted({(line["room_type_id"], line["rate_plan_id"]) for line in lines})


def _summary(reservation: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {
        "reservation_id": reservation["id"],
        "status": reservation["status"],
        "hold_expires_at": reservation["hold_expires_at"],
        "total_amount": reservation["total_amount"],
        "currency": reservation["currency"],
        **extra,
    }


def _price_line(
    cur: PgCursor,
    *,
    property_id: str,
    line: HoldLine,
    dates: DateRange,
    guest: GuestContext,
    now: datetime,
) -> PriceQuote:
    if line.quote_token:
        locked = resolve_quote_lock(
            cur,
            token=line.quote_token,
            property_id=property_id,
            room_type_id=line.room_type_id,
            rate_plan_id=line.rate_plan_id,
            dates=dates,
            occupancy=line.occupancy,
            now=now,
        )
        if locked is not None:
            return locked
        logger.info(
            "quote lock unusable, re-quoting",
            extra={
                "extra_fields": {
                    "property_id": property_id,
                    "room_type_id": line.room_type_id,
                    "rate_plan_id": line.rate_plan_id,
                }
            },
        )
    return quote(
        property_id=property_id,
        room_type_id=line.room_type_id,
        rate_plan_id=line.rate_plan_id,
        dates=dates,
        occupancy=line.occupancy,
        guest=guest,
        now=now,
        lock=False,
        cur=cur,
    )


def _create(
    cur: PgCursor,
    *,
    status: str,
    property_id: str,
    dates: DateRange,
    lines: Sequence[HoldLine],
    contact: GuestContact | None,
    guest: GuestContext | None,
    idempotency_key: str | None,
    payment_state: str | None,
    now: datetime,
    correlation_id: str | None,
) -> dict[str, Any]:
    if not lines:
        raise ValueError("at least one line is required")
    for line in lines:
        if line.quantity < 1:
            raise ValueError("line quantity must be at least 1")
        if line.room_id is not None and line.quantity != 1:
            raise ValueError("a specific room can only be requested for quantity 1")

    if idempotency_key:
        existing = get_reservation_by_idempotency_key(
            cur, property_id=property_id, create_idempotency_key=idempotency_key
        )
        if existing is not None:
            return _replayed(existing, dates)

    guest = guest or GuestContext()
    contact = contact or GuestContact()
    settings = get_property_settings(cur, property_id)

    # Price before taking any room lock
    quotes = [
        _price_line(cur, property_id=property_id, line=line, dates=dates, guest=guest, now=now)
        for line in lines
    ]

    reservation_id, created = insert_reservation(
        cur,
        property_id=property_id,
        status=status,
        checkin=dates.checkin,
        checkout=dates.checkout,
        currency=settings.currency,
        hold_expires_at=now + HOLD_TTL if status == "hold" else None,
        guest_name=contact.name,
        guest_email=contact.email,
        guest_phone=contact.phone,
        create_idempotency_key=idempotency_key,
        payment_state=payment_state,
    )
    if not created:
        # Concurrent request with the same key committed first
        existing = get_reservation_by_idempotency_key(
            cur, property_id=property_id, create_idempotency_key=idempotency_key
        )
        return _replayed(existing, dates)

    lock_candidate_rooms(
        cur,
        property_id=property_id,
        requests=[(line.room_type_id, line.room_id) for line in lines],
    )
    total = Decimal("0.00")
    allocation_ids: list[str] = []
    for line, price in zip(lines, quotes):
        line_total = price.total * line.quantity
        line_id = insert_reservation_line(
            cur,
            reservation_id=reservation_id,
            property_id=property_id,
            room_type_id=line.room_type_id,
            rate_plan_id=line.rate_plan_id,
            quantity=line.quantity,
            occupancy=line.occupancy,
            pricing_snapshot=price.to_dict(),
            total_amount=line_total,
        )
        allocation_ids.extend(
            allocate_units(
                cur,
                property_id=property_id,
                room_type_id=line.room_type_id,
                dates=dates,
                reservation_id=reservation_id,
                reservation_line_id=line_id,
                quantity=line.quantity,
                room_id=line.room_id,
            )
        )
        total += line_total

    set_total_amount(cur, reservation_id=reservation_id, total_amount=total)

    emit_inventory_deltas(
        cur,
        property_id=property_id,
        dates=dates,
        affected=[(line.room_type_id, line.rate_plan_id) for line in lines],
        reason="hold_created" if status == "hold" else "reservation_confirmed",
        correlation_id=correlation_id,
    )

    logger.info(
        "reservation created",
        extra={
            "extra_fields": {
                "property_id": property_id,
                "reservation_id": reservation_id,
                "status": status,
                "checkin": dates.checkin.isoformat(),
                "checkout": dates.checkout.isoformat(),
                "rooms": len(allocation_ids),
            }
        },
    )

    return {
        "reservation_id": reservation_id,
        "status": status,
        "hold_expires_at": now + HOLD_TTL if status == "hold" else None,
        "total_amount": total,
        "currency": settings.currency,
        "allocation_ids": allocation_ids,
        "created": True,
    }


def _replayed(existing: dict[str, Any], dates: DateRange) -> dict[str, Any]:
    if existing["checkin"] != dates.checkin or existing["checkout"] != dates.checkout:
        raise IdempotencyKeyMismatch("Idempotency key already used for a different stay")
    return _summary(existing, created=False)


def create_hold(
    *,
    property_id: str,
    dates: DateRange,
    lines: Sequence[HoldLine],
    contact: GuestContact | None = None,
    guest: GuestContext | None = None,
    idempotency_key: str | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> dict[str, Any]:
    """Create a hold: price, allocate every unit and start the TTL, atomically.

    Args:
        property_id: Property identifier.
        dates: Stay range shared by all lines.
        lines: Requested lines.
        contact: Guest contact details stored on the reservation.
        guest: Pricing context (login, tier, promo...).
        idempotency_key: Optional key; a replay returns the original hold.
        now: Reference instant (defaults to the clock).
        correlation_id: Optional correlation ID for tracing.
        cur: Optional cursor to join a larger transaction.

    Returns:
        Dict with reservation_id, status, hold_expires_at, total_amount,
        currency, allocation_ids (new holds only) and created.

    Raises:
        Conflict: If any unit cannot be allocated; nothing is kept.
        NotEligible: If the guest may not book a line's plan.
        NoRate: If any night of any line has no price.
        IdempotencyKeyMismatch: If the key was used for a different stay.
    """
    if cur is None:
        with txn() as own_cur:
            return create_hold(
                property_id=property_id,
                dates=dates,
                lines=lines,
                contact=contact,
                guest=guest,
                idempotency_key=idempotency_key,
                now=now,
                correlation_id=correlation_id,
                cur=own_cur,
            )

    return _create(
        cur,
        status="hold",
        property_id=property_id,
        dates=dates,
        lines=lines,
        contact=contact,
        guest=guest,
        idempotency_key=idempotency_key,
        payment_state=None,
        now=now or utc_now(),
        correlation_id=correlation_id or current_correlation_id(),
    )


def create_confirmed(
    *,
    property_id: str,
    dates: DateRange,
    lines: Sequence[HoldLine],
    contact: GuestContact | None = None,
    guest: GuestContext | None = None,
    idempotency_key: str | None = None,
    payment_state: str = "pay_on_arrival",
    now: datetime | None = None,
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> dict[str, Any]:
    """Pay-on-arrival path: allocate and confirm in one transaction, no hold."""
    if cur is None:
        with txn() as own_cur:
            return create_confirmed(
                property_id=property_id,
                dates=dates,
                lines=lines,
                contact=contact,
                guest=guest,
                idempotency_key=idempotency_key,
                payment_state=payment_state,
                now=now,
                correlation_id=correlation_id,
                cur=own_cur,
            )

    return _create(
        cur,
        status="confirmed",
        property_id=property_id,
        dates=dates,
        lines=lines,
        contact=contact,
        guest=guest,
        idempotency_key=idempotency_key,
        payment_state=payment_state,
        now=now or utc_now(),
        correlation_id=correlation_id or current_correlation_id(),
    )


def _lock(cur: PgCursor, reservation_id: str) -> dict[str, Any]:
    reservation = lock_reservation(cur, reservation_id=reservation_id)
    if reservation is None:
        raise ReservationNotFound(f"Reservation {reservation_id} not found")
    return reservation


def confirm(
    reservation_id: str,
    *,
    payment_state: str = "paid",
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> dict[str, Any]:
    """Confirm a reservation. Idempotent.

    From hold: status -> confirmed, TTL cleared, deltas emitted.
    From expired (late payment): rooms are re-allocated with fresh rows. If
    any unit is no longer free the reservation becomes cancelled with a
    paid_but_unconfirmed reconciliation note and no event is emitted.
    Already confirmed (or further along) with the same payment state: no-op.

    Returns:
        Dict with reservation_id, status, changed and reconciliation_note.

    Raises:
        ReservationNotFound: If the reservation does not exist.
        InvalidTransition: From cancelled, or on a replay whose payment state
            differs from the recorded one.
    """
    if cur is None:
        with txn() as own_cur:
            return confirm(
                reservation_id,
                payment_state=payment_state,
                correlation_id=correlation_id,
                cur=own_cur,
            )

    correlation_id = correlation_id or current_correlation_id()
    reservation = _lock(cur, reservation_id)
    status = reservation["status"]

    if status in ("confirmed", "checked_in", "checked_out"):
        recorded = reservation["payment_state"]
        if recorded is not None and recorded != payment_state:
            raise InvalidTransition(
                status,
                "confirmed",
                "Reservation already confirmed with a different payment state",
            )
        return _summary(reservation, changed=False, reconciliation_note=reservation["reconciliation_note"])

    if status == "cancelled" and reservation["reconciliation_note"] == PAID_BUT_UNCONFIRMED:
        return _summary(reservation, changed=False, reconciliation_note=PAID_BUT_UNCONFIRMED)

    ensure_transition(status, "confirmed")
    lines = get_reservation_lines(cur, reservation_id=reservation_id)
    dates = DateRange(reservation["checkin"], reservation["checkout"])

    if status == "expired":
        lock_candidate_rooms(
            cur,
            property_id=reservation["property_id"],
            requests=[(line["room_type_id"], None) for line in lines],
        )
        try:
            with savepoint(cur):
                for line in lines:
                    allocate_units(
                        cur,
                        property_id=reservation["property_id"],
                        room_type_id=line["room_type_id"],
                        dates=dates,
                        reservation_id=reservation_id,
                        reservation_line_id=line["id"],
                        quantity=line["quantity"],
                    )
        except Conflict:
            update_status(
                cur,
                reservation_id=reservation_id,
                from_statuses=("expired",),
                to_status="cancelled",
                payment_state=payment_state,
                reconciliation_note=PAID_BUT_UNCONFIRMED,
                cancel_reason="late_payment_no_availability",
            )
            logger.warning(
                "late payment could not be honoured",
                extra={
                    "extra_fields": {
                        "property_id": reservation["property_id"],
                        "reservation_id": reservation_id,
                        "reconciliation_note": PAID_BUT_UNCONFIRMED,
                    }
                },
            )
            return _summary(
                {**reservation, "status": "cancelled"},
                changed=True,
                reconciliation_note=PAID_BUT_UNCONFIRMED,
            )

    update_status(
        cur,
        reservation_id=reservation_id,
        from_statuses=(status,),
        to_status="confirmed",
        hold_expires_at=None,
        payment_state=payment_state,
    )
    emit_inventory_deltas(
        cur,
        property_id=reservation["property_id"],
        dates=dates,
        affected=_affected_pairs(lines),
        reason="reservation_confirmed" if status == "hold" else "late_payment_confirmed",
        correlation_id=correlation_id,
    )
    logger.info(
        "reservation confirmed",
        extra={
            "extra_fields": {
                "property_id": reservation["property_id"],
                "reservation_id": reservation_id,
                "from_status": status,
            }
        },
    )
    return _summary(
        {**reservation, "status": "confirmed", "hold_expires_at": None},
        changed=True,
        reconciliation_note=None,
    )


def expire(
    reservation_id: str,
    *,
    now: datetime | None = None,
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> dict[str, Any]:
    """Expire a hold whose TTL has passed and release its rooms.

    Never raises for a lost race: a reservation that is missing, no longer a
    hold, or not yet due yields a status instead.

    Returns:
        {"status": "noop"} | {"status": "not_expired_yet"} |
        {"status": "expired", "reservation_id": str, "allocations_released": int}
    """
    if cur is None:
        with txn() as own_cur:
            return expire(reservation_id, now=now, correlation_id=correlation_id, cur=own_cur)

    now = now or utc_now()
    reservation = lock_reservation(cur, reservation_id=reservation_id)
    if reservation is None or reservation["status"] != "hold":
        return {"status": "noop"}
    if now < reservation["hold_expires_at"]:
        return {"status": "not_expired_yet"}

    if not update_status(
        cur,
        reservation_id=reservation_id,
        from_statuses=("hold",),
        to_status="expired",
        hold_expires_at=None,
    ):
        return {"status": "noop"}

    released = release_reservation_allocations(cur, reservation_id=reservation_id)
    lines = get_reservation_lines(cur, reservation_id=reservation_id)
    emit_inventory_deltas(
        cur,
        property_id=reservation["property_id"],
        dates=DateRange(reservation["checkin"], reservation["checkout"]),
        affected=_affected_pairs(lines),
        reason="hold_expired",
        correlation_id=correlation_id or current_correlation_id(),
    )
    logger.info(
        "hold expired",
        extra={
            "extra_fields": {
                "property_id": reservation["property_id"],
                "reservation_id": reservation_id,
                "allocations_released": released,
            }
        },
    )
    return {
        "status": "expired",
        "reservation_id": reservation_id,
        "allocations_released": released,
    }


def cancel(
    reservation_id: str,
    *,
    reason: str | None = None,
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> dict[str, Any]:
    """Cancel a hold or confirmed reservation and release its rooms.

    Cancelling an already cancelled reservation is a no-op.

    Raises:
        ReservationNotFound: If the reservation does not exist.
        InvalidTransition: From expired, checked_in or checked_out.
    """
    if cur is None:
        with txn() as own_cur:
            return cancel(reservation_id, reason=reason, correlation_id=correlation_id, cur=own_cur)

    reservation = _lock(cur, reservation_id)
    status = reservation["status"]
    if status == "cancelled":
        return _summary(reservation, changed=False, allocations_released=0)
    ensure_transition(status, "cancelled")

    update_status(
        cur,
        reservation_id=reservation_id,
        from_statuses=(status,),
        to_status="cancelled",
        hold_expires_at=None,
        cancel_reason=reason,
    )
    released = release_reservation_allocations(cur, reservation_id=reservation_id)
    lines = get_reservation_lines(cur, reservation_id=reservation_id)
    emit_inventory_deltas(
        cur,
        property_id=reservation["property_id"],
        dates=DateRange(reservation["checkin"], reservation["checkout"]),
        affected=_affected_pairs(lines),
        reason="reservation_cancelled",
        correlation_id=correlation_id or current_correlation_id(),
    )
    logger.info(
        "reservation cancelled",
        extra={
            "extra_fields": {
                "property_id": reservation["property_id"],
                "reservation_id": reservation_id,
                "from_status": status,
                "allocations_released": released,
            }
        },
    )
    return _summary(
        {**reservation, "status": "cancelled", "hold_expires_at": None},
        changed=True,
        allocations_released=released,
    )


def _stay_transition(reservation_id: str, target: str, cur: PgCursor) -> dict[str, Any]:
    reservation = _lock(cur, reservation_id)
    status = reservation["status"]
    ensure_transition(status, target)
    update_status(
        cur,
        reservation_id=reservation_id,
        from_statuses=(status,),
        to_status=target,
    )
    logger.info(
        "reservation stay transition",
        extra={
            "extra_fields": {
                "property_id": reservation["property_id"],
                "reservation_id": reservation_id,
                "from_status": status,
                "to_status": target,
            }
        },
    )
    return _summary({**reservation, "status": target}, changed=True)


def check_in(reservation_id: str, *, cur: PgCursor | None = None) -> dict[str, Any]:
    """confirmed -> checked_in. Rooms stay allocated; nothing is emitted."""
    if cur is None:
        with txn() as own_cur:
            return _stay_transition(reservation_id, "checked_in", own_cur)
    return _stay_transition(reservation_id, "checked_in", cur)


def check_out(reservation_id: str, *, cur: PgCursor | None = None) -> dict[str, Any]:
    """checked_in -> checked_out."""
    if cur is None:
        with txn() as own_cur:
            return _stay_transition(reservation_id, "checked_out", own_cur)
    return _stay_transition(reservation_id, "checked_out", cur)
