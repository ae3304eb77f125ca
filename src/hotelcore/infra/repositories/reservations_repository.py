"""Reservations repository - persistence for reservations and reservation_lines.

Uses raw SQL with psycopg2 (no ORM).
Status changes are compare-and-set against the expected current status, so a
lost race shows up as rowcount 0 rather than a silent overwrite.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor

from hotelcore.infra.db import for_update

_RESERVATION_COLUMNS = """
    id, property_id, status, checkin, checkout, hold_expires_at,
    payment_state, reconciliation_note, cancel_reason,
    total_amount, currency, guest_name, guest_email, guest_phone,
    created_at, updated_at
"""


def _row_to_reservation(row: tuple) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "property_id": row[1],
        "status": row[2],
        "checkin": row[3],
        "checkout": row[4],
        "hold_expires_at": row[5],
        "payment_state": row[6],
        "reconciliation_note": row[7],
        "cancel_reason": row[8],
        "total_amount": row[9],
        "currency": row[10],
        "guest_name": row[11],
        "guest_email": row[12],
        "guest_phone": row[13],
        "created_at": row[14],
        "updated_at": row[15],
    }


def insert_reservation(
    cur: PgCursor,
    *,
    property_id: str,
    status: str,
    checkin: date,
    checkout: date,
    currency: str,
    hold_expires_at: datetime | None = None,
    guest_name: str | None = None,
    guest_email: str | None = None,
    guest_phone: str | None = None,
    create_idempotency_key: str | None = None,
    payment_state: str | None = None,
) -> tuple[str, bool]:
    """Insert a reservation with idempotency.

    Uses ON CONFLICT DO NOTHING on (property_id, create_idempotency_key) so a
    retried create returns the original row instead of a second reservation.

    Returns:
        Tuple of (reservation_id, created).
    """
    cur.execute(
        """
        INSERT INTO reservations (
            property_id, status, checkin, checkout, hold_expires_at, currency,
            guest_name, guest_email, guest_phone, create_idempotency_key, payment_state
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (property_id, create_idempotency_key)
        WHERE create_idempotency_key IS NOT NULL
        DO NOTHING
        RETURNING id
        """,
        (
            property_id,
            status,
            checkin,
            checkout,
            hold_expires_at,
            currency,
            guest_name,
            guest_email,
            guest_phone,
            create_idempotency_key,
            payment_state,
        ),
    )
    row = cur.fetchone()
    if row is not None:
        return str(row[0]), True

    cur.execute(
        """
        SELECT id FROM reservations
        WHERE property_id = %s AND create_idempotency_key = %s
        """,
        (property_id, create_idempotency_key),
    )
    row = cur.fetchone()
    if row is None:
        raise RuntimeError("reservation insert conflicted but no existing row was found")
    return str(row[0]), False


def insert_reservation_line(
    cur: PgCursor,
    *,
    reservation_id: str,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    quantity: int,
    occupancy: int,
    pricing_snapshot: dict,
    total_amount: Decimal,
) -> str:
    cur.execute(
        """
        INSERT INTO reservation_lines (
            reservation_id, property_id, room_type_id, rate_plan_id,
            quantity, occupancy, pricing_snapshot, total_amount
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            reservation_id,
            property_id,
            room_type_id,
            rate_plan_id,
            quantity,
            occupancy,
            json.dumps(pricing_snapshot),
            total_amount,
        ),
    )
    return str(cur.fetchone()[0])


def set_total_amount(cur: PgCursor, *, reservation_id: str, total_amount: Decimal) -> None:
    cur.execute(
        """
        UPDATE reservations
        SET total_amount = %s, updated_at = now()
        WHERE id = %s
        """,
        (total_amount, reservation_id),
    )


def lock_reservation(
    cur: PgCursor,
    *,
    reservation_id: str,
    property_id: str | None = None,
) -> dict[str, Any] | None:
    """SELECT ... FOR UPDATE on one reservation.

    All transitions of a reservation serialize on this row lock.
    """
    query = f"SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE id = %s"
    params: list[Any] = [reservation_id]
    if property_id is not None:
        query += " AND property_id = %s"
        params.append(property_id)
    row = for_update(cur, query, params)
    return _row_to_reservation(row) if row is not None else None


def get_reservation_by_idempotency_key(
    cur: PgCursor,
    *,
    property_id: str,
    create_idempotency_key: str,
) -> dict[str, Any] | None:
    cur.execute(
        f"""
        SELECT {_RESERVATION_COLUMNS} FROM reservations
        WHERE property_id = %s AND create_idempotency_key = %s
        """,
        (property_id, create_idempotency_key),
    )
    row = cur.fetchone()
    return _row_to_reservation(row) if row is not None else None


def get_reservation_lines(cur: PgCursor, *, reservation_id: str) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT id, room_type_id, rate_plan_id, quantity, occupancy,
               pricing_snapshot, total_amount
        FROM reservation_lines
        WHERE reservation_id = %s
        ORDER BY created_at, id
        """,
        (reservation_id,),
    )
    lines = []
    for row in cur.fetchall():
        snapshot = row[5]
        if isinstance(snapshot, str):
            snapshot = json.loads(snapshot)
        lines.append(
            {
                "id": str(row[0]),
                "room_type_id": row[1],
                "rate_plan_id": row[2],
                "quantity": row[3],
                "occupancy": row[4],
                "pricing_snapshot": snapshot,
                "total_amount": row[6],
            }
        )
    return lines


def update_status(
    cur: PgCursor,
    *,
    reservation_id: str,
    from_statuses: Sequence[str],
    to_status: str,
    hold_expires_at: datetime | None = None,
    payment_state: str | None = None,
    reconciliation_note: str | None = None,
    cancel_reason: str | None = None,
) -> bool:
    """Compare-and-set the status of a reservation.

    hold_expires_at is written as given (None clears it). payment_state,
    reconciliation_note and cancel_reason are only written when not None.

    Returns:
        True if the row was in one of from_statuses and got updated.
    """
    cur.execute(
        """
        UPDATE reservations
        SET status = %s,
            hold_expires_at = %s,
            payment_state = COALESCE(%s, payment_state),
            reconciliation_note = COALESCE(%s, reconciliation_note),
            cancel_reason = COALESCE(%s, cancel_reason),
            updated_at = now()
        WHERE id = %s AND status = ANY(%s)
        """,
        (
            to_status,
            hold_expires_at,
            payment_state,
            reconciliation_note,
            cancel_reason,
            reservation_id,
            list(from_statuses),
        ),
    )
    return cur.rowcount == 1


def set_payment_state(
    cur: PgCursor,
    *,
    reservation_id: str,
    payment_state: str,
    reconciliation_note: str | None = None,
) -> None:
    cur.execute(
        """
        UPDATE reservations
        SET payment_state = %s,
            reconciliation_note = COALESCE(%s, reconciliation_note),
            updated_at = now()
        WHERE id = %s
        """,
        (payment_state, reconciliation_note, reservation_id),
    )


def list_expired_holds(cur: PgCursor, *, now: datetime, limit: int) -> list[tuple[str, str]]:
    """Return (reservation_id, property_id) for holds whose TTL has passed.

    A hold expiring exactly at `now` is included.
    """
    cur.execute(
        """
        SELECT id, property_id
        FROM reservations
        WHERE status = 'hold' AND hold_expires_at <= %s
        ORDER BY hold_expires_at, id
        LIMIT %s
        """,
        (now, limit),
    )
    return [(str(row[0]), row[1]) for row in cur.fetchall()]


def record_payment_outcome(
    cur: PgCursor,
    *,
    property_id: str,
    idempotency_key: str,
    reservation_id: str,
    outcome: str,
) -> bool:
    """Claim a payment outcome delivery. Returns False if already seen."""
    cur.execute(
        """
        INSERT INTO payment_outcomes (property_id, idempotency_key, reservation_id, outcome)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (property_id, idempotency_key) DO NOTHING
        """,
        (property_id, idempotency_key, reservation_id, outcome),
    )
    return cur.rowcount == 1


def set_payment_outcome_result(
    cur: PgCursor,
    *,
    property_id: str,
    idempotency_key: str,
    result_status: str,
) -> None:
    cur.execute(
        """
        UPDATE payment_outcomes SET result_status = %s
        WHERE property_id = %s AND idempotency_key = %s
        """,
        (result_status, property_id, idempotency_key),
    )


def get_payment_outcome(
    cur: PgCursor,
    *,
    property_id: str,
    idempotency_key: str,
) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT reservation_id, outcome, result_status
        FROM payment_outcomes
        WHERE property_id = %s AND idempotency_key = %s
        """,
        (property_id, idempotency_key),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"reservation_id": str(row[0]), "outcome": row[1], "result_status": row[2]}
