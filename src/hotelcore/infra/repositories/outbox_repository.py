"""Outbox repository - durable change events for the ARI publisher.

Uses raw SQL with psycopg2 (no ORM).

At most one pending row exists per dedupe key. A newer emit with the same key
coalesces into it: payload replaced, version bumped, retry state reset.
Writers only ever create or coalesce rows; only the publisher retires them.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from typing import Any

from psycopg2.extensions import cursor as PgCursor

OUTBOX_KINDS = ("property_data", "rate", "inventory", "availability")

_EVENT_COLUMNS = """
    id, property_id, room_type_id, rate_plan_id, date_from, date_to,
    kind, dedupe_key, payload, version, attempt_count
"""


def make_dedupe_key(
    *,
    property_id: str,
    kind: str,
    room_type_id: str | None = None,
    rate_plan_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> str:
    """Build the (property, room_type, rate_plan, date_range, kind) dedupe key."""
    return "|".join(
        (
            property_id,
            room_type_id or "*",
            rate_plan_id or "*",
            date_from.isoformat() if date_from else "*",
            date_to.isoformat() if date_to else "*",
            kind,
        )
    )


def emit(
    cur: PgCursor,
    *,
    property_id: str,
    kind: str,
    payload: dict[str, Any],
    room_type_id: str | None = None,
    rate_plan_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    correlation_id: str | None = None,
) -> int:
    """Emit (or coalesce) a change event.

    Args:
        cur: Database cursor (within the producer's transaction).
        property_id: Property identifier.
        kind: One of OUTBOX_KINDS.
        payload: Structured delta (no PII).
        room_type_id: Affected room type, if any.
        rate_plan_id: Affected rate plan, if any.
        date_from: First affected date (inclusive).
        date_to: End of affected range (exclusive).
        correlation_id: Optional correlation ID for tracing.

    Returns:
        ID of the pending outbox row holding the latest payload.

    Raises:
        ValueError: If kind is unknown.
    """
    if kind not in OUTBOX_KINDS:
        raise ValueError(f"Unknown outbox kind: {kind}")

    dedupe_key = make_dedupe_key(
        property_id=property_id,
        kind=kind,
        room_type_id=room_type_id,
        rate_plan_id=rate_plan_id,
        date_from=date_from,
        date_to=date_to,
    )

    cur.execute(
        """
        INSERT INTO outbox_events (
            property_id, room_type_id, rate_plan_id, date_from, date_to,
            kind, dedupe_key, payload, correlation_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (dedupe_key) WHERE status = 'pending'
        DO UPDATE SET
            payload = EXCLUDED.payload,
            correlation_id = EXCLUDED.correlation_id,
            version = outbox_events.version + 1,
            attempt_count = 0,
            last_error = NULL,
            next_attempt_at = now(),
            updated_at = now()
        RETURNING id
        """,
        (
            property_id,
            room_type_id,
            rate_plan_id,
            date_from,
            date_to,
            kind,
            dedupe_key,
            json.dumps(payload, default=str),
            correlation_id,
        ),
    )
    return cur.fetchone()[0]


def _row_to_event(row: tuple) -> dict[str, Any]:
    payload = row[8]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return {
        "id": row[0],
        "property_id": row[1],
        "room_type_id": row[2],
        "rate_plan_id": row[3],
        "date_from": row[4],
        "date_to": row[5],
        "kind": row[6],
        "dedupe_key": row[7],
        "payload": payload,
        "version": row[9],
        "attempt_count": row[10],
    }


def claim_due_events(
    cur: PgCursor,
    *,
    now: datetime,
    limit: int,
    lease: timedelta = timedelta(minutes=5),
) -> list[dict[str, Any]]:
    """Lease due pending events for one publish attempt.

    Rows locked by a concurrent publisher are skipped. The lease keeps other
    publishers away after this transaction commits; it is cleared when the
    attempt is recorded, or lapses if the publisher dies mid-send.
    Each claim counts as one attempt.

    Returns:
        Claimed events in emission (id) order.
    """
    cur.execute(
        f"""
        UPDATE outbox_events
        SET leased_until = %s,
            attempt_count = attempt_count + 1,
            updated_at = now()
        WHERE id IN (
            SELECT id FROM outbox_events
            WHERE status = 'pending'
              AND next_attempt_at <= %s
              AND (leased_until IS NULL OR leased_until < %s)
            ORDER BY id
            LIMIT %s
            FOR UPDATE SKIP LOCKED
        )
        RETURNING {_EVENT_COLUMNS}
        """,
        (now + lease, now, now, limit),
    )
    events = [_row_to_event(row) for row in cur.fetchall()]
    events.sort(key=lambda e: e["id"])
    return events


def mark_sent(
    cur: PgCursor,
    *,
    event_id: int,
    version: int,
    response: dict | None = None,
) -> bool:
    """Retire an event as sent, only if no newer payload coalesced into it.

    Returns:
        True if retired. False if the row was superseded meanwhile; its lease
        is released so the newer payload goes out on the next drain.
    """
    cur.execute(
        """
        UPDATE outbox_events
        SET status = 'sent', sent_at = now(), leased_until = NULL,
            last_response = %s, updated_at = now()
        WHERE id = %s AND version = %s AND status = 'pending'
        """,
        (json.dumps(response, default=str) if response else None, event_id, version),
    )
    if cur.rowcount == 1:
        return True
    release_lease(cur, event_id=event_id)
    return False


def schedule_retry(
    cur: PgCursor,
    *,
    event_id: int,
    version: int,
    error: str,
    next_attempt_at: datetime,
) -> bool:
    """Record a transient failure and push the next attempt out."""
    cur.execute(
        """
        UPDATE outbox_events
        SET last_error = %s, next_attempt_at = %s, leased_until = NULL, updated_at = now()
        WHERE id = %s AND version = %s AND status = 'pending'
        """,
        (error, next_attempt_at, event_id, version),
    )
    if cur.rowcount == 1:
        return True
    release_lease(cur, event_id=event_id)
    return False


def mark_failed(
    cur: PgCursor,
    *,
    event_id: int,
    version: int,
    error: str,
    response: dict | None = None,
) -> bool:
    """Park an event as failed; it is not retried until re-driven."""
    cur.execute(
        """
        UPDATE outbox_events
        SET status = 'failed', last_error = %s, last_response = %s,
            leased_until = NULL, updated_at = now()
        WHERE id = %s AND version = %s AND status = 'pending'
        """,
        (error, json.dumps(response, default=str) if response else None, event_id, version),
    )
    if cur.rowcount == 1:
        return True
    release_lease(cur, event_id=event_id)
    return False


def release_lease(cur: PgCursor, *, event_id: int) -> None:
    cur.execute(
        "UPDATE outbox_events SET leased_until = NULL WHERE id = %s AND status = 'pending'",
        (event_id,),
    )


def list_failed_events(cur: PgCursor, *, property_id: str, limit: int = 100) -> list[dict[str, Any]]:
    """Failed events for the error dashboard, newest first."""
    cur.execute(
        """
        SELECT id, kind, dedupe_key, attempt_count, last_error, last_response, updated_at
        FROM outbox_events
        WHERE property_id = %s AND status = 'failed'
        ORDER BY updated_at DESC
        LIMIT %s
        """,
        (property_id, limit),
    )
    return [
        {
            "id": row[0],
            "kind": row[1],
            "dedupe_key": row[2],
            "attempt_count": row[3],
            "last_error": row[4],
            "last_response": row[5],
            "updated_at": row[6],
        }
        for row in cur.fetchall()
    ]


def redrive_failed(cur: PgCursor, *, property_id: str, event_ids: list[int]) -> int:
    """Move failed events back to pending for a manual re-drive.

    Events whose dedupe key already has a newer pending row are left alone,
    the newer payload supersedes them.

    Returns:
        Number of events moved back to pending.
    """
    if not event_ids:
        return 0
    cur.execute(
        """
        UPDATE outbox_events AS e
        SET status = 'pending', attempt_count = 0, last_error = NULL,
            next_attempt_at = now(), leased_until = NULL, updated_at = now()
        WHERE e.property_id = %s
          AND e.id = ANY(%s)
          AND e.status = 'failed'
          AND NOT EXISTS (
              SELECT 1 FROM outbox_events p
              WHERE p.dedupe_key = e.dedupe_key AND p.status = 'pending'
          )
          AND e.id = (
              SELECT max(f.id) FROM outbox_events f
              WHERE f.dedupe_key = e.dedupe_key
                AND f.status = 'failed'
                AND f.id = ANY(%s)
          )
        """,
        (property_id, list(event_ids), list(event_ids)),
    )
    return cur.rowcount


def count_by_status(cur: PgCursor, *, property_id: str) -> dict[str, int]:
    cur.execute(
        """
        SELECT status, count(*)
        FROM outbox_events
        WHERE property_id = %s
        GROUP BY status
        """,
        (property_id,),
    )
    counts = {"pending": 0, "sent": 0, "failed": 0}
    counts.update({row[0]: int(row[1]) for row in cur.fetchall()})
    return counts
