"""Channel state repository - last delivery outcome per (property, kind).

One durable row per (property, message kind), read and written inside the
publisher's transactions. Feeds the error dashboard and lets a forced
full-sync skip content identical to what was last delivered.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def get_channel_state(cur: PgCursor, *, property_id: str, kind: str) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT property_id, kind, last_success_at, last_payload_hash,
               last_error, last_error_at, last_attempt_at
        FROM channel_state
        WHERE property_id = %s AND kind = %s
        """,
        (property_id, kind),
    )
    row = cur.fetchone()
    return _row_to_state(row) if row else None


def list_channel_state(cur: PgCursor, *, property_id: str) -> list[dict[str, Any]]:
    cur.execute(
        """
        SELECT property_id, kind, last_success_at, last_payload_hash,
               last_error, last_error_at, last_attempt_at
        FROM channel_state
        WHERE property_id = %s
        ORDER BY kind
        """,
        (property_id,),
    )
    return [_row_to_state(row) for row in cur.fetchall()]


def record_success(
    cur: PgCursor,
    *,
    property_id: str,
    kind: str,
    payload_hash: str,
    at: datetime,
) -> None:
    """Record a successful delivery and its payload fingerprint."""
    cur.execute(
        """
        INSERT INTO channel_state (
            property_id, kind, last_success_at, last_payload_hash, last_attempt_at
        )
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (property_id, kind) DO UPDATE
        SET last_success_at = EXCLUDED.last_success_at,
            last_payload_hash = EXCLUDED.last_payload_hash,
            last_attempt_at = EXCLUDED.last_attempt_at,
            updated_at = now()
        """,
        (property_id, kind, at, payload_hash, at),
    )


def record_failure(
    cur: PgCursor,
    *,
    property_id: str,
    kind: str,
    error: str,
    at: datetime,
) -> None:
    """Record the latest delivery error (success fields are kept)."""
    cur.execute(
        """
        INSERT INTO channel_state (
            property_id, kind, last_error, last_error_at, last_attempt_at
        )
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (property_id, kind) DO UPDATE
        SET last_error = EXCLUDED.last_error,
            last_error_at = EXCLUDED.last_error_at,
            last_attempt_at = EXCLUDED.last_attempt_at,
            updated_at = now()
        """,
        (property_id, kind, error, at, at),
    )


def _row_to_state(row: tuple) -> dict[str, Any]:
    return {
        "property_id": row[0],
        "kind": row[1],
        "last_success_at": row[2],
        "last_payload_hash": row[3],
        "last_error": row[4],
        "last_error_at": row[5],
        "last_attempt_at": row[6],
    }
