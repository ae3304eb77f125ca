"""Integration log repository - diagnostics for replay.

Every inbound webhook and every outbound publish attempt is persisted with
its correlation id, raw request, response and status.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from psycopg2.extensions import cursor as PgCursor

Direction = Literal["inbound", "outbound"]


def log_integration(
    cur: PgCursor,
    *,
    direction: Direction,
    channel: str,
    status: str,
    property_id: str | None = None,
    reference: str | None = None,
    correlation_id: str | None = None,
    request_payload: Any = None,
    response_payload: Any = None,
    http_status: int | None = None,
) -> int:
    """Insert one diagnostics row.

    Args:
        cur: Database cursor.
        direction: "inbound" (webhook) or "outbound" (publish attempt).
        channel: Collaborator name, e.g. "payments" or "ari".
        status: Outcome label, e.g. "ok", "transient_error", "duplicate".
        property_id: Property identifier, when known.
        reference: Idempotency key or batch reference.
        correlation_id: Correlation ID for tracing.
        request_payload: Raw inbound payload or outbound batch body.
        response_payload: Response body, when any.
        http_status: Transport status code, when any.

    Returns:
        The generated log row ID.
    """
    cur.execute(
        """
        INSERT INTO integration_log (
            property_id, direction, channel, reference, correlation_id,
            request_payload, response_payload, http_status, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            property_id,
            direction,
            channel,
            reference,
            correlation_id,
            json.dumps(request_payload, default=str) if request_payload is not None else None,
            json.dumps(response_payload, default=str) if response_payload is not None else None,
            http_status,
            status,
        ),
    )
    return cur.fetchone()[0]


def list_integration_log(
    cur: PgCursor,
    *,
    property_id: str,
    direction: Direction | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Recent diagnostics rows for a property, newest first."""
    cur.execute(
        """
        SELECT id, direction, channel, reference, correlation_id,
               http_status, status, created_at
        FROM integration_log
        WHERE property_id = %s
          AND (%s IS NULL OR direction = %s)
        ORDER BY created_at DESC, id DESC
        LIMIT %s
        """,
        (property_id, direction, direction, limit),
    )
    return [
        {
            "id": row[0],
            "direction": row[1],
            "channel": row[2],
            "reference": row[3],
            "correlation_id": row[4],
            "http_status": row[5],
            "status": row[6],
            "created_at": row[7],
        }
        for row in cur.fetchall()
    ]
