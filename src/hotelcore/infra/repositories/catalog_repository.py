"""Catalog repository - property, room type and room descriptions for the channel.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor


def get_property_row(cur: PgCursor, *, property_id: str) -> dict[str, Any] | None:
    cur.execute(
        "SELECT id, name, timezone, currency, active FROM properties WHERE id = %s",
        (property_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": row[0],
        "name": row[1],
        "timezone": row[2],
        "currency": row[3].strip(),
        "active": row[4],
    }


def list_room_types(cur: PgCursor, *, property_id: str) -> list[dict[str, Any]]:
    """Active room types with their active room count."""
    cur.execute(
        """
        SELECT rt.id, rt.name,
               (SELECT count(*) FROM rooms r
                WHERE r.property_id = rt.property_id
                  AND r.room_type_id = rt.id
                  AND r.status = 'active') AS room_count
        FROM room_types rt
        WHERE rt.property_id = %s AND rt.active
        ORDER BY rt.id
        """,
        (property_id,),
    )
    return [{"id": row[0], "name": row[1], "room_count": int(row[2])} for row in cur.fetchall()]
