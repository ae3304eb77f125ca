"""Quote repository - persistence for quote_locks.

A quote lock freezes the price of a conditional (private) plan for a short
window so a hold created within it is charged what was shown.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor


def insert_quote_lock(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    checkin: date,
    checkout: date,
    occupancy: int,
    quote: dict,
    expires_at: datetime,
) -> str:
    cur.execute(
        """
        INSERT INTO quote_locks (
            property_id, room_type_id, rate_plan_id, checkin, checkout,
            occupancy, quote, expires_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING token
        """,
        (
            property_id,
            room_type_id,
            rate_plan_id,
            checkin,
            checkout,
            occupancy,
            json.dumps(quote),
            expires_at,
        ),
    )
    return str(cur.fetchone()[0])


def get_quote_lock(cur: PgCursor, *, token: str) -> dict[str, Any] | None:
    cur.execute(
        """
        SELECT token, property_id, room_type_id, rate_plan_id, checkin, checkout,
               occupancy, quote, expires_at
        FROM quote_locks
        WHERE token = %s
        """,
        (token,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    quote = row[7]
    if isinstance(quote, str):
        quote = json.loads(quote)
    return {
        "token": str(row[0]),
        "property_id": row[1],
        "room_type_id": row[2],
        "rate_plan_id": row[3],
        "checkin": row[4],
        "checkout": row[5],
        "occupancy": row[6],
        "quote": quote,
        "expires_at": row[8],
    }
