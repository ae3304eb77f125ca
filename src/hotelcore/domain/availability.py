"""Availability index - free-room counts derived from allocations.

Search-time estimates only. Allocation always re-validates under the room
lock, so nothing here is authoritative for booking decisions.
"""

from __future__ import annotations

from datetime import date

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.allocation import find_available_rooms
from hotelcore.domain.dates import DateRange
from hotelcore.infra.db import txn
from hotelcore.infra.repositories.allocations_repository import count_free_rooms_by_night


def count_available(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    dates: DateRange,
) -> int:
    """Rooms of the type free for every night of the range."""
    return len(
        find_available_rooms(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            dates=dates,
        )
    )


def find_availability(property_id: str, room_type_id: str, dates: DateRange) -> int:
    """Inbound interface: count of rooms bookable for the whole stay."""
    with txn() as cur:
        return count_available(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            dates=dates,
        )


def availability_by_night(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    dates: DateRange,
) -> list[dict]:
    """Per-night free and total counts, used to build ARI deltas."""
    rows = count_free_rooms_by_night(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        checkin=dates.checkin,
        checkout=dates.checkout,
    )
    return [_night_entry(night, free, total) for night, free, total in rows]


def _night_entry(night: date, free: int, total: int) -> dict:
    return {"date": night.isoformat(), "available": max(free, 0), "total": total}
