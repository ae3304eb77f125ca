"""Room allocations repository - physical room assignments.

Uses raw SQL with psycopg2 (no ORM).

An allocation copies its date range from the parent reservation. Release
never deletes: it flips `active` so the row drops out of the exclusion
constraint and of every availability query.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from psycopg2.extensions import cursor as PgCursor

from hotelcore.infra.db import for_update

# Parent statuses whose allocations occupy inventory
ACTIVE_RESERVATION_STATUSES = ("hold", "confirmed", "checked_in", "checked_out")


def lock_room(cur: PgCursor, *, property_id: str, room_id: str) -> dict[str, Any] | None:
    """Lock a room row for the rest of the transaction.

    Every allocation attempt on the same room queues behind this lock, which
    serializes check-and-insert per room.
    """
    row = for_update(
        cur,
        """
        SELECT id, room_type_id, label, status
        FROM rooms
        WHERE property_id = %s AND id = %s
        """,
        (property_id, room_id),
    )
    if row is None:
        return None
    return {"id": row[0], "room_type_id": row[1], "label": row[2], "status": row[3]}



def lock_rooms(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_ids: Iterable[str] = (),
    room_ids: Iterable[str] = (),
) -> list[str]:
    """Lock every room of the given types plus the given rooms, in (label, id) order.

    A single statement with one global order: two transactions whose sets
    overlap queue behind each other instead of deadlocking.

    Returns:
        IDs of the locked rooms.
    """
    cur.execute(
        """
        SELECT id
        FROM rooms
        WHERE property_id = %s
          AND (room_type_id = ANY(%s) OR id = ANY(%s))
        ORDER BY label, id
        FOR UPDATE
        """,
        (property_id, sorted(set(room_type_ids)), sorted(set(room_ids))),
    )
    return [row[0] for row in cur.fetchall()]


def lock_inventory_scope(cur: PgCursor, *, property_id: str, room_type_id: str) -> None:
    """Serialize inventory counting for one room type until the transaction ends.

    Held from the count through commit, so the last writer to publish a
    count has seen every allocation committed before it.
    """
    cur.execute(
        "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))",
        (f"inventory|{property_id}|{room_type_id}",),
    )


def find_overlapping_allocation(
    cur: PgCursor,
    *,
    property_id: str,
    room_id: str,
    checkin: date,
    checkout: date,
) -> tuple[str, date, date] | None:
    """Return (allocation_id, checkin, checkout) of the first active overlap, if any.

    Overlap: existing.checkin < new.checkout AND existing.checkout > new.checkin.
    """
    cur.execute(
        """
        SELECT a.id, a.checkin, a.checkout
        FROM room_allocations a
        JOIN reservations r ON r.id = a.reservation_id
        WHERE a.property_id = %s
          AND a.room_id = %s
          AND a.active
          AND r.status = ANY(%s)
          AND a.checkin < %s
          AND a.checkout > %s
        ORDER BY a.checkin
        LIMIT 1
        """,
        (property_id, room_id, list(ACTIVE_RESERVATION_STATUSES), checkout, checkin),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return str(row[0]), row[1], row[2]


def insert_allocation(
    cur: PgCursor,
    *,
    property_id: str,
    reservation_id: str,
    reservation_line_id: str,
    room_id: str,
    room_type_id: str,
    checkin: date,
    checkout: date,
) -> str:
    cur.execute(
        """
        INSERT INTO room_allocations (
            property_id, reservation_id, reservation_line_id,
            room_id, room_type_id, checkin, checkout
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (property_id, reservation_id, reservation_line_id, room_id, room_type_id, checkin, checkout),
    )
    return str(cur.fetchone()[0])


def release_allocation(cur: PgCursor, *, allocation_id: str) -> bool:
    """Mark one allocation void. Returns False if it was already released."""
    cur.execute(
        """
        UPDATE room_allocations
        SET active = false, released_at = now()
        WHERE id = %s AND active
        """,
        (allocation_id,),
    )
    return cur.rowcount == 1


def release_reservation_allocations(cur: PgCursor, *, reservation_id: str) -> int:
    """Mark every active allocation of a reservation void.

    Returns:
        Number of allocations released.
    """
    cur.execute(
        """
        UPDATE room_allocations
        SET active = false, released_at = now()
        WHERE reservation_id = %s AND active
        """,
        (reservation_id,),
    )
    return cur.rowcount


def list_free_rooms(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    checkin: date,
    checkout: date,
) -> list[str]:
    """Active rooms of a type with no overlapping active allocation, by label.

    Unlocked snapshot: callers that allocate must re-check under the room lock.
    """
    cur.execute(
        """
        SELECT rm.id
        FROM rooms rm
        WHERE rm.property_id = %s
          AND rm.room_type_id = %s
          AND rm.status = 'active'
          AND NOT EXISTS (
              SELECT 1
              FROM room_allocations a
              JOIN reservations r ON r.id = a.reservation_id
              WHERE a.property_id = rm.property_id
                AND a.room_id = rm.id
                AND a.active
                AND r.status = ANY(%s)
                AND a.checkin < %s
                AND a.checkout > %s
          )
        ORDER BY rm.label, rm.id
        """,
        (property_id, room_type_id, list(ACTIVE_RESERVATION_STATUSES), checkout, checkin),
    )
    return [row[0] for row in cur.fetchall()]


def count_free_rooms_by_night(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    checkin: date,
    checkout: date,
) -> list[tuple[date, int, int]]:
    """Per-night (night, free, total) counts for a room type.

    total counts active rooms of the type; free subtracts rooms holding an
    active allocation that night.
    """
    cur.execute(
        """
        WITH nights AS (
            SELECT generate_series(%s::date, %s::date - 1, interval '1 day')::date AS night
        ),
        type_rooms AS (
            SELECT id FROM rooms
            WHERE property_id = %s AND room_type_id = %s AND status = 'active'
        )
        SELECT n.night,
               (SELECT count(*) FROM type_rooms)
               - (
                   SELECT count(DISTINCT a.room_id)
                   FROM room_allocations a
                   JOIN reservations r ON r.id = a.reservation_id
                   WHERE a.property_id = %s
                     AND a.active
                     AND r.status = ANY(%s)
                     AND a.room_id IN (SELECT id FROM type_rooms)
                     AND a.checkin <= n.night
                     AND a.checkout > n.night
               ) AS free,
               (SELECT count(*) FROM type_rooms) AS total
        FROM nights n
        ORDER BY n.night
        """,
        (
            checkin,
            checkout,
            property_id,
            room_type_id,
            property_id,
            list(ACTIVE_RESERVATION_STATUSES),
        ),
    )
    return [(row[0], int(row[1]), int(row[2])) for row in cur.fetchall()]
