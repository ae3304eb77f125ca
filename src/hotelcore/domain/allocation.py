"""Allocation engine - the only path that mutates room inventory.

Two layers keep a room from being allocated twice for overlapping nights:

1. Application layer: the room row is locked (SELECT ... FOR UPDATE) before
   the overlap check, so concurrent attempts on the same room run one after
   the other and the loser sees the winner's row.
   A caller allocating several lines first locks every room they could
   use with lock_candidate_rooms(), in one global (label, id) order.
2. Database layer: the no_room_allocation_overlap EXCLUDE constraint rejects
   any overlapping active pair even if this module is bypassed.

All functions take the caller's cursor; the caller's transaction also creates
the owning reservation and lines. No external I/O happens while a room
lock is held.
"""

from __future__ import annotations

import logging
from typing import Iterable

from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.dates import DateRange
from hotelcore.domain.errors import Conflict
from hotelcore.infra.db import savepoint
from hotelcore.infra.repositories.allocations_repository import (
    find_overlapping_allocation,
    insert_allocation,
    list_free_rooms,
    lock_room,
    lock_rooms,
    release_allocation,
)

logger = logging.getLogger(__name__)


class UnknownRoomError(ValueError):
    """Requested room does not exist in the property."""


def allocate(
    cur: PgCursor,
    *,
    property_id: str,
    room_id: str,
    dates: DateRange,
    reservation_id: str,
    reservation_line_id: str,
) -> str:
    """Allocate one specific room for a date range.

    Args:
        cur: Database cursor (within the reservation's transaction).
        property_id: Property identifier.
        room_id: Physical room to allocate.
        dates: Stay range, checkout exclusive.
        reservation_id: Parent reservation UUID.
        reservation_line_id: Owning reservation line UUID.

    Returns:
        The new allocation ID.

    Raises:
        UnknownRoomError: If the room does not exist.
        Conflict: If the room is out of service or has an overlapping
            active allocation.
    """
    room = lock_room(cur, property_id=property_id, room_id=room_id)
    if room is None:
        raise UnknownRoomError(f"Room {room_id} not found")

    if room["status"] != "active":
        raise Conflict(
            "Room is out of service",
            room_type_id=room["room_type_id"],
            room_id=room_id,
            checkin=dates.checkin,
            checkout=dates.checkout,
        )

    overlap = find_overlapping_allocation(
        cur,
        property_id=property_id,
        room_id=room_id,
        checkin=dates.checkin,
        checkout=dates.checkout,
    )
    if overlap is not None:
        logger.info(
            "room allocation conflict",
            extra={
                "extra_fields": {
                    "property_id": property_id,
                    "room_id": room_id,
                    "requested_checkin": dates.checkin.isoformat(),
                    "requested_checkout": dates.checkout.isoformat(),
                    "conflicting_allocation_id": overlap[0],
                    "existing_checkin": overlap[1].isoformat(),
                    "existing_checkout": overlap[2].isoformat(),
                }
            },
        )
        raise Conflict(
            "Room already allocated for overlapping dates",
            room_type_id=room["room_type_id"],
            room_id=room_id,
            checkin=dates.checkin,
            checkout=dates.checkout,
        )

    try:
        with savepoint(cur):
            return insert_allocation(
                cur,
                property_id=property_id,
                reservation_id=reservation_id,
                reservation_line_id=reservation_line_id,
                room_id=room_id,
                room_type_id=room["room_type_id"],
                checkin=dates.checkin,
                checkout=dates.checkout,
            )
    except pg_errors.ExclusionViolation as e:
        # Unreachable while the room lock is honoured; kept as the final word
        logger.error(
            "exclusion constraint rejected allocation",
            extra={"extra_fields": {"property_id": property_id, "room_id": room_id}},
        )
        raise Conflict(
            "Room already allocated for overlapping dates",
            room_type_id=room["room_type_id"],
            room_id=room_id,
            checkin=dates.checkin,
            checkout=dates.checkout,
        ) from e


def allocate_units(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    dates: DateRange,
    reservation_id: str,
    reservation_line_id: str,
    quantity: int = 1,
    room_id: str | None = None,
) -> list[str]:
    """Allocate `quantity` rooms of a type, each unit to a different room.

    When room_id is given (quantity must be 1) only that room is tried.
    Otherwise candidates are taken in ascending label order, so assignment is
    deterministic. A candidate lost to a concurrent writer between the
    snapshot and its lock is skipped in favour of the next one.

    Returns:
        Allocation IDs, one per unit.

    Raises:
        ValueError: If quantity < 1, or room_id is combined with quantity > 1.
        Conflict: If fewer than quantity rooms are free for the whole range.
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")

    if room_id is not None:
        if quantity != 1:
            raise ValueError("a specific room can only be requested for quantity 1")
        allocation_id = allocate(
            cur,
            property_id=property_id,
            room_id=room_id,
            dates=dates,
            reservation_id=reservation_id,
            reservation_line_id=reservation_line_id,
        )
        return [allocation_id]

    candidates = list_free_rooms(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        checkin=dates.checkin,
        checkout=dates.checkout,
    )
    if len(candidates) < quantity:
        raise Conflict(
            room_type_id=room_type_id,
            checkin=dates.checkin,
            checkout=dates.checkout,
        )

    allocation_ids: list[str] = []
    for candidate in candidates:
        if len(allocation_ids) == quantity:
            break
        try:
            allocation_ids.append(
                allocate(
                    cur,
                    property_id=property_id,
                    room_id=candidate,
                    dates=dates,
                    reservation_id=reservation_id,
                    reservation_line_id=reservation_line_id,
                )
            )
        except Conflict:
            continue

    if len(allocation_ids) < quantity:
        raise Conflict(
            room_type_id=room_type_id,
            checkin=dates.checkin,
            checkout=dates.checkout,
        )
    return allocation_ids


def lock_candidate_rooms(
    cur: PgCursor,
    *,
    property_id: str,
    requests: Iterable[tuple[str, str | None]],
) -> list[str]:
    """Lock every room a multi-line allocation may touch, before touching any.

    requests holds one (room_type_id, room_id) per line. A pinned line locks
    only its room; an auto-assigned line locks every room of its type.

    Returns:
        IDs of the locked rooms, in lock order.
    """
    room_type_ids: set[str] = set()
    room_ids: set[str] = set()
    for room_type_id, room_id in requests:
        if room_id is None:
            room_type_ids.add(room_type_id)
        else:
            room_ids.add(room_id)
    return lock_rooms(cur, property_id=property_id, room_type_ids=room_type_ids, room_ids=room_ids)


def release(cur: PgCursor, *, allocation_id: str) -> bool:
    """Release one allocation. Idempotent; returns False if already released."""
    return release_allocation(cur, allocation_id=allocation_id)


def find_available_rooms(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    dates: DateRange,
) -> list[str]:
    """Active rooms of the type with no overlapping active allocation, by label."""
    return list_free_rooms(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        checkin=dates.checkin,
        checkout=dates.checkout,
    )
