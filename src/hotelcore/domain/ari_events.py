"""Inventory/availability outbox deltas emitted by reservation transitions.

One call emits the whole batch for one transition: an `inventory` event per
affected room type (free-room counts per night) and an `availability` event
per (room type, rate plan) offered on an affected room type (open/closed per
night), since the last free room closes every plan sold on it. Counts are read
inside the emitting transaction, so they already reflect the transition.

Counting and emitting run under a per-room-type lock held until commit.
Otherwise two transitions on one type could each count before the other
commits, and the later emit would coalesce a stale count over the pending row.
"""

from __future__ import annotations

from typing import Iterable

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.availability import availability_by_night
from hotelcore.domain.dates import DateRange
from hotelcore.infra.repositories.allocations_repository import lock_inventory_scope
from hotelcore.infra.repositories.outbox_repository import emit
from hotelcore.infra.repositories.rates_repository import list_offered_pairs


def emit_inventory_deltas(
    cur: PgCursor,
    *,
    property_id: str,
    dates: DateRange,
    affected: Iterable[tuple[str, str]],
    reason: str,
    correlation_id: str | None = None,
    source: str = "transition",
) -> list[int]:
    """Emit inventory + availability events for the affected pairs.

    Args:
        cur: Database cursor (within the transition's transaction).
        property_id: Property identifier.
        dates: Affected stay range.
        affected: (room_type_id, rate_plan_id) pairs touched by the transition;
            every other plan offered on those room types is added.
        reason: Transition label carried in the payload (e.g. "hold_created").
        correlation_id: Optional correlation ID for tracing.
        source: "transition" or "full_sync".

    Returns:
        Outbox row IDs, in emission order.
    """
    pairs = set(affected)
    room_type_ids = sorted({rt for rt, _ in pairs})
    for room_type_id in room_type_ids:
        lock_inventory_scope(cur, property_id=property_id, room_type_id=room_type_id)

    pairs.update(
        pair
        for pair in list_offered_pairs(cur, property_id=property_id)
        if pair[0] in room_type_ids
    )
    event_ids: list[int] = []
    nights_by_type: dict[str, list[dict]] = {}

    for room_type_id in room_type_ids:
        nights = availability_by_night(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            dates=dates,
        )
        nights_by_type[room_type_id] = nights
        event_ids.append(
            emit(
                cur,
                property_id=property_id,
                kind="inventory",
                room_type_id=room_type_id,
                date_from=dates.checkin,
                date_to=dates.checkout,
                payload={
                    "room_type_id": room_type_id,
                    **dates.to_dict(),
                    "nights": [
                        {"date": n["date"], "inventory": n["available"]} for n in nights
                    ],
                    "reason": reason,
                    "source": source,
                },
                correlation_id=correlation_id,
            )
        )

    for room_type_id, rate_plan_id in sorted(pairs):
        nights = nights_by_type[room_type_id]
        event_ids.append(
            emit(
                cur,
                property_id=property_id,
                kind="availability",
                room_type_id=room_type_id,
                rate_plan_id=rate_plan_id,
                date_from=dates.checkin,
                date_to=dates.checkout,
                payload={
                    "room_type_id": room_type_id,
                    "rate_plan_id": rate_plan_id,
                    **dates.to_dict(),
                    "nights": [
                        {"date": n["date"], "open": n["available"] > 0} for n in nights
                    ],
                    "reason": reason,
                    "source": source,
                },
                correlation_id=correlation_id,
            )
        )

    return event_ids
