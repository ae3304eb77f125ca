"""Full re-derivation of a property's channel state.

Re-reads availability and rates from the source tables and emits them through
the regular outbox. Emission coalesces with anything already pending under
the same dedupe key, so running it twice leaves one pending row per key.
Batches made only of full-sync events whose content matches the last
delivered hash are retired without sending.
"""

from __future__ import annotations

import logging
from typing import Any

from hotelcore.domain.ari_events import emit_inventory_deltas
from hotelcore.domain.dates import DateRange
from hotelcore.domain.rate_plans import emit_rate_events
from hotelcore.infra.db import txn
from hotelcore.infra.property_settings import PropertyNotFoundError
from hotelcore.infra.repositories.catalog_repository import get_property_row, list_room_types
from hotelcore.infra.repositories.outbox_repository import emit
from hotelcore.infra.repositories.rates_repository import list_offered_pairs
from hotelcore.observability.correlation import current_correlation_id

logger = logging.getLogger(__name__)

SOURCE = "full_sync"


def full_sync(
    property_id: str,
    dates: DateRange,
    *,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Emit property data, inventory, availability and rates for a date range.

    Returns:
        {"property_id", "events": int, "pairs": int}

    Raises:
        PropertyNotFoundError: If the property does not exist.
    """
    correlation_id = correlation_id or current_correlation_id()

    with txn() as cur:
        prop = get_property_row(cur, property_id=property_id)
        if prop is None:
            raise PropertyNotFoundError(f"Property not found: {property_id}")

        room_types = list_room_types(cur, property_id=property_id)
        event_ids = [
            emit(
                cur,
                property_id=property_id,
                kind="property_data",
                payload={
                    "name": prop["name"],
                    "timezone": prop["timezone"],
                    "currency": prop["currency"],
                    "active": prop["active"],
                    "room_types": room_types,
                    "source": SOURCE,
                },
                correlation_id=correlation_id,
            )
        ]

        pairs = list_offered_pairs(cur, property_id=property_id)
        if pairs:
            event_ids.extend(
                emit_inventory_deltas(
                    cur,
                    property_id=property_id,
                    dates=dates,
                    affected=pairs,
                    reason="full_sync",
                    correlation_id=correlation_id,
                    source=SOURCE,
                )
            )
        for room_type_id, rate_plan_id in pairs:
            event_ids.extend(
                emit_rate_events(
                    cur,
                    property_id=property_id,
                    room_type_id=room_type_id,
                    rate_plan_id=rate_plan_id,
                    nights=dates.iter_nights(),
                    correlation_id=correlation_id,
                    source=SOURCE,
                )
            )

    logger.info(
        "full sync emitted",
        extra={
            "extra_fields": {
                "property_id": property_id,
                "checkin": dates.checkin.isoformat(),
                "checkout": dates.checkout.isoformat(),
                "events": len(event_ids),
                "pairs": len(pairs),
            }
        },
    )
    return {"property_id": property_id, "events": len(event_ids), "pairs": len(pairs)}
