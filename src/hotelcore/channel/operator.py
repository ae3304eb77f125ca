"""Operator tooling for the ARI error dashboard."""

from __future__ import annotations

import logging
from typing import Any

from hotelcore.infra.db import txn
from hotelcore.infra.repositories import outbox_repository
from hotelcore.infra.repositories.channel_state_repository import list_channel_state
from hotelcore.infra.repositories.integration_log_repository import list_integration_log

logger = logging.getLogger(__name__)


def list_failed_events(property_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
    with txn() as cur:
        return outbox_repository.list_failed_events(cur, property_id=property_id, limit=limit)


def redrive(property_id: str, event_ids: list[int]) -> int:
    """Move failed events back to pending with a fresh attempt budget.

    Returns:
        Number of events re-queued.
    """
    with txn() as cur:
        moved = outbox_repository.redrive_failed(cur, property_id=property_id, event_ids=event_ids)
    logger.info(
        "outbox events re-driven",
        extra={
            "extra_fields": {
                "property_id": property_id,
                "requested": len(event_ids),
                "redriven": moved,
            }
        },
    )
    return moved


def channel_status(property_id: str, *, log_limit: int = 20) -> dict[str, Any]:
    """Channel state per kind, outbox counts and the latest outbound attempts."""
    with txn() as cur:
        return {
            "property_id": property_id,
            "channel_state": list_channel_state(cur, property_id=property_id),
            "outbox": outbox_repository.count_by_status(cur, property_id=property_id),
            "recent_attempts": list_integration_log(
                cur,
                property_id=property_id,
                direction="outbound",
                limit=log_limit,
            ),
        }
