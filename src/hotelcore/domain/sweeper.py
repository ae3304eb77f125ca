"""Hold expiry sweeper.

Periodically finds holds whose TTL has passed and expires each one in its own
transaction. Safe to run in several processes at once: expire() locks the
reservation and compare-and-sets the status, so a hold raced by another
sweeper (or confirmed meanwhile) comes back as a noop.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from hotelcore.domain.reservations import expire
from hotelcore.infra.db import txn
from hotelcore.infra.repositories.reservations_repository import list_expired_holds
from hotelcore.infra.settings import SweeperSettings, load_sweeper_settings
from hotelcore.infra.time import utc_now
from hotelcore.observability.correlation import correlation_scope

logger = logging.getLogger(__name__)


class HoldExpirySweeper:
    """Expire due holds, one transaction per hold.

    Args:
        settings: Poll interval and per-pass batch limit.
        clock: Returns the current instant; defaults to utc_now.
    """

    def __init__(
        self,
        settings: SweeperSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or load_sweeper_settings()
        self.clock = clock

    def run_once(self, now: datetime | None = None) -> dict[str, int]:
        """Run one pass.

        A failure on one hold is logged and the pass moves on to the next.

        Returns:
            Counters: found, expired, noop, not_expired_yet, errors.
        """
        now = now or self.clock()
        counts = {"found": 0, "expired": 0, "noop": 0, "not_expired_yet": 0, "errors": 0}

        with correlation_scope() as cid:
            with txn() as cur:
                due = list_expired_holds(cur, now=now, limit=self.settings.batch_limit)
            counts["found"] = len(due)

            for reservation_id, property_id in due:
                try:
                    result = expire(reservation_id, now=now, correlation_id=cid)
                except Exception:
                    counts["errors"] += 1
                    logger.exception(
                        "hold expiry failed",
                        extra={
                            "extra_fields": {
                                "property_id": property_id,
                                "reservation_id": reservation_id,
                            }
                        },
                    )
                    continue
                counts[result["status"]] += 1

            if due:
                logger.info("sweeper pass finished", extra={"extra_fields": dict(counts)})
        return counts

    def run_forever(self, stop_event: threading.Event) -> None:
        """Run passes every interval_seconds until stop_event is set."""
        logger.info(
            "sweeper started",
            extra={"extra_fields": {"interval_seconds": self.settings.interval_seconds}},
        )
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                # DB outage: keep the loop alive and try again next interval
                logger.exception("sweeper pass failed")
            stop_event.wait(self.settings.interval_seconds)
        logger.info("sweeper stopped")
