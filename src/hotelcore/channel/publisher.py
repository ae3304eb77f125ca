"""ARI publisher - drains the outbox to the external channel.

One drain pass:
    1. lease due pending events (own transaction, committed before any I/O)
    2. pack them into size-bounded batches
    3. per batch: throttle, send, then record the outcome in a new transaction

Outcome handling per event, always compare-and-set on the row version so a
payload coalesced while the batch was in flight stays pending:
    success          -> sent
    per-item error   -> failed (with the channel's message)
    transient error  -> retry with backoff, failed after max attempts
    permanent error  -> failed

Every attempt writes an integration_log row and updates channel_state.
"""

from __future__ import annotations

import logging
import random
import threading
import uuid
from datetime import datetime
from typing import Any, Callable

from psycopg2.extensions import cursor as PgCursor

from hotelcore.channel.batching import Batch, build_batches
from hotelcore.channel.client import ChannelClient, ChannelResponse
from hotelcore.channel.retry import RetryPolicy
from hotelcore.channel.throttle import RateLimiter
from hotelcore.domain.errors import PermanentIntegrationError, TransientIntegrationError
from hotelcore.infra.db import txn
from hotelcore.infra.repositories.channel_state_repository import (
    get_channel_state,
    record_failure,
    record_success,
)
from hotelcore.infra.repositories.integration_log_repository import log_integration
from hotelcore.infra.repositories.outbox_repository import (
    claim_due_events,
    mark_failed,
    mark_sent,
    schedule_retry,
)
from hotelcore.infra.settings import PublisherSettings, load_publisher_settings
from hotelcore.infra.time import utc_now
from hotelcore.observability.correlation import correlation_scope

logger = logging.getLogger(__name__)

ARI_CHANNEL = "ari"


def _empty_counts() -> dict[str, int]:
    return {"claimed": 0, "batches": 0, "sent": 0, "skipped": 0, "retried": 0, "failed": 0, "superseded": 0}


class AriPublisher:
    """Outbox drainer.

    Args:
        client: Channel transport.
        settings: Batching, throttling and retry limits.
        partner_id: Channel partner identifier stamped on every batch.
        limiter: Shared rate limiter; built from settings when omitted.
        clock: Returns the current instant.
        rng: Jitter source for retry delays.
    """

    def __init__(
        self,
        client: ChannelClient,
        settings: PublisherSettings | None = None,
        *,
        partner_id: str = "",
        limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.client = client
        self.settings = settings or load_publisher_settings()
        self.partner_id = partner_id
        self.limiter = limiter or RateLimiter(self.settings.max_messages_per_second)
        self.retry = RetryPolicy.from_settings(self.settings)
        self.clock = clock
        self.rng = rng

    def drain(self, now: datetime | None = None) -> dict[str, int]:
        """Publish every due pending event once.

        Returns:
            Counters: claimed, batches, sent, skipped, retried, failed, superseded.
        """
        counts = _empty_counts()
        with correlation_scope() as cid:
            with txn() as cur:
                events = claim_due_events(
                    cur,
                    now=now or self.clock(),
                    limit=self.settings.claim_limit,
                )
            counts["claimed"] = len(events)
            if not events:
                return counts

            batches, oversized = build_batches(
                events,
                max_bytes=self.settings.max_batch_bytes,
                max_items=self.settings.max_batch_items,
                partner_id=self.partner_id,
            )

            if oversized:
                with txn() as cur:
                    for event in oversized:
                        self._count(
                            counts,
                            "failed",
                            mark_failed(
                                cur,
                                event_id=event["id"],
                                version=event["version"],
                                error="payload exceeds maximum batch size",
                            ),
                        )
                logger.error(
                    "oversized outbox events failed",
                    extra={"extra_fields": {"event_ids": [e["id"] for e in oversized]}},
                )

            for batch in batches:
                counts["batches"] += 1
                self._publish(batch, cid, counts)

            logger.info("ari drain finished", extra={"extra_fields": dict(counts)})
        return counts

    @staticmethod
    def _count(counts: dict[str, int], outcome: str, applied: bool) -> None:
        counts[outcome if applied else "superseded"] += 1

    def _publish(self, batch: Batch, cid: str, counts: dict[str, int]) -> None:
        batch_id = str(uuid.uuid4())
        content_hash = batch.content_hash

        if batch.is_full_sync and self._unchanged(batch, content_hash):
            with txn() as cur:
                for event in batch.events:
                    self._count(
                        counts,
                        "skipped",
                        mark_sent(
                            cur,
                            event_id=event["id"],
                            version=event["version"],
                            response={"skipped": "unchanged"},
                        ),
                    )
                self._log(cur, batch, batch_id, cid, status="skipped_unchanged")
            return

        self.limiter.acquire()
        body = batch.body(batch_id)
        try:
            response = self.client.send(body, correlation_id=cid)
        except TransientIntegrationError as e:
            self._on_transient(batch, batch_id, cid, body, e, counts)
            return
        except PermanentIntegrationError as e:
            self._on_permanent(batch, batch_id, cid, body, e, counts)
            return
        except Exception as e:
            logger.exception(
                "unexpected channel client failure",
                extra={"extra_fields": {"batch_id": batch_id, "property_id": batch.property_id}},
            )
            self._on_transient(
                batch,
                batch_id,
                cid,
                body,
                TransientIntegrationError(f"unexpected client error: {e.__class__.__name__}"),
                counts,
            )
            return

        self._on_response(batch, batch_id, cid, body, content_hash, response, counts)

    def _unchanged(self, batch: Batch, content_hash: str) -> bool:
        with txn() as cur:
            state = get_channel_state(cur, property_id=batch.property_id, kind=batch.kind)
        return state is not None and state["last_payload_hash"] == content_hash

    def _on_response(
        self,
        batch: Batch,
        batch_id: str,
        cid: str,
        body: dict[str, Any],
        content_hash: str,
        response: ChannelResponse,
        counts: dict[str, int],
    ) -> None:
        now = self.clock()
        with txn() as cur:
            for event in batch.events:
                error = response.item_errors.get(event["dedupe_key"])
                if error is None:
                    self._count(
                        counts,
                        "sent",
                        mark_sent(
                            cur,
                            event_id=event["id"],
                            version=event["version"],
                            response=response.to_dict(),
                        ),
                    )
                else:
                    self._count(
                        counts,
                        "failed",
                        mark_failed(
                            cur,
                            event_id=event["id"],
                            version=event["version"],
                            error=error,
                            response=response.to_dict(),
                        ),
                    )

            if response.item_errors:
                record_failure(
                    cur,
                    property_id=batch.property_id,
                    kind=batch.kind,
                    error=f"{len(response.item_errors)} item(s) rejected",
                    at=now,
                )
                status = "partial"
            else:
                record_success(
                    cur,
                    property_id=batch.property_id,
                    kind=batch.kind,
                    payload_hash=content_hash,
                    at=now,
                )
                status = "ok"
            self._log(
                cur,
                batch,
                batch_id,
                cid,
                status=status,
                body=body,
                response=response.body,
                http_status=response.status_code,
            )

        if response.item_errors:
            logger.warning(
                "ari batch partially rejected",
                extra={
                    "extra_fields": {
                        "batch_id": batch_id,
                        "property_id": batch.property_id,
                        "kind": batch.kind,
                        "rejected": sorted(response.item_errors),
                    }
                },
            )

    def _on_transient(
        self,
        batch: Batch,
        batch_id: str,
        cid: str,
        body: dict[str, Any],
        error: TransientIntegrationError,
        counts: dict[str, int],
    ) -> None:
        now = self.clock()
        with txn() as cur:
            for event in batch.events:
                attempt = event["attempt_count"]
                if self.retry.exhausted(attempt):
                    self._count(
                        counts,
                        "failed",
                        mark_failed(
                            cur,
                            event_id=event["id"],
                            version=event["version"],
                            error=f"gave up after {attempt} attempts: {error}",
                            response=error.response,
                        ),
                    )
                else:
                    self._count(
                        counts,
                        "retried",
                        schedule_retry(
                            cur,
                            event_id=event["id"],
                            version=event["version"],
                            error=str(error),
                            next_attempt_at=self.retry.next_attempt_at(attempt, now, self.rng),
                        ),
                    )
            record_failure(cur, property_id=batch.property_id, kind=batch.kind, error=str(error), at=now)
            self._log(
                cur,
                batch,
                batch_id,
                cid,
                status="transient_error",
                body=body,
                response=error.response,
                http_status=error.status_code,
            )
        logger.warning(
            "ari batch transient failure",
            extra={
                "extra_fields": {
                    "batch_id": batch_id,
                    "property_id": batch.property_id,
                    "kind": batch.kind,
                    "error": str(error),
                    "http_status": error.status_code,
                }
            },
        )

    def _on_permanent(
        self,
        batch: Batch,
        batch_id: str,
        cid: str,
        body: dict[str, Any],
        error: PermanentIntegrationError,
        counts: dict[str, int],
    ) -> None:
        now = self.clock()
        with txn() as cur:
            for event in batch.events:
                self._count(
                    counts,
                    "failed",
                    mark_failed(
                        cur,
                        event_id=event["id"],
                        version=event["version"],
                        error=str(error),
                        response=error.response,
                    ),
                )
            record_failure(cur, property_id=batch.property_id, kind=batch.kind, error=str(error), at=now)
            self._log(
                cur,
                batch,
                batch_id,
                cid,
                status="permanent_error",
                body=body,
                response=error.response,
                http_status=error.status_code,
            )
        logger.error(
            "ari batch rejected",
            extra={
                "extra_fields": {
                    "batch_id": batch_id,
                    "property_id": batch.property_id,
                    "kind": batch.kind,
                    "error": str(error),
                    "http_status": error.status_code,
                }
            },
        )

    @staticmethod
    def _log(
        cur: PgCursor,
        batch: Batch,
        batch_id: str,
        cid: str,
        *,
        status: str,
        body: dict[str, Any] | None = None,
        response: Any = None,
        http_status: int | None = None,
    ) -> None:
        log_integration(
            cur,
            direction="outbound",
            channel=ARI_CHANNEL,
            status=status,
            property_id=batch.property_id,
            reference=batch_id,
            correlation_id=cid,
            request_payload=body if body is not None else {"event_ids": [e["id"] for e in batch.events]},
            response_payload=response,
            http_status=http_status,
        )

    def run_forever(self, stop_event: threading.Event) -> None:
        """Drain until stop_event is set, idling poll_interval_seconds when empty."""
        logger.info("ari publisher started")
        while not stop_event.is_set():
            try:
                counts = self.drain()
            except Exception:
                logger.exception("ari drain failed")
                counts = _empty_counts()
            if not counts["claimed"]:
                stop_event.wait(self.settings.poll_interval_seconds)
        logger.info("ari publisher stopped")
