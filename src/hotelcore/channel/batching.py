"""Group outbox events into size-bounded channel batches.

Events are grouped by (property_id, kind, month of date_from) and packed in
id order, so deltas for the same dedupe key never leave out of order. A batch
never exceeds the configured byte or item ceiling; an event too large to fit
on its own is returned separately so the caller can fail it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from hotelcore.infra.hashing import canonical_json, payload_hash


@dataclass
class Batch:
    property_id: str
    kind: str
    bucket: str
    partner_id: str = ""
    events: list[dict[str, Any]] = field(default_factory=list)
    size: int = 0

    @property
    def items(self) -> list[dict[str, Any]]:
        return [batch_item(event) for event in self.events]

    def body(self, batch_id: str | None = None) -> dict[str, Any]:
        return {
            "partner_id": self.partner_id,
            "property_id": self.property_id,
            "kind": self.kind,
            "batch_id": batch_id,
            "items": self.items,
        }

    @property
    def content_hash(self) -> str:
        """Fingerprint of the items only; stable across batch ids."""
        return payload_hash(self.items)

    @property
    def is_full_sync(self) -> bool:
        return all(event["payload"].get("source") == "full_sync" for event in self.events)


def batch_item(event: dict[str, Any]) -> dict[str, Any]:
    return {"key": event["dedupe_key"], "payload": event["payload"]}


def bucket_for(event: dict[str, Any]) -> str:
    date_from = event.get("date_from")
    return date_from.strftime("%Y-%m") if date_from else "*"


def _envelope_size(batch: Batch) -> int:
    # batch_id is a uuid when sent; size the envelope with a placeholder of that length
    return len(canonical_json(batch.body("0" * 36)).encode())


def build_batches(
    events: Iterable[dict[str, Any]],
    *,
    max_bytes: int,
    max_items: int,
    partner_id: str = "",
) -> tuple[list[Batch], list[dict[str, Any]]]:
    """Pack events into batches.

    Returns:
        (batches, oversized) - batches in order of their first event,
        oversized events that exceed max_bytes even alone.
    """
    groups: dict[tuple[str, str, str], list[dict[str, Any]]] = {}
    for event in sorted(events, key=lambda e: e["id"]):
        key = (event["property_id"], event["kind"], bucket_for(event))
        groups.setdefault(key, []).append(event)

    batches: list[Batch] = []
    oversized: list[dict[str, Any]] = []

    for (property_id, kind, bucket), grouped in groups.items():
        current = Batch(property_id=property_id, kind=kind, bucket=bucket, partner_id=partner_id)
        envelope = _envelope_size(current)
        current.size = envelope

        for event in grouped:
            item_size = len(canonical_json(batch_item(event)).encode())
            if envelope + item_size > max_bytes:
                oversized.append(event)
                continue

            separator = 1 if current.events else 0
            if current.events and (
                len(current.events) >= max_items or current.size + separator + item_size > max_bytes
            ):
                batches.append(current)
                current = Batch(property_id=property_id, kind=kind, bucket=bucket, partner_id=partner_id)
                current.size = envelope
                separator = 0

            current.events.append(event)
            current.size += separator + item_size

        if current.events:
            batches.append(current)

    return batches, oversized
