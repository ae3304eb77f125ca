"""Shared test helper functions for hotelcore tests.

Regular functions, not fixtures: importable from conftest.py and test modules.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from hotelcore.domain.pricing import GuestContext, PricingRules, RatePlan

TEST_PROPERTY_ID = "prop-test"


def make_plan(**overrides: Any) -> RatePlan:
    values: dict[str, Any] = {"property_id": TEST_PROPERTY_ID, "id": "bar"}
    values.update(overrides)
    return RatePlan(**values)


def make_rules(**overrides: Any) -> PricingRules:
    values: dict[str, Any] = {"currency": "EUR"}
    values.update(overrides)
    return PricingRules(**values)


def anonymous() -> GuestContext:
    return GuestContext()


def make_event(
    event_id: int,
    *,
    property_id: str = TEST_PROPERTY_ID,
    kind: str = "inventory",
    dedupe_key: str | None = None,
    payload: dict[str, Any] | None = None,
    date_from: date | None = date(2026, 1, 10),
    attempt_count: int = 1,
    version: int = 1,
) -> dict[str, Any]:
    """Build a claimed outbox row the way outbox_repository.claim_due_events returns it."""
    return {
        "id": event_id,
        "property_id": property_id,
        "room_type_id": "rt-std",
        "rate_plan_id": None,
        "kind": kind,
        "dedupe_key": dedupe_key or f"{property_id}|rt-std|*|{event_id}|*|{kind}",
        "payload": payload if payload is not None else {"room_type_id": "rt-std", "seq": event_id},
        "date_from": date_from,
        "date_to": date_from,
        "attempt_count": attempt_count,
        "version": version,
    }


def amounts(*values: str) -> list[Decimal]:
    return [Decimal(v) for v in values]
