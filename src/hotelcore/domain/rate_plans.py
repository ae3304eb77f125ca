"""Rate plan write side - plan validation, nightly rates and derived materialization.

Derivation depth is exactly 1: a derived plan's base must be an explicit-table
plan. Derived nightly rates are materialized when the plan is created and
whenever their base changes, so the publisher can send them as-is; quotes
still derive live from the base.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, NamedTuple

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.errors import RatePlanValidationError
from hotelcore.domain.pricing import (
    RatePlan,
    apply_modifier,
    derive_nightly,
    parse_rounding_rule,
    per_stay_adjustment,
)
from hotelcore.infra.db import txn
from hotelcore.infra.property_settings import get_property_settings
from hotelcore.infra.repositories.outbox_repository import emit
from hotelcore.infra.repositories.rates_repository import (
    fetch_rate_rows,
    get_rate_plan,
    insert_rate_plan,
    link_room_type,
    list_derived_plans,
    upsert_nightly_rate,
)
from hotelcore.infra.time import property_today

logger = logging.getLogger(__name__)


class NightlyRate(NamedTuple):
    date: date
    occupancy: int
    amount: Decimal


def validate_rate_plan(plan: RatePlan, base: RatePlan | None) -> None:
    """Check a plan definition against its base.

    Raises:
        RatePlanValidationError: On any structural problem.
    """
    if plan.pricing_mode not in ("explicit_table", "derived_from_base"):
        raise RatePlanValidationError(f"Unknown pricing mode: {plan.pricing_mode}")

    if plan.rounding_rule:
        try:
            parse_rounding_rule(plan.rounding_rule)
        except ValueError as e:
            raise RatePlanValidationError(str(e)) from e

    if not plan.is_derived:
        if plan.base_rate_plan_id is not None:
            raise RatePlanValidationError("explicit_table plans cannot reference a base plan")
        return

    if not plan.base_rate_plan_id:
        raise RatePlanValidationError("derived plans require a base plan")
    if plan.base_rate_plan_id == plan.id:
        raise RatePlanValidationError("a plan cannot derive from itself")
    if base is None:
        raise RatePlanValidationError(f"base plan {plan.base_rate_plan_id} not found")
    if base.is_derived:
        raise RatePlanValidationError("base plan must not itself be derived")
    if plan.modifier_type is None or plan.modifier_value is None:
        raise RatePlanValidationError("derived plans require a modifier")
    try:
        apply_modifier(Decimal("100"), plan.modifier_type, plan.modifier_value)
    except ValueError as e:
        raise RatePlanValidationError(str(e)) from e
    if plan.modifier_type == "percent" and plan.modifier_value <= Decimal("-100"):
        raise RatePlanValidationError("percent modifier must be greater than -100")


def create_rate_plan(
    plan: RatePlan,
    *,
    name: str,
    room_type_ids: Iterable[str] = (),
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> RatePlan:
    """Validate and store a rate plan, offering it on the given room types.

    A derived plan starts out with its base plan's stored rates from today on
    materialized for each of those room types, and emits their `rate` events.

    Raises:
        RatePlanValidationError: If the definition is invalid.
    """
    if cur is None:
        with txn() as own_cur:
            return create_rate_plan(
                plan,
                name=name,
                room_type_ids=room_type_ids,
                correlation_id=correlation_id,
                cur=own_cur,
            )

    room_type_ids = list(room_type_ids)
    base = None
    if plan.base_rate_plan_id and plan.base_rate_plan_id != plan.id:
        base = get_rate_plan(cur, property_id=plan.property_id, rate_plan_id=plan.base_rate_plan_id)
    validate_rate_plan(plan, base)

    insert_rate_plan(cur, plan=plan, name=name)
    for room_type_id in room_type_ids:
        link_room_type(
            cur,
            property_id=plan.property_id,
            room_type_id=room_type_id,
            rate_plan_id=plan.id,
        )

    if plan.is_derived:
        _materialize_new_plan(cur, plan, room_type_ids, correlation_id)
    return plan


def _materialize_new_plan(
    cur: PgCursor,
    plan: RatePlan,
    room_type_ids: list[str],
    correlation_id: str | None,
) -> None:
    settings = get_property_settings(cur, plan.property_id)
    today = property_today(settings.timezone)
    for room_type_id in room_type_ids:
        base_rows = fetch_rate_rows(
            cur,
            property_id=plan.property_id,
            room_type_id=room_type_id,
            rate_plan_id=plan.base_rate_plan_id,
            date_from=today,
        )
        written = materialize_derived_rates(
            cur,
            plan=plan,
            room_type_id=room_type_id,
            base_rates=[NightlyRate(r["date"], r["occupancy"], r["amount"]) for r in base_rows],
            currency=settings.currency,
        )
        emit_rate_events(
            cur,
            property_id=plan.property_id,
            room_type_id=room_type_id,
            rate_plan_id=plan.id,
            nights=[r["date"] for r in base_rows],
            correlation_id=correlation_id,
            source="rate_plan_created",
        )
        logger.info(
            "derived rate plan materialized",
            extra={
                "extra_fields": {
                    "property_id": plan.property_id,
                    "rate_plan_id": plan.id,
                    "base_rate_plan_id": plan.base_rate_plan_id,
                    "room_type_id": room_type_id,
                    "rows": written,
                }
            },
        )


def _ranges(nights: Iterable[date]) -> list[tuple[date, date]]:
    """Collapse dates into contiguous [from, to) ranges."""
    ordered = sorted(set(nights))
    ranges: list[tuple[date, date]] = []
    for night in ordered:
        if ranges and ranges[-1][1] == night:
            ranges[-1] = (ranges[-1][0], night + timedelta(days=1))
        else:
            ranges.append((night, night + timedelta(days=1)))
    return ranges


def emit_rate_events(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    nights: Iterable[date],
    correlation_id: str | None,
    source: str,
) -> list[int]:
    event_ids = []
    for date_from, date_to in _ranges(nights):
        rows = fetch_rate_rows(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            rate_plan_id=rate_plan_id,
            date_from=date_from,
            date_to=date_to,
        )
        payload = {
            "room_type_id": room_type_id,
            "rate_plan_id": rate_plan_id,
            "checkin": date_from.isoformat(),
            "checkout": date_to.isoformat(),
            "rates": [
                {
                    "date": r["date"].isoformat(),
                    "occupancy": r["occupancy"],
                    "amount": str(r["amount"]),
                    "currency": r["currency"].strip(),
                    "per_stay_adjustment": (
                        str(r["per_stay_adjustment"]) if r["per_stay_adjustment"] is not None else None
                    ),
                }
                for r in rows
            ],
            "source": source,
        }
        event_ids.append(
            emit(
                cur,
                property_id=property_id,
                kind="rate",
                room_type_id=room_type_id,
                rate_plan_id=rate_plan_id,
                date_from=date_from,
                date_to=date_to,
                payload=payload,
                correlation_id=correlation_id,
            )
        )
    return event_ids


def materialize_derived_rates(
    cur: PgCursor,
    *,
    plan: RatePlan,
    room_type_id: str,
    base_rates: Iterable[NightlyRate],
    currency: str,
) -> int:
    """Write a derived plan's nightly rates from its base plan's values.

    Returns:
        Number of rows written.
    """
    adjustment = per_stay_adjustment(plan)
    written = 0
    for rate in base_rates:
        upsert_nightly_rate(
            cur,
            property_id=plan.property_id,
            room_type_id=room_type_id,
            rate_plan_id=plan.id,
            night=rate.date,
            occupancy=rate.occupancy,
            amount=derive_nightly(rate.amount, plan),
            currency=currency,
            per_stay_adjustment=adjustment or None,
        )
        written += 1
    return written


def set_nightly_rates(
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    rates: Iterable[NightlyRate],
    correlation_id: str | None = None,
    cur: PgCursor | None = None,
) -> list[int]:
    """Upsert explicit-table nightly rates and propagate to derived plans.

    Every derived plan using this plan as base is re-materialized in the same
    transaction, and one `rate` outbox event is emitted per plan per
    contiguous date range.

    Returns:
        Outbox event IDs.

    Raises:
        RatePlanValidationError: If the plan is missing or derived.
    """
    if cur is None:
        with txn() as own_cur:
            return set_nightly_rates(
                property_id=property_id,
                room_type_id=room_type_id,
                rate_plan_id=rate_plan_id,
                rates=rates,
                correlation_id=correlation_id,
                cur=own_cur,
            )

    plan = get_rate_plan(cur, property_id=property_id, rate_plan_id=rate_plan_id)
    if plan is None:
        raise RatePlanValidationError(f"rate plan {rate_plan_id} not found")
    if plan.is_derived:
        raise RatePlanValidationError("derived plan rates are computed from their base plan")

    rates = list(rates)
    for rate in rates:
        if rate.amount < 0:
            raise RatePlanValidationError("nightly amount must not be negative")
        if not 1 <= rate.occupancy <= 8:
            raise RatePlanValidationError("occupancy must be between 1 and 8")

    currency = get_property_settings(cur, property_id).currency
    for rate in rates:
        upsert_nightly_rate(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            rate_plan_id=rate_plan_id,
            night=rate.date,
            occupancy=rate.occupancy,
            amount=rate.amount,
            currency=currency,
        )

    nights = [r.date for r in rates]
    event_ids = emit_rate_events(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        rate_plan_id=rate_plan_id,
        nights=nights,
        correlation_id=correlation_id,
        source="rate_change",
    )

    derived_written: dict[str, int] = defaultdict(int)
    for derived in list_derived_plans(cur, property_id=property_id, base_rate_plan_id=rate_plan_id):
        derived_written[derived.id] += materialize_derived_rates(
            cur,
            plan=derived,
            room_type_id=room_type_id,
            base_rates=rates,
            currency=currency,
        )
        event_ids.extend(
            emit_rate_events(
                cur,
                property_id=property_id,
                room_type_id=room_type_id,
                rate_plan_id=derived.id,
                nights=nights,
                correlation_id=correlation_id,
                source="rate_change",
            )
        )

    logger.info(
        "nightly rates updated",
        extra={
            "extra_fields": {
                "property_id": property_id,
                "room_type_id": room_type_id,
                "rate_plan_id": rate_plan_id,
                "nights": len(rates),
                "derived_plans": dict(derived_written),
            }
        },
    )
    return event_ids
