"""Quote domain logic - price a stay for one room type and rate plan.

Reads stored rates, checks eligibility and hands the numbers to the pricing
functions. Derived plans are resolved from their base plan's stored nightly
amounts at quote time, so a base change is reflected immediately.

Conditional (private) plans get a quote lock: the returned PriceQuote carries
a token valid for QUOTE_LOCK_TTL, and a hold created with that token is priced
from the lock even if rates moved in between.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.dates import DateRange
from hotelcore.domain.errors import NoRate
from hotelcore.domain.pricing import (
    GuestContext,
    PriceQuote,
    PricingRules,
    build_quote,
    check_eligibility,
    is_conditional,
)
from hotelcore.infra.db import txn
from hotelcore.infra.property_settings import get_property_settings
from hotelcore.infra.repositories.quote_repository import get_quote_lock, insert_quote_lock
from hotelcore.infra.repositories.rates_repository import (
    fetch_nightly_amounts,
    get_promotion,
    get_rate_plan,
    is_plan_offered,
)
from hotelcore.infra.time import utc_now

logger = logging.getLogger(__name__)

QUOTE_LOCK_TTL = timedelta(minutes=15)


def quote(
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    dates: DateRange,
    occupancy: int,
    guest: GuestContext | None = None,
    now: datetime | None = None,
    lock: bool = True,
    cur: PgCursor | None = None,
) -> PriceQuote:
    """Price one room of room_type_id under rate_plan_id.

    Args:
        property_id: Property identifier.
        room_type_id: Room type identifier.
        rate_plan_id: Rate plan identifier.
        dates: Stay range.
        occupancy: Guests in the room (1..8).
        guest: Guest context; anonymous when omitted.
        now: Reference instant for promo validity and lock expiry.
        lock: Create a quote lock for conditional plans.
        cur: Optional cursor; a short transaction is opened when omitted.

    Raises:
        NotEligible: If the guest may not book the plan.
        NoRate: If the plan is unknown, not offered on the room type, or any
            night has no rate.
    """
    if cur is None:
        with txn() as own_cur:
            return quote(
                property_id=property_id,
                room_type_id=room_type_id,
                rate_plan_id=rate_plan_id,
                dates=dates,
                occupancy=occupancy,
                guest=guest,
                now=now,
                lock=lock,
                cur=own_cur,
            )

    guest = guest or GuestContext()
    now = now or utc_now()

    plan = get_rate_plan(cur, property_id=property_id, rate_plan_id=rate_plan_id)
    if plan is None:
        raise NoRate(reason="plan_not_found")
    if not is_plan_offered(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        rate_plan_id=rate_plan_id,
    ):
        raise NoRate(reason="plan_not_offered")

    check_eligibility(plan, guest)

    source_plan_id = plan.id
    if plan.is_derived:
        base = get_rate_plan(cur, property_id=property_id, rate_plan_id=plan.base_rate_plan_id)
        if base is None or base.is_derived:
            raise NoRate(reason="invalid_derivation")
        source_plan_id = base.id

    stored = fetch_nightly_amounts(
        cur,
        property_id=property_id,
        room_type_id=room_type_id,
        rate_plan_id=source_plan_id,
        checkin=dates.checkin,
        checkout=dates.checkout,
        occupancy=occupancy,
    )

    settings = get_property_settings(cur, property_id)
    rules = PricingRules(
        currency=settings.currency,
        pricing_display_mode=settings.pricing_display_mode,
        tax_percent=settings.tax_percent,
        fee_per_stay=settings.fee_per_stay,
    )

    promotion = None
    if guest.promo_code:
        promotion = get_promotion(
            cur,
            property_id=property_id,
            code=guest.promo_code,
            on_date=now.date(),
        )

    try:
        result = build_quote(
            plan=plan,
            room_type_id=room_type_id,
            dates=dates,
            occupancy=occupancy,
            stored=stored,
            rules=rules,
            guest=guest,
            promotion=promotion,
        )
    except NoRate as e:
        logger.info(
            "no rate for night",
            extra={
                "extra_fields": {
                    "property_id": property_id,
                    "room_type_id": room_type_id,
                    "rate_plan_id": rate_plan_id,
                    "missing_date": e.missing_date.isoformat() if e.missing_date else None,
                }
            },
        )
        raise

    if lock and is_conditional(plan):
        expires_at = now + QUOTE_LOCK_TTL
        token = insert_quote_lock(
            cur,
            property_id=property_id,
            room_type_id=room_type_id,
            rate_plan_id=rate_plan_id,
            checkin=dates.checkin,
            checkout=dates.checkout,
            occupancy=occupancy,
            quote=result.to_dict(),
            expires_at=expires_at,
        )
        result = replace(result, quote_token=token, locked_until=expires_at)

    return result


def resolve_quote_lock(
    cur: PgCursor,
    *,
    token: str,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    dates: DateRange,
    occupancy: int,
    now: datetime,
) -> PriceQuote | None:
    """Return the locked quote if the token is live and matches the request."""
    try:
        uuid.UUID(token)
    except (ValueError, TypeError):
        return None

    row = get_quote_lock(cur, token=token)
    if row is None or row["expires_at"] <= now:
        return None
    if (
        row["property_id"] != property_id
        or row["room_type_id"] != room_type_id
        or row["rate_plan_id"] != rate_plan_id
        or row["checkin"] != dates.checkin
        or row["checkout"] != dates.checkout
        or row["occupancy"] != occupancy
    ):
        return None
    return PriceQuote.from_dict(row["quote"])
