"""Rates repository - rate plans, nightly rates and promo codes.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from hotelcore.domain.pricing import Promotion, RatePlan

_PLAN_COLUMNS = """
    property_id, id, pricing_mode, base_rate_plan_id, modifier_type,
    modifier_value, rounding_rule, visibility, require_login, eligible_tiers,
    corporate_account_ids, promo_code, allow_loyalty_discount, active
"""


def _row_to_plan(row: tuple) -> RatePlan:
    return RatePlan(
        property_id=row[0],
        id=row[1],
        pricing_mode=row[2],
        base_rate_plan_id=row[3],
        modifier_type=row[4],
        modifier_value=Decimal(row[5]) if row[5] is not None else None,
        rounding_rule=row[6],
        visibility=row[7],
        require_login=row[8],
        eligible_tiers=tuple(row[9] or ()),
        corporate_account_ids=tuple(row[10] or ()),
        promo_code=row[11],
        allow_loyalty_discount=row[12],
        active=row[13],
    )


def get_rate_plan(cur: PgCursor, *, property_id: str, rate_plan_id: str) -> RatePlan | None:
    cur.execute(
        f"SELECT {_PLAN_COLUMNS} FROM rate_plans WHERE property_id = %s AND id = %s",
        (property_id, rate_plan_id),
    )
    row = cur.fetchone()
    return _row_to_plan(row) if row is not None else None


def list_derived_plans(cur: PgCursor, *, property_id: str, base_rate_plan_id: str) -> list[RatePlan]:
    """Active plans deriving from the given base plan."""
    cur.execute(
        f"""
        SELECT {_PLAN_COLUMNS} FROM rate_plans
        WHERE property_id = %s AND base_rate_plan_id = %s AND active
        ORDER BY id
        """,
        (property_id, base_rate_plan_id),
    )
    return [_row_to_plan(row) for row in cur.fetchall()]


def insert_rate_plan(cur: PgCursor, *, plan: RatePlan, name: str) -> None:
    cur.execute(
        """
        INSERT INTO rate_plans (
            property_id, id, name, pricing_mode, base_rate_plan_id, modifier_type,
            modifier_value, rounding_rule, visibility, require_login, eligible_tiers,
            corporate_account_ids, promo_code, allow_loyalty_discount, active
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            plan.property_id,
            plan.id,
            name,
            plan.pricing_mode,
            plan.base_rate_plan_id,
            plan.modifier_type,
            plan.modifier_value,
            plan.rounding_rule,
            plan.visibility,
            plan.require_login,
            list(plan.eligible_tiers),
            list(plan.corporate_account_ids),
            plan.promo_code,
            plan.allow_loyalty_discount,
            plan.active,
        ),
    )


def link_room_type(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    sort_order: int = 0,
) -> None:
    """Offer a rate plan on a room type (idempotent)."""
    cur.execute(
        """
        INSERT INTO room_type_rate_plans (property_id, room_type_id, rate_plan_id, sort_order)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (property_id, room_type_id, rate_plan_id)
        DO UPDATE SET active = true, sort_order = EXCLUDED.sort_order
        """,
        (property_id, room_type_id, rate_plan_id, sort_order),
    )


def is_plan_offered(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
) -> bool:
    cur.execute(
        """
        SELECT 1 FROM room_type_rate_plans
        WHERE property_id = %s AND room_type_id = %s AND rate_plan_id = %s AND active
        """,
        (property_id, room_type_id, rate_plan_id),
    )
    return cur.fetchone() is not None


def list_offered_pairs(cur: PgCursor, *, property_id: str) -> list[tuple[str, str]]:
    """Every active (room_type_id, rate_plan_id) pair of a property."""
    cur.execute(
        """
        SELECT l.room_type_id, l.rate_plan_id
        FROM room_type_rate_plans l
        JOIN rate_plans p ON p.property_id = l.property_id AND p.id = l.rate_plan_id
        WHERE l.property_id = %s AND l.active AND p.active
        ORDER BY l.room_type_id, l.rate_plan_id
        """,
        (property_id,),
    )
    return [(row[0], row[1]) for row in cur.fetchall()]


def fetch_nightly_amounts(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    checkin: date,
    checkout: date,
    occupancy: int,
) -> dict[date, Decimal]:
    """Stored nightly amounts keyed by date; missing nights are absent."""
    cur.execute(
        """
        SELECT date, amount
        FROM nightly_rates
        WHERE property_id = %s
          AND room_type_id = %s
          AND rate_plan_id = %s
          AND occupancy = %s
          AND date >= %s
          AND date < %s
        """,
        (property_id, room_type_id, rate_plan_id, occupancy, checkin, checkout),
    )
    return {row[0]: Decimal(row[1]) for row in cur.fetchall()}


def fetch_rate_rows(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    date_from: date,
    date_to: date | None = None,
) -> list[dict[str, Any]]:
    """All occupancies of a plan's nightly rates over [date_from, date_to).

    Without date_to every stored night from date_from on is returned.
    """
    cur.execute(
        """
        SELECT date, occupancy, amount, currency, per_stay_adjustment
        FROM nightly_rates
        WHERE property_id = %s
          AND room_type_id = %s
          AND rate_plan_id = %s
          AND date >= %s
          AND (%s::date IS NULL OR date < %s)
        ORDER BY date, occupancy
        """,
        (property_id, room_type_id, rate_plan_id, date_from, date_to, date_to),
    )
    return [
        {
            "date": row[0],
            "occupancy": row[1],
            "amount": Decimal(row[2]),
            "currency": row[3],
            "per_stay_adjustment": Decimal(row[4]) if row[4] is not None else None,
        }
        for row in cur.fetchall()
    ]


def upsert_nightly_rate(
    cur: PgCursor,
    *,
    property_id: str,
    room_type_id: str,
    rate_plan_id: str,
    night: date,
    occupancy: int,
    amount: Decimal,
    currency: str,
    per_stay_adjustment: Decimal | None = None,
) -> None:
    cur.execute(
        """
        INSERT INTO nightly_rates (
            property_id, room_type_id, rate_plan_id, date, occupancy,
            amount, currency, per_stay_adjustment
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (property_id, room_type_id, rate_plan_id, date, occupancy)
        DO UPDATE SET amount = EXCLUDED.amount,
                      currency = EXCLUDED.currency,
                      per_stay_adjustment = EXCLUDED.per_stay_adjustment,
                      updated_at = now()
        """,
        (
            property_id,
            room_type_id,
            rate_plan_id,
            night,
            occupancy,
            amount,
            currency,
            per_stay_adjustment,
        ),
    )


def get_promotion(
    cur: PgCursor,
    *,
    property_id: str,
    code: str,
    on_date: date,
) -> Promotion | None:
    """Active promo code valid on the given date (case-insensitive)."""
    cur.execute(
        """
        SELECT code, discount_type, value
        FROM promo_codes
        WHERE property_id = %s
          AND upper(code) = upper(%s)
          AND active
          AND (valid_from IS NULL OR valid_from <= %s)
          AND (valid_to IS NULL OR valid_to >= %s)
        """,
        (property_id, code.strip(), on_date, on_date),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return Promotion(code=row[0], discount_type=row[1], value=Decimal(row[2]))
