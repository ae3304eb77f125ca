"""Pricing math - eligibility, derivation, rounding and discount stacking.

Pure functions over plain values; no database access. The quote module feeds
them with stored rows.

Stacking order for one room:
    nightly (explicit or base + modifier, then rounding)
    -> subtotal (+ per-stay adjustment, charged once)
    -> loyalty discount (multiplicative, plan must allow it)
    -> promo code adjustment
    -> tax and mandatory fees per the property's display mode

amount_per_stay convention: the per-stay amount is charged exactly once in
the subtotal. Per-night display amortizes it evenly across the nights, any
remainder cent landing on the first night. Materialized and published nightly
rates for such plans equal the base nightly and carry the per-stay amount as a
separate field.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal

from hotelcore.domain.dates import DateRange
from hotelcore.domain.errors import NoRate, NotEligible

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

PricingMode = Literal["explicit_table", "derived_from_base"]
ModifierType = Literal["percent", "amount_per_night", "amount_per_stay"]

_ROUNDING_MODES = {
    "nearest": ROUND_HALF_UP,
    "up": ROUND_CEILING,
    "down": ROUND_FLOOR,
}


@dataclass(frozen=True)
class RatePlan:
    """Rate plan definition as stored."""

    property_id: str
    id: str
    pricing_mode: PricingMode = "explicit_table"
    base_rate_plan_id: str | None = None
    modifier_type: ModifierType | None = None
    modifier_value: Decimal | None = None
    rounding_rule: str | None = None
    visibility: Literal["public", "private"] = "public"
    require_login: bool = False
    eligible_tiers: tuple[str, ...] = ()
    corporate_account_ids: tuple[str, ...] = ()
    promo_code: str | None = None
    allow_loyalty_discount: bool = False
    active: bool = True

    @property
    def is_derived(self) -> bool:
        return self.pricing_mode == "derived_from_base"


@dataclass(frozen=True)
class GuestContext:
    """What the caller knows about the guest asking for a price.

    Loyalty tiers and discount percentages are computed elsewhere; this core
    only consumes them.
    """

    authenticated: bool = False
    loyalty_tier: str | None = None
    loyalty_discount_percent: Decimal | None = None
    corporate_account_id: str | None = None
    promo_code: str | None = None
    referral_source: str | None = None


@dataclass(frozen=True)
class Promotion:
    code: str
    discount_type: Literal["percent", "amount"]
    value: Decimal


@dataclass(frozen=True)
class PricingRules:
    """Property-level tax and fee inclusion."""

    currency: str
    pricing_display_mode: Literal["tax_exclusive", "tax_inclusive"] = "tax_exclusive"
    tax_percent: Decimal = Decimal("0")
    fee_per_stay: Decimal = Decimal("0")


@dataclass(frozen=True)
class NightPrice:
    date: date
    amount: Decimal
    display_amount: Decimal


@dataclass(frozen=True)
class PriceQuote:
    """Frozen price for one room of a line. Stored verbatim as the pricing snapshot."""

    property_id: str
    room_type_id: str
    rate_plan_id: str
    checkin: date
    checkout: date
    occupancy: int
    currency: str
    nights: tuple[NightPrice, ...]
    per_stay_adjustment: Decimal
    subtotal: Decimal
    loyalty_discount: Decimal
    promo_discount: Decimal
    tax_amount: Decimal
    fees: Decimal
    total: Decimal
    pricing_display_mode: str
    promo_code: str | None = None
    quote_token: str | None = None
    locked_until: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_id": self.property_id,
            "room_type_id": self.room_type_id,
            "rate_plan_id": self.rate_plan_id,
            "checkin": self.checkin.isoformat(),
            "checkout": self.checkout.isoformat(),
            "occupancy": self.occupancy,
            "currency": self.currency,
            "nights": [
                {
                    "date": n.date.isoformat(),
                    "amount": str(n.amount),
                    "display_amount": str(n.display_amount),
                }
                for n in self.nights
            ],
            "per_stay_adjustment": str(self.per_stay_adjustment),
            "subtotal": str(self.subtotal),
            "loyalty_discount": str(self.loyalty_discount),
            "promo_discount": str(self.promo_discount),
            "tax_amount": str(self.tax_amount),
            "fees": str(self.fees),
            "total": str(self.total),
            "pricing_display_mode": self.pricing_display_mode,
            "promo_code": self.promo_code,
            "quote_token": self.quote_token,
            "locked_until": self.locked_until.isoformat() if self.locked_until else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PriceQuote:
        locked_until = data.get("locked_until")
        return cls(
            property_id=data["property_id"],
            room_type_id=data["room_type_id"],
            rate_plan_id=data["rate_plan_id"],
            checkin=date.fromisoformat(data["checkin"]),
            checkout=date.fromisoformat(data["checkout"]),
            occupancy=int(data["occupancy"]),
            currency=data["currency"],
            nights=tuple(
                NightPrice(
                    date=date.fromisoformat(n["date"]),
                    amount=Decimal(n["amount"]),
                    display_amount=Decimal(n["display_amount"]),
                )
                for n in data["nights"]
            ),
            per_stay_adjustment=Decimal(data["per_stay_adjustment"]),
            subtotal=Decimal(data["subtotal"]),
            loyalty_discount=Decimal(data["loyalty_discount"]),
            promo_discount=Decimal(data["promo_discount"]),
            tax_amount=Decimal(data["tax_amount"]),
            fees=Decimal(data["fees"]),
            total=Decimal(data["total"]),
            pricing_display_mode=data["pricing_display_mode"],
            promo_code=data.get("promo_code"),
            quote_token=data.get("quote_token"),
            locked_until=datetime.fromisoformat(locked_until) if locked_until else None,
        )


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


# ── Eligibility ────────────────────────────────────────────────────────


def check_eligibility(plan: RatePlan, guest: GuestContext) -> None:
    """Raise NotEligible unless the guest may book the plan.

    Public plans are open to everyone. A private plan requires every rule it
    declares; a private plan declaring no rule is reachable only through an
    external referral. The error never says which rule failed.
    """
    if not plan.active:
        raise NotEligible()
    if plan.visibility != "private":
        return

    declared = False

    if plan.require_login:
        declared = True
        if not guest.authenticated:
            raise NotEligible()

    if plan.eligible_tiers:
        declared = True
        if not guest.authenticated or guest.loyalty_tier not in plan.eligible_tiers:
            raise NotEligible()

    if plan.corporate_account_ids:
        declared = True
        if guest.corporate_account_id not in plan.corporate_account_ids:
            raise NotEligible()

    if plan.promo_code:
        declared = True
        if not guest.promo_code or guest.promo_code.strip().upper() != plan.promo_code.strip().upper():
            raise NotEligible()

    if not declared and not guest.referral_source:
        raise NotEligible()


def is_conditional(plan: RatePlan) -> bool:
    """Whether access to the plan depends on the guest context."""
    return plan.visibility == "private"


# ── Derivation and rounding ────────────────────────────────────────────


def parse_rounding_rule(rule: str) -> tuple[str, Decimal]:
    """Parse "<mode>_<step>" where mode is nearest, up or down.

    Examples: "nearest_1", "up_0.05", "down_10".

    Raises:
        ValueError: If the rule is malformed.
    """
    mode, sep, step_raw = rule.partition("_")
    if not sep or mode not in _ROUNDING_MODES:
        raise ValueError(f"Unknown rounding rule: {rule!r}")
    try:
        step = Decimal(step_raw)
    except InvalidOperation as e:
        raise ValueError(f"Invalid rounding step in {rule!r}") from e
    if step <= 0:
        raise ValueError(f"Rounding step must be positive in {rule!r}")
    return mode, step


def apply_rounding(amount: Decimal, rule: str | None) -> Decimal:
    """Round amount to the rule's step; without a rule, round to cents."""
    if not rule:
        return to_cents(amount)
    mode, step = parse_rounding_rule(rule)
    units = (amount / step).quantize(Decimal("1"), rounding=_ROUNDING_MODES[mode])
    return to_cents(units * step)


def apply_modifier(base: Decimal, modifier_type: str, value: Decimal) -> Decimal:
    """Apply a per-night modifier to a base nightly amount (unrounded).

    amount_per_stay leaves the nightly amount untouched; it is added once to
    the stay by per_stay_adjustment().
    """
    if modifier_type == "percent":
        return base * (HUNDRED + value) / HUNDRED
    if modifier_type == "amount_per_night":
        return base + value
    if modifier_type == "amount_per_stay":
        return base
    raise ValueError(f"Unknown modifier type: {modifier_type!r}")


def derive_nightly(base: Decimal, plan: RatePlan) -> Decimal:
    """Resolve a derived plan's nightly amount from its base plan's amount."""
    if not plan.is_derived:
        return to_cents(base)
    derived = apply_modifier(base, plan.modifier_type, plan.modifier_value)
    derived = apply_rounding(derived, plan.rounding_rule)
    return max(derived, Decimal("0.00"))


def per_stay_adjustment(plan: RatePlan) -> Decimal:
    if plan.is_derived and plan.modifier_type == "amount_per_stay":
        return to_cents(plan.modifier_value)
    return Decimal("0.00")


def amortize(amount: Decimal, nights: int) -> list[Decimal]:
    """Split amount evenly into nights shares; the remainder goes to the first."""
    if nights < 1:
        raise ValueError("nights must be at least 1")
    share = (amount / nights).quantize(CENT, rounding=ROUND_FLOOR)
    shares = [share] * nights
    shares[0] += amount - share * nights
    return shares


# ── Quote assembly ─────────────────────────────────────────────────────


def resolve_nightly(
    plan: RatePlan,
    dates: DateRange,
    stored: dict[date, Decimal],
) -> list[Decimal]:
    """Nightly amounts for the stay.

    Args:
        plan: Plan being quoted.
        dates: Stay range.
        stored: Stored nightly values of the plan itself (explicit) or of its
            base plan (derived), keyed by date.

    Raises:
        NoRate: If any night has no stored value.
    """
    amounts: list[Decimal] = []
    for night in dates.iter_nights():
        base = stored.get(night)
        if base is None:
            raise NoRate(night)
        amounts.append(derive_nightly(Decimal(base), plan))
    return amounts


def loyalty_discount(subtotal: Decimal, plan: RatePlan, guest: GuestContext) -> Decimal:
    if not plan.allow_loyalty_discount:
        return Decimal("0.00")
    if not guest.authenticated or not guest.loyalty_tier or not guest.loyalty_discount_percent:
        return Decimal("0.00")
    pct = min(max(Decimal(guest.loyalty_discount_percent), Decimal("0")), HUNDRED)
    return to_cents(subtotal * pct / HUNDRED)


def promo_discount(amount: Decimal, promotion: Promotion | None) -> Decimal:
    if promotion is None:
        return Decimal("0.00")
    if promotion.discount_type == "percent":
        pct = min(max(promotion.value, Decimal("0")), HUNDRED)
        discount = to_cents(amount * pct / HUNDRED)
    else:
        discount = to_cents(promotion.value)
    return min(discount, amount)


def tax_and_total(net: Decimal, rules: PricingRules) -> tuple[Decimal, Decimal, Decimal]:
    """Return (tax_amount, fees, total) for the net room amount.

    tax_exclusive: stored rates are net, tax is added on top.
    tax_inclusive: stored rates already include tax; the tax share is
    reported but not added again.
    """
    rate = rules.tax_percent / HUNDRED
    fees = to_cents(rules.fee_per_stay)
    if rules.pricing_display_mode == "tax_inclusive":
        tax = to_cents(net - net / (Decimal("1") + rate)) if rate else Decimal("0.00")
        return tax, fees, to_cents(net + fees)
    tax = to_cents(net * rate)
    return tax, fees, to_cents(net + tax + fees)


def build_quote(
    *,
    plan: RatePlan,
    room_type_id: str,
    dates: DateRange,
    occupancy: int,
    stored: dict[date, Decimal],
    rules: PricingRules,
    guest: GuestContext,
    promotion: Promotion | None = None,
) -> PriceQuote:
    """Assemble a PriceQuote for one room.

    Eligibility must already have been checked.

    Raises:
        NoRate: If any night is missing.
    """
    nightly = resolve_nightly(plan, dates, stored)
    per_stay = per_stay_adjustment(plan)
    shares = amortize(per_stay, dates.nights) if per_stay else [Decimal("0.00")] * dates.nights

    nights = tuple(
        NightPrice(date=night, amount=amount, display_amount=amount + share)
        for night, amount, share in zip(dates.iter_nights(), nightly, shares)
    )

    subtotal = to_cents(sum(nightly, Decimal("0")) + per_stay)
    loyalty = loyalty_discount(subtotal, plan, guest)
    after_loyalty = subtotal - loyalty
    promo = promo_discount(after_loyalty, promotion)
    net = after_loyalty - promo
    tax, fees, total = tax_and_total(net, rules)

    return PriceQuote(
        property_id=plan.property_id,
        room_type_id=room_type_id,
        rate_plan_id=plan.id,
        checkin=dates.checkin,
        checkout=dates.checkout,
        occupancy=occupancy,
        currency=rules.currency,
        nights=nights,
        per_stay_adjustment=per_stay,
        subtotal=subtotal,
        loyalty_discount=loyalty,
        promo_discount=promo,
        tax_amount=tax,
        fees=fees,
        total=total,
        pricing_display_mode=rules.pricing_display_mode,
        promo_code=promotion.code if promotion else None,
    )
