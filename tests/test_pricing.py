"""Tests for pricing math: derivation, rounding, eligibility and stacking."""

from datetime import date
from decimal import Decimal

import pytest

from hotelcore.domain.dates import DateRange
from hotelcore.domain.errors import NoRate, NotEligible
from hotelcore.domain.pricing import (
    GuestContext,
    Promotion,
    amortize,
    apply_rounding,
    build_quote,
    check_eligibility,
    derive_nightly,
    parse_rounding_rule,
    promo_discount,
    tax_and_total,
)
from tests.helpers import anonymous, make_plan, make_rules

D = Decimal
JAN_10 = date(2026, 1, 10)
JAN_11 = date(2026, 1, 11)
JAN_12 = date(2026, 1, 12)
JAN_13 = date(2026, 1, 13)


def _derived(modifier_type="percent", value="-10", rounding=None, **kw):
    return make_plan(
        id="nonref",
        pricing_mode="derived_from_base",
        base_rate_plan_id="bar",
        modifier_type=modifier_type,
        modifier_value=D(value),
        rounding_rule=rounding,
        **kw,
    )


class TestDeriveNightly:
    """Derived plan nightly resolution from the base plan's amount."""

    def test_percent_discount_on_round_base(self):
        assert derive_nightly(D("1000"), _derived()) == D("900.00")

    def test_percent_discount_keeps_cents_without_rule(self):
        assert derive_nightly(D("999"), _derived()) == D("899.10")

    def test_nearest_whole_unit(self):
        assert derive_nightly(D("999"), _derived(rounding="nearest_1")) == D("899.00")

    def test_up_to_step(self):
        assert derive_nightly(D("999"), _derived(rounding="up_5")) == D("900.00")

    def test_down_to_step(self):
        assert derive_nightly(D("999"), _derived(rounding="down_10")) == D("890.00")

    def test_amount_per_night(self):
        plan = _derived(modifier_type="amount_per_night", value="25")
        assert derive_nightly(D("100"), plan) == D("125.00")

    def test_negative_result_floors_at_zero(self):
        plan = _derived(modifier_type="amount_per_night", value="-150")
        assert derive_nightly(D("100"), plan) == D("0.00")

    def test_amount_per_stay_leaves_nightly_untouched(self):
        plan = _derived(modifier_type="amount_per_stay", value="30")
        assert derive_nightly(D("100"), plan) == D("100.00")

    def test_explicit_plan_passes_stored_value_through(self):
        assert derive_nightly(D("87.5"), make_plan()) == D("87.50")


class TestRoundingRules:
    def test_parse(self):
        assert parse_rounding_rule("up_0.05") == ("up", D("0.05"))

    @pytest.mark.parametrize("rule", ["nearest", "sideways_1", "nearest_x", "nearest_0", "down_-5"])
    def test_malformed_rule_rejected(self, rule):
        with pytest.raises(ValueError):
            parse_rounding_rule(rule)

    def test_no_rule_rounds_half_up_to_cents(self):
        assert apply_rounding(D("10.005"), None) == D("10.01")

    def test_fractional_step(self):
        assert apply_rounding(D("10.12"), "nearest_0.05") == D("10.10")


class TestAmortize:
    def test_remainder_lands_on_first_night(self):
        assert amortize(D("10.00"), 3) == [D("3.34"), D("3.33"), D("3.33")]

    def test_shares_sum_to_amount(self):
        assert sum(amortize(D("100.00"), 7)) == D("100.00")

    def test_zero_nights_rejected(self):
        with pytest.raises(ValueError):
            amortize(D("10.00"), 0)


class TestEligibility:
    """Private plan access rules. Public plans are open to everyone."""

    def test_public_plan_open_to_anonymous(self):
        check_eligibility(make_plan(), anonymous())

    def test_inactive_plan_rejected(self):
        with pytest.raises(NotEligible):
            check_eligibility(make_plan(active=False), anonymous())

    def test_login_required_rejects_anonymous(self):
        plan = make_plan(visibility="private", require_login=True)
        with pytest.raises(NotEligible):
            check_eligibility(plan, anonymous())

    def test_login_required_accepts_authenticated(self):
        plan = make_plan(visibility="private", require_login=True)
        check_eligibility(plan, GuestContext(authenticated=True))

    def test_tier_rule(self):
        plan = make_plan(visibility="private", eligible_tiers=("gold", "platinum"))
        check_eligibility(plan, GuestContext(authenticated=True, loyalty_tier="gold"))
        with pytest.raises(NotEligible):
            check_eligibility(plan, GuestContext(authenticated=True, loyalty_tier="silver"))
        with pytest.raises(NotEligible):
            check_eligibility(plan, GuestContext(authenticated=False, loyalty_tier="gold"))

    def test_corporate_rule(self):
        plan = make_plan(visibility="private", corporate_account_ids=("acme",))
        check_eligibility(plan, GuestContext(corporate_account_id="acme"))
        with pytest.raises(NotEligible):
            check_eligibility(plan, GuestContext(corporate_account_id="globex"))

    def test_promo_code_is_case_and_space_insensitive(self):
        plan = make_plan(visibility="private", promo_code="SUMMER")
        check_eligibility(plan, GuestContext(promo_code=" summer "))
        with pytest.raises(NotEligible):
            check_eligibility(plan, GuestContext(promo_code="WINTER"))

    def test_all_declared_rules_must_hold(self):
        plan = make_plan(visibility="private", require_login=True, corporate_account_ids=("acme",))
        with pytest.raises(NotEligible):
            check_eligibility(plan, GuestContext(authenticated=True))
        check_eligibility(plan, GuestContext(authenticated=True, corporate_account_id="acme"))

    def test_private_plan_without_rules_needs_referral(self):
        plan = make_plan(visibility="private")
        with pytest.raises(NotEligible):
            check_eligibility(plan, anonymous())
        check_eligibility(plan, GuestContext(referral_source="metasearch"))

    def test_error_does_not_name_the_rule(self):
        plan = make_plan(visibility="private", eligible_tiers=("gold",))
        with pytest.raises(NotEligible) as exc_info:
            check_eligibility(plan, anonymous())
        assert "gold" not in str(exc_info.value)
        assert "tier" not in str(exc_info.value)


class TestTaxAndPromo:
    def test_tax_exclusive_adds_tax(self):
        rules = make_rules(tax_percent=D("10"), fee_per_stay=D("5"))
        assert tax_and_total(D("220.00"), rules) == (D("22.00"), D("5.00"), D("247.00"))

    def test_tax_inclusive_reports_share_without_adding(self):
        rules = make_rules(pricing_display_mode="tax_inclusive", tax_percent=D("10"))
        assert tax_and_total(D("220.00"), rules) == (D("20.00"), D("0.00"), D("220.00"))

    def test_promo_percent(self):
        promo = Promotion(code="TEN", discount_type="percent", value=D("10"))
        assert promo_discount(D("198.00"), promo) == D("19.80")

    def test_promo_amount_never_exceeds_price(self):
        promo = Promotion(code="BIG", discount_type="amount", value=D("500"))
        assert promo_discount(D("220.00"), promo) == D("220.00")

    def test_no_promotion(self):
        assert promo_discount(D("220.00"), None) == D("0.00")


class TestBuildQuote:
    """Full stacking for one room."""

    STORED = {JAN_10: D("100"), JAN_11: D("120")}

    def test_explicit_plan_tax_exclusive(self):
        quote = build_quote(
            plan=make_plan(),
            room_type_id="rt-std",
            dates=DateRange(JAN_10, JAN_12),
            occupancy=2,
            stored=self.STORED,
            rules=make_rules(tax_percent=D("10"), fee_per_stay=D("5")),
            guest=anonymous(),
        )
        assert [n.amount for n in quote.nights] == [D("100.00"), D("120.00")]
        assert quote.subtotal == D("220.00")
        assert quote.tax_amount == D("22.00")
        assert quote.fees == D("5.00")
        assert quote.total == D("247.00")
        assert quote.currency == "EUR"

    def test_loyalty_then_promo(self):
        plan = make_plan(allow_loyalty_discount=True)
        guest = GuestContext(authenticated=True, loyalty_tier="gold", loyalty_discount_percent=D("10"))
        quote = build_quote(
            plan=plan,
            room_type_id="rt-std",
            dates=DateRange(JAN_10, JAN_12),
            occupancy=2,
            stored=self.STORED,
            rules=make_rules(),
            guest=guest,
            promotion=Promotion(code="TEN", discount_type="percent", value=D("10")),
        )
        assert quote.loyalty_discount == D("22.00")
        assert quote.promo_discount == D("19.80")
        assert quote.total == D("178.20")
        assert quote.promo_code == "TEN"

    def test_loyalty_ignored_when_plan_disallows(self):
        guest = GuestContext(authenticated=True, loyalty_tier="gold", loyalty_discount_percent=D("10"))
        quote = build_quote(
            plan=make_plan(),
            room_type_id="rt-std",
            dates=DateRange(JAN_10, JAN_12),
            occupancy=2,
            stored=self.STORED,
            rules=make_rules(),
            guest=guest,
        )
        assert quote.loyalty_discount == D("0.00")
        assert quote.total == D("220.00")

    def test_per_stay_amount_charged_once_and_amortized_for_display(self):
        plan = _derived(modifier_type="amount_per_stay", value="10")
        stored = {JAN_10: D("100"), JAN_11: D("100"), JAN_12: D("100")}
        quote = build_quote(
            plan=plan,
            room_type_id="rt-std",
            dates=DateRange(JAN_10, JAN_13),
            occupancy=2,
            stored=stored,
            rules=make_rules(),
            guest=anonymous(),
        )
        assert quote.per_stay_adjustment == D("10.00")
        assert quote.subtotal == D("310.00")
        assert [n.amount for n in quote.nights] == [D("100.00")] * 3
        assert [n.display_amount for n in quote.nights] == [D("103.34"), D("103.33"), D("103.33")]

    def test_missing_night_raises_no_rate(self):
        with pytest.raises(NoRate) as exc_info:
            build_quote(
                plan=make_plan(),
                room_type_id="rt-std",
                dates=DateRange(JAN_10, JAN_12),
                occupancy=2,
                stored={JAN_10: D("100")},
                rules=make_rules(),
                guest=anonymous(),
            )
        assert exc_info.value.missing_date == JAN_11

    def test_snapshot_dict_restores_same_quote(self):
        quote = build_quote(
            plan=make_plan(),
            room_type_id="rt-std",
            dates=DateRange(JAN_10, JAN_12),
            occupancy=2,
            stored=self.STORED,
            rules=make_rules(tax_percent=D("10")),
            guest=anonymous(),
        )
        from hotelcore.domain.pricing import PriceQuote

        assert PriceQuote.from_dict(quote.to_dict()) == quote
