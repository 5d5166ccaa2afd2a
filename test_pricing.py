"""
test_pricing.py - Tiered margin pricing.

Usage: pytest test_pricing.py
"""

from __future__ import annotations

import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from config import FinanceDefaults
from models import ErrorKind, MarginTier, PriceSource, PricingSettings, Product
from pricing import pick_tier_for_revenue, price_from_cost, resolve_sale_price, sort_tiers

DEFAULTS = FinanceDefaults()
SETTINGS = PricingSettings(tax_rate="9", commission_rate="15")

TIERS = [
    MarginTier(id="large", min_revenue="50000", max_revenue=None, margin_rate="18", minimum_margin_rate="12", order=3),
    MarginTier(id="small", min_revenue="0", max_revenue="10000", margin_rate="28", minimum_margin_rate="20", order=1),
    MarginTier(id="medium", min_revenue="10000.01", max_revenue="50000", margin_rate="22,5", minimum_margin_rate="15", order=2),
]


def test_reference_scenario_ideal_price():
    quote = price_from_cost("100.00", "5000", SETTINGS, TIERS, DEFAULTS)

    assert quote.ideal_price == Decimal("208.33")
    assert quote.minimum_price == Decimal("178.57")
    assert quote.margin_applied == Decimal("28.00")
    assert quote.minimum_margin_applied == Decimal("20.00")
    assert quote.error_kind is None


def test_sort_tiers_prefers_explicit_order_then_min_revenue():
    assert [t.id for t in sort_tiers(TIERS)] == ["small", "medium", "large"]

    partial = [
        MarginTier(id="b", min_revenue="500", order=1),
        MarginTier(id="a", min_revenue=None),
        MarginTier(id="c", min_revenue="100", order=2),
    ]
    assert [t.id for t in sort_tiers(partial)] == ["a", "c", "b"]


@pytest.mark.parametrize(
    "revenue, tier_id",
    [("0", "small"), ("10000", "small"), ("10000.01", "medium"), ("50000", "medium"), ("50000.01", "large"), ("9999999", "large")],
)
def test_tier_bounds_are_inclusive(revenue, tier_id):
    assert pick_tier_for_revenue(TIERS, revenue, DEFAULTS).tier.id == tier_id


def test_unmatched_revenue_and_missing_rates_fall_back_to_defaults():
    gap = [MarginTier(id="only", min_revenue="100", max_revenue="200", margin_rate=None, minimum_margin_rate="5")]

    outside = pick_tier_for_revenue(gap, "50", DEFAULTS)
    assert outside.from_defaults
    assert (outside.margin_rate, outside.minimum_margin_rate) == (Decimal("28"), Decimal("20"))

    inside = pick_tier_for_revenue(gap, "150", DEFAULTS)
    assert inside.margin_rate == Decimal("28")
    assert inside.minimum_margin_rate == Decimal("5")

    assert pick_tier_for_revenue([], "150", DEFAULTS).from_defaults


def test_tier_selection_is_monotonic():
    previous_min = Decimal("-1")
    for revenue in range(0, 120000, 2500):
        tier = pick_tier_for_revenue(TIERS, revenue, DEFAULTS).tier
        current_min = tier.min_revenue or Decimal("0")
        assert current_min >= previous_min
        previous_min = current_min


@pytest.mark.parametrize("cost", ["37.19", "100", "1234.56", "0.01", "99999.99"])
def test_ideal_price_inverts_to_cost_within_a_cent(cost):
    quote = price_from_cost(cost, "5000", SETTINGS, TIERS, DEFAULTS)
    margin_sum = Decimal("0.09") + Decimal("0.15") + Decimal("0.28")
    assert abs(quote.ideal_price * (1 - margin_sum) - Decimal(cost)) <= Decimal("0.01")


@pytest.mark.parametrize("cost", [None, "", "0", "-5", "abc"])
def test_unknown_cost_gives_zero_quote(cost):
    assert price_from_cost(cost, "5000", SETTINGS, TIERS, DEFAULTS).is_zero


def test_missing_settings_gives_zero_quote():
    assert price_from_cost("100", "5000", None, TIERS, DEFAULTS).is_zero


def test_missing_setting_rates_use_defaults():
    quote = price_from_cost("100", "5000", PricingSettings(), [], DEFAULTS)
    assert quote.ideal_price == Decimal("208.33")


def test_rates_summing_to_100_percent_flag_configuration_error():
    settings = PricingSettings(tax_rate="40", commission_rate="40")
    quote = price_from_cost("100", "5000", settings, TIERS, DEFAULTS)

    assert quote.ideal_price == Decimal("0")
    assert quote.minimum_price == Decimal("0")
    assert quote.error_kind == ErrorKind.CONFIGURATION_ERROR


def test_only_ideal_divisor_invalid_keeps_minimum_price():
    settings = PricingSettings(tax_rate="30", commission_rate="45")
    quote = price_from_cost("100", "5000", settings, TIERS, DEFAULTS)

    assert quote.ideal_price == Decimal("0")
    assert quote.minimum_price == Decimal("2000.00")
    assert quote.error_kind == ErrorKind.CONFIGURATION_ERROR


def test_zero_cost_falls_back_to_base_price():
    product = Product(id="p1", cost_price="0", base_price="150.00")
    sale = resolve_sale_price(product, "5000", SETTINGS, TIERS, DEFAULTS)

    assert sale.price == Decimal("150.00")
    assert sale.source == PriceSource.BASE
    assert sale.details is None


def test_valid_cost_is_computed():
    product = Product(id="p1", cost_price="100", base_price="150.00")
    sale = resolve_sale_price(product, "5000", SETTINGS, TIERS, DEFAULTS)

    assert sale.source == PriceSource.COMPUTED
    assert sale.price == Decimal("208.33")
    assert sale.details.ideal_price == sale.price


def test_misconfigured_rates_fall_back_to_base_then_zero():
    broken = PricingSettings(tax_rate="50", commission_rate="50")
    with_base = Product(id="p1", cost_price="100", base_price="150.456")
    without_base = Product(id="p2", cost_price="100")

    assert resolve_sale_price(with_base, "5000", broken, TIERS, DEFAULTS).price == Decimal("150.46")
    fallback = resolve_sale_price(without_base, "5000", broken, TIERS, DEFAULTS)
    assert fallback.price == Decimal("0") and fallback.source == PriceSource.BASE
