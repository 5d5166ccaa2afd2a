"""
pricing.py - Sale price derivation from cost with revenue-tiered margins.

    ideal   = cost / (1 - (tax + commission + margin))
    minimum = cost / (1 - (tax + commission + minimum_margin))

Rates arrive as percentages and are converted to fractions once. All money
stays Decimal and is rounded (cents, half-up) only when the quote is built.

A missing or non-positive cost is "cost unknown", not "cost is zero": the
quote collapses to zeros and `resolve_sale_price` falls back to the product's
base price. This avoids stacking a markup on a cost field that already holds
a marked-up price.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from collaborators import PricingRepository
from config import FinanceDefaults, load_finance_defaults
from logging_config import get_logger
from models import (
    ErrorKind,
    MarginTier,
    PriceQuote,
    PriceSource,
    PricingSettings,
    Product,
    SalePrice,
    TierSelection,
)
from normalize import HUNDRED, ZERO, percent_to_rate, round_money, to_decimal

logger = get_logger(__name__)

ONE = Decimal("1")


def sort_tiers(tiers: Iterable[MarginTier]) -> list[MarginTier]:
    """Canonical tier order.

    When every tier carries `order` it is the only key. Otherwise tiers are
    ordered by `min_revenue` ascending, a missing minimum counting as 0.
    The sort is stable, so equal keys keep their configured order.
    """
    tiers = list(tiers)
    if tiers and all(tier.order is not None for tier in tiers):
        return sorted(tiers, key=lambda tier: tier.order)
    return sorted(tiers, key=lambda tier: tier.min_revenue if tier.min_revenue is not None else ZERO)


def tier_contains(tier: MarginTier, revenue: Decimal) -> bool:
    lower = tier.min_revenue if tier.min_revenue is not None else ZERO
    if revenue < lower:
        return False
    return tier.max_revenue is None or revenue <= tier.max_revenue


def pick_tier_for_revenue(
    tiers: Optional[Sequence[MarginTier]],
    revenue: Any,
    defaults: Optional[FinanceDefaults] = None,
) -> TierSelection:
    """Select margin and minimum margin (percent) for a target revenue.

    First tier in canonical order whose [min, max] contains the revenue
    wins, bounds inclusive. A tier with a missing rate uses the default for
    that rate. No match (or no tiers) yields the defaults.
    """
    defaults = defaults or load_finance_defaults()
    target = to_decimal(revenue)
    if target is None:
        target = ZERO

    for tier in sort_tiers(tiers or []):
        if tier_contains(tier, target):
            return TierSelection(
                margin_rate=tier.margin_rate if tier.margin_rate is not None else defaults.margin_rate,
                minimum_margin_rate=(
                    tier.minimum_margin_rate
                    if tier.minimum_margin_rate is not None
                    else defaults.minimum_margin_rate
                ),
                tier=tier,
            )

    logger.debug("pricing_tier_default | revenue=%s | tiers=%s", target, len(tiers or []))
    return TierSelection(
        margin_rate=defaults.margin_rate,
        minimum_margin_rate=defaults.minimum_margin_rate,
    )


def price_from_cost(
    cost_price: Any,
    target_revenue: Any,
    settings: Optional[PricingSettings],
    tiers: Optional[Sequence[MarginTier]],
    defaults: Optional[FinanceDefaults] = None,
) -> PriceQuote:
    """Ideal and minimum sale price for a cost.

    Returns an all-zero quote when the cost is unknown or settings are
    absent. A divisor <= 0 zeroes that price and flags
    `configuration_error`.
    """
    cost = to_decimal(cost_price)
    if settings is None or cost is None or cost <= ZERO:
        return PriceQuote()

    defaults = defaults or load_finance_defaults()
    tax = percent_to_rate(settings.tax_rate, defaults.tax_rate)
    commission = percent_to_rate(settings.commission_rate, defaults.commission_rate)
    selection = pick_tier_for_revenue(tiers, target_revenue, defaults)
    margin = selection.margin_rate / HUNDRED
    minimum_margin = selection.minimum_margin_rate / HUNDRED

    divisor_ideal = ONE - (tax + commission + margin)
    divisor_minimum = ONE - (tax + commission + minimum_margin)

    error_kind = None
    if divisor_ideal <= ZERO or divisor_minimum <= ZERO:
        error_kind = ErrorKind.CONFIGURATION_ERROR
        logger.warning(
            "pricing_configuration_error | tax=%s | commission=%s | margin=%s | minimum_margin=%s | fallback=zero_price",
            tax * HUNDRED,
            commission * HUNDRED,
            selection.margin_rate,
            selection.minimum_margin_rate,
        )

    ideal = cost / divisor_ideal if divisor_ideal > ZERO else ZERO
    minimum = cost / divisor_minimum if divisor_minimum > ZERO else ZERO

    return PriceQuote(
        ideal_price=round_money(ideal),
        minimum_price=round_money(minimum),
        margin_applied=round_money(selection.margin_rate),
        minimum_margin_applied=round_money(selection.minimum_margin_rate),
        error_kind=error_kind,
    )


def resolve_sale_price(
    product: Product,
    target_revenue: Any,
    settings: Optional[PricingSettings],
    tiers: Optional[Sequence[MarginTier]],
    defaults: Optional[FinanceDefaults] = None,
) -> SalePrice:
    """Price to display or apply for a product.

    computed: valid cost and a non-zero ideal price.
    base:     otherwise a positive base price (rounded), else 0.
    """
    cost = product.cost_price
    if cost is not None and cost > ZERO and settings is not None:
        quote = price_from_cost(cost, target_revenue, settings, tiers, defaults)
        if quote.ideal_price > ZERO:
            return SalePrice(price=quote.ideal_price, source=PriceSource.COMPUTED, details=quote)

    base = product.base_price
    if base is not None and base > ZERO:
        logger.debug("pricing_base_fallback | product=%s | cost=%s | base=%s", product.id, cost, base)
        return SalePrice(price=round_money(base), source=PriceSource.BASE)

    logger.warning("pricing_no_price | product=%s | cost=%s | base=%s", product.id, cost, base)
    return SalePrice(price=round_money(ZERO), source=PriceSource.BASE)


class PricingService:
    """Quotes against the settings and tiers held by a repository."""

    def __init__(self, repository: PricingRepository, defaults: Optional[FinanceDefaults] = None) -> None:
        self.repository = repository
        self.defaults = defaults or load_finance_defaults()

    def quote(self, cost_price: Any, target_revenue: Any) -> PriceQuote:
        return price_from_cost(
            cost_price,
            target_revenue,
            self.repository.get_pricing_settings(),
            self.repository.list_margin_tiers(),
            self.defaults,
        )

    def sale_price(self, product: Product, target_revenue: Any) -> SalePrice:
        return resolve_sale_price(
            product,
            target_revenue,
            self.repository.get_pricing_settings(),
            self.repository.list_margin_tiers(),
            self.defaults,
        )
