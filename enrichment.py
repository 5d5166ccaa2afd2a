"""
enrichment.py - Display-ready order views.

Combines an order with its client and vendor names, producer, budget items
and (optionally) payments and a paid/remaining balance.

    paid      = sum(confirmed payments) + budget down payment
    remaining = total - paid

Both are summed exactly and rounded once at the end. A missing budget
counts as a zero down payment.

Lookups go through a `LookupMemo` built for a single `enrich_orders` call,
so a batch of orders sharing a vendor or product hits the repository once
per id. Memos are never shared between calls.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, TypeVar

from collaborators import EnrichmentRepository
from config import FinanceDefaults, load_finance_defaults
from logging_config import get_logger
from models import (
    Budget,
    BudgetInfo,
    Client,
    EnrichedBudgetItem,
    EnrichedOrder,
    EnrichOptions,
    Order,
    Payment,
    PaymentStatus,
    Product,
    ProductionOrder,
    ProductSummary,
    User,
)
from normalize import ZERO, round_money, sum_money

logger = get_logger(__name__)

T = TypeVar("T")


class LookupMemo:
    """Per-batch cache of repository lookups, misses included."""

    def __init__(self, repository: EnrichmentRepository) -> None:
        self.repository = repository
        self._users: dict[str, Optional[User]] = {}
        self._clients: dict[str, Optional[Client]] = {}
        self._clients_by_user: dict[str, Optional[Client]] = {}
        self._products: dict[str, Optional[Product]] = {}
        self._budgets: dict[str, Optional[Budget]] = {}
        self._budget_items: dict[str, list[EnrichedBudgetItem]] = {}
        self.hits = 0
        self.misses = 0

    def _cached(self, cache: dict[str, T], key: str, load: Callable[[str], T]) -> T:
        if key in cache:
            self.hits += 1
            return cache[key]
        self.misses += 1
        value = load(key)
        cache[key] = value
        return value

    def user(self, user_id: str) -> Optional[User]:
        return self._cached(self._users, user_id, self.repository.get_user)

    def client(self, client_id: str) -> Optional[Client]:
        return self._cached(self._clients, client_id, self.repository.get_client)

    def client_by_user(self, user_id: str) -> Optional[Client]:
        return self._cached(self._clients_by_user, user_id, self.repository.get_client_by_user_id)

    def product(self, product_id: str) -> Optional[Product]:
        return self._cached(self._products, product_id, self.repository.get_product)

    def budget(self, budget_id: str) -> Optional[Budget]:
        return self._cached(self._budgets, budget_id, self.repository.get_budget)

    def budget_items(self, budget_id: str, product_fallback: str) -> list[EnrichedBudgetItem]:
        def load(key: str) -> list[EnrichedBudgetItem]:
            items = []
            for item in self.repository.list_budget_items(key):
                product = self.product(item.product_id)
                summary = ProductSummary(
                    name=(product.name if product and product.name else product_fallback),
                    description=(product.description or "") if product else "",
                    category=(product.category or "") if product else "",
                    image_link=(product.image_link or "") if product else "",
                )
                items.append(EnrichedBudgetItem(**item.model_dump(), product=summary))
            return items

        return self._cached(self._budget_items, budget_id, load)


class OrderEnrichmentService:
    def __init__(self, repository: EnrichmentRepository, defaults: Optional[FinanceDefaults] = None) -> None:
        self.repository = repository
        self.defaults = defaults or load_finance_defaults()

    def _client_name(self, order: Order, memo: LookupMemo) -> str:
        if order.contact_name:
            return order.contact_name

        if order.client_id:
            client = memo.client(order.client_id)
            if client is not None:
                if client.name:
                    return client.name
            else:
                by_user = memo.client_by_user(order.client_id)
                if by_user is not None:
                    if by_user.name:
                        return by_user.name
                else:
                    user = memo.user(order.client_id)
                    if user is not None and user.name:
                        return user.name

        return self.defaults.name_not_informed

    def _producer_name(self, production_orders: list[ProductionOrder], memo: LookupMemo) -> Optional[str]:
        if not production_orders or not production_orders[0].producer_id:
            return None
        producer = memo.user(production_orders[0].producer_id)
        return producer.name if producer and producer.name else None

    def enrich(
        self,
        order: Order,
        options: Optional[EnrichOptions] = None,
        memo: Optional[LookupMemo] = None,
    ) -> EnrichedOrder:
        options = options or EnrichOptions()
        memo = memo or LookupMemo(self.repository)

        vendor = memo.user(order.vendor_id)
        production_orders = self.repository.list_production_orders(order.id)
        budget_items = (
            memo.budget_items(order.budget_id, self.defaults.product_not_found)
            if order.budget_id
            else []
        )

        extra: dict = {}
        if options.include_unread_notes:
            extra["has_unread_notes"] = any(po.has_unread_notes for po in production_orders)

        payments: Optional[list[Payment]] = None
        if options.include_payments or options.include_detailed_financials:
            payments = [
                payment
                for payment in self.repository.list_payments(order.id)
                if payment.status == PaymentStatus.CONFIRMED
            ]
        if options.include_payments:
            extra["payments"] = payments

        if options.include_detailed_financials:
            extra.update(self._financials(order, payments or [], production_orders, memo))

        data = order.model_dump()
        data.update(extra)
        data.update(
            client_name=self._client_name(order, memo),
            vendor_name=vendor.name if vendor and vendor.name else self.defaults.vendor_name_fallback,
            producer_name=self._producer_name(production_orders, memo),
            budget_items=budget_items,
        )
        return EnrichedOrder(**data)

    def _financials(
        self,
        order: Order,
        payments: list[Payment],
        production_orders: list[ProductionOrder],
        memo: LookupMemo,
    ) -> dict:
        budget = memo.budget(order.budget_id) if order.budget_id else None
        down_payment = budget.down_payment if budget and budget.down_payment is not None else ZERO

        paid = sum_money([payment.amount for payment in payments]) + down_payment
        remaining = order.total_value - paid

        first_po = production_orders[0] if production_orders else None
        fields = {
            "paid_value": round_money(paid),
            "remaining_value": round_money(remaining),
            "tracking_code": order.tracking_code or (first_po.tracking_code if first_po else None),
            "estimated_delivery": first_po.delivery_deadline if first_po else None,
            "budget_info": (
                BudgetInfo(
                    down_payment=round_money(down_payment),
                    total_value=round_money(budget.total_value),
                )
                if budget
                else None
            ),
        }
        if remaining < ZERO:
            logger.warning(
                "enrichment_overpaid | order=%s | total=%s | paid=%s",
                order.id,
                order.total_value,
                round_money(paid),
            )
        return fields

    def enrich_orders(
        self,
        orders: Iterable[Order],
        options: Optional[EnrichOptions] = None,
    ) -> list[EnrichedOrder]:
        memo = LookupMemo(self.repository)
        enriched = [self.enrich(order, options, memo) for order in orders]
        logger.info(
            "orders_enriched | orders=%s | lookups=%s | cache_hits=%s",
            len(enriched),
            memo.misses,
            memo.hits,
        )
        return enriched
