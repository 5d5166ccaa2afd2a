"""
test_enrichment.py - Display-ready order views.

Usage: pytest test_enrichment.py
"""

from __future__ import annotations

import os
import sys
from datetime import datetime
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from config import FinanceDefaults
from enrichment import LookupMemo, OrderEnrichmentService
from ledger_store import LedgerStore
from models import EnrichOptions, Order

DEFAULTS = FinanceDefaults()


class CountingStore(LedgerStore):
    """LedgerStore that counts lookups per method."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    def get_user(self, user_id):
        self._count("get_user")
        return super().get_user(user_id)

    def get_product(self, product_id):
        self._count("get_product")
        return super().get_product(product_id)

    def list_budget_items(self, budget_id):
        self._count("list_budget_items")
        return super().list_budget_items(budget_id)


@pytest.fixture
def store(tmp_path):
    ledger = CountingStore(str(tmp_path / "ledger.json"))
    ledger.seed(
        {
            "users": [
                {"id": "v1", "name": "Carla Vendas"},
                {"id": "u-client", "name": "User Client"},
                {"id": "prod1", "name": "Fabrica Sul"},
            ],
            "clients": [
                {"id": "c1", "name": "Client One"},
                {"id": "c2", "name": "Client By User", "user_id": "u2"},
            ],
            "products": [{"id": "pr1", "name": "Caneca", "category": "Copos"}],
            "budgets": [{"id": "b1", "total_value": "1000.00", "down_payment": "300.00"}],
            "budget_items": [
                {"id": "i1", "budget_id": "b1", "product_id": "pr1", "quantity": 10, "unit_price": "50"},
                {"id": "i2", "budget_id": "b1", "product_id": "gone", "quantity": 5},
            ],
            "payments": [
                {"id": "pay1", "order_id": "o1", "amount": "200.00", "status": "confirmed"},
                {"id": "pay2", "order_id": "o1", "amount": "150.00", "status": "confirmed"},
                {"id": "pay3", "order_id": "o1", "amount": "999.00", "status": "pending"},
            ],
            "production_orders": [
                {
                    "id": "po1",
                    "order_id": "o1",
                    "producer_id": "prod1",
                    "tracking_code": "BR123",
                    "delivery_deadline": "2025-08-10T00:00:00",
                    "has_unread_notes": True,
                }
            ],
        }
    )
    return ledger


def _order(**fields) -> Order:
    base = {"id": "o1", "vendor_id": "v1", "total_value": "1000.00", "budget_id": "b1"}
    base.update(fields)
    return Order(**base)


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"contact_name": "Contato Direto", "client_id": "c1"}, "Contato Direto"),
        ({"client_id": "c1"}, "Client One"),
        ({"client_id": "u2"}, "Client By User"),
        ({"client_id": "u-client"}, "User Client"),
        ({"client_id": "nobody"}, "Name not informed"),
        ({}, "Name not informed"),
    ],
)
def test_client_name_fallback_chain(store, fields, expected):
    enriched = OrderEnrichmentService(store, DEFAULTS).enrich(_order(**fields))
    assert enriched.client_name == expected


def test_basic_enrichment_fields(store):
    enriched = OrderEnrichmentService(store, DEFAULTS).enrich(_order())

    assert enriched.vendor_name == "Carla Vendas"
    assert enriched.producer_name == "Fabrica Sul"
    assert [item.product.name for item in enriched.budget_items] == ["Caneca", "Product not found"]
    assert enriched.budget_items[0].product.category == "Copos"
    assert enriched.payments is None
    assert enriched.paid_value is None
    assert enriched.has_unread_notes is None


def test_unknown_vendor_uses_fallback(store):
    enriched = OrderEnrichmentService(store, DEFAULTS).enrich(_order(vendor_id="ghost"))
    assert enriched.vendor_name == "Vendor"
    assert enriched.producer_name == "Fabrica Sul"


def test_detailed_financials(store):
    options = EnrichOptions(include_payments=True, include_detailed_financials=True, include_unread_notes=True)
    enriched = OrderEnrichmentService(store, DEFAULTS).enrich(_order(), options)

    assert [p.id for p in enriched.payments] == ["pay1", "pay2"]
    assert enriched.paid_value == Decimal("650.00")
    assert enriched.remaining_value == Decimal("350.00")
    assert enriched.tracking_code == "BR123"
    assert enriched.estimated_delivery == datetime(2025, 8, 10)
    assert enriched.budget_info.down_payment == Decimal("300.00")
    assert enriched.has_unread_notes is True


def test_missing_budget_counts_as_zero_down_payment(store):
    options = EnrichOptions(include_detailed_financials=True)
    enriched = OrderEnrichmentService(store, DEFAULTS).enrich(_order(budget_id=None), options)

    assert enriched.paid_value == Decimal("350.00")
    assert enriched.remaining_value == Decimal("650.00")
    assert enriched.budget_info is None
    assert enriched.payments is None
    assert enriched.budget_items == []


def test_enrich_orders_memoizes_lookups_within_a_batch(store):
    service = OrderEnrichmentService(store, DEFAULTS)
    orders = [_order(id=f"o{n}") for n in range(5)]

    enriched = service.enrich_orders(orders)

    assert len(enriched) == 5
    assert store.calls["list_budget_items"] == 1
    assert store.calls["get_product"] == 2

    service.enrich_orders(orders)
    assert store.calls["list_budget_items"] == 2


def test_lookup_memo_caches_misses(store):
    memo = LookupMemo(store)
    assert memo.user("ghost") is None
    assert memo.user("ghost") is None
    assert store.calls["get_user"] == 1
    assert (memo.hits, memo.misses) == (1, 1)
