"""
test_ledger_store.py - JSON ledger persistence.

Usage: pytest test_ledger_store.py
"""

from __future__ import annotations

import os
import sys
from datetime import date, datetime, timezone
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from errors import CollaboratorError, DuplicateCommissionError, NotFoundError
from ledger_store import LedgerState, LedgerStore
from models import BankTransactionRecord, CommissionEntry, CommissionType, ReceivableStatus


def test_missing_file_starts_empty(tmp_path):
    store = LedgerStore(str(tmp_path / "nested" / "ledger.json"))
    assert store.state == LedgerState()
    assert store.list_orders() == []
    assert not store.path.exists()


def test_save_is_atomic_and_round_trips(tmp_path):
    path = tmp_path / "ledger.json"
    store = LedgerStore(str(path))
    store.seed(
        {
            "receivables": [
                {"id": "r1", "order_id": "o1", "expected_amount": "10.50", "due_date": "2025-07-01"},
                {"id": "r2", "order_id": "o2", "expected_amount": "3", "due_date": "2025-07-01", "status": "matched"},
            ],
            "margin_tiers": [{"id": "t1", "min_revenue": "0", "margin_rate": "28"}],
            "pricing_settings": {"tax_rate": "9", "commission_rate": "15"},
        }
    )

    assert path.exists()
    assert not list(tmp_path.glob("ledger-*.tmp"))

    reloaded = LedgerStore(str(path))
    open_items = reloaded.list_open_receivables()
    assert [r.id for r in open_items] == ["r1"]
    assert open_items[0].expected_amount == Decimal("10.50")
    assert reloaded.get_pricing_settings().tax_rate == Decimal("9")
    assert reloaded.list_margin_tiers()[0].margin_rate == Decimal("28")
    assert reloaded.state.updated_at


def test_mark_receivable_matched(tmp_path):
    store = LedgerStore(str(tmp_path / "ledger.json"))
    store.seed({"receivables": [{"id": "r1", "order_id": "o1", "expected_amount": "5", "due_date": "2025-07-01"}]})
    receivable = store.list_open_receivables()[0]

    store.mark_receivable_matched(
        receivable.model_copy(update={"status": ReceivableStatus.MATCHED, "matched_transaction_id": "T1"})
    )

    assert store.list_open_receivables() == []
    assert store.state.receivables[0].matched_transaction_id == "T1"
    with pytest.raises(NotFoundError):
        store.mark_receivable_matched(receivable.model_copy(update={"id": "missing"}))


def test_import_log_is_keyed_by_account(tmp_path):
    store = LedgerStore(str(tmp_path / "ledger.json"))
    record = BankTransactionRecord(external_id="FT001", posted_at=date(2025, 7, 22), amount=Decimal("-250.00"))

    store.record_imported("acct-1", [record])
    store.record_imported("acct-1", [record])

    assert store.has_imported("acct-1", "FT001")
    assert not store.has_imported("acct-2", "FT001")
    assert not store.has_imported(None, "FT001")
    assert len(store.state.imported_transactions["acct-1"]) == 1

    reloaded = LedgerStore(str(store.path))
    assert reloaded.has_imported("acct-1", "FT001")


def test_vendor_rate_and_active_partners(tmp_path):
    store = LedgerStore(str(tmp_path / "ledger.json"))
    store.seed(
        {
            "vendors": [{"user_id": "v1", "commission_rate": "12.5"}, {"user_id": "v2"}],
            "partners": [{"user_id": "p1"}, {"user_id": "p2", "is_active": False}],
        }
    )

    assert Decimal(store.get_vendor_rate("v1")) == Decimal("12.5")
    assert store.get_vendor_rate("v2") is None
    assert store.get_vendor_rate("unknown") is None
    assert store.list_active_partner_ids() == ["p1"]


def test_corrupt_file_raises_collaborator_error(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CollaboratorError):
        LedgerStore(str(path))


def _receivable_store(tmp_path) -> LedgerStore:
    store = LedgerStore(str(tmp_path / "ledger.json"))
    store.seed({"receivables": [{"id": "r1", "order_id": "o1", "expected_amount": "5", "due_date": "2025-07-01"}]})
    return store


def _failing_replace(*args, **kwargs):
    raise OSError("disk full")


def test_failed_save_restores_memory_state(tmp_path, monkeypatch):
    store = _receivable_store(tmp_path)
    receivable = store.list_open_receivables()[0]
    record = BankTransactionRecord(external_id="T1", posted_at=date(2025, 7, 1), amount=Decimal("5"))

    monkeypatch.setattr(os, "replace", _failing_replace)
    with pytest.raises(CollaboratorError):
        store.mark_receivable_matched(receivable)
    with pytest.raises(CollaboratorError):
        store.settle_transaction("acct-1", record, receivable)
    with pytest.raises(CollaboratorError):
        store.record_imported("acct-1", [record])
    monkeypatch.undo()

    assert [r.id for r in store.list_open_receivables()] == ["r1"]
    assert not store.has_imported("acct-1", "T1")
    assert store.state.imported_transactions == {}


def test_settle_transaction_writes_both_sides(tmp_path):
    store = _receivable_store(tmp_path)
    receivable = store.list_open_receivables()[0]
    record = BankTransactionRecord(external_id="T1", posted_at=date(2025, 7, 1), amount=Decimal("5"))

    store.settle_transaction(None, record, receivable)

    reloaded = LedgerStore(str(store.path))
    assert reloaded.list_open_receivables() == []
    assert reloaded.has_imported(None, "T1")
    with pytest.raises(NotFoundError):
        store.settle_transaction(None, record, receivable.model_copy(update={"id": "missing"}))


def test_add_commissions_rejects_an_occupied_slot(tmp_path):
    store = LedgerStore(str(tmp_path / "ledger.json"))
    entry = CommissionEntry(
        order_id="o1",
        type=CommissionType.VENDOR,
        vendor_id="v1",
        amount=Decimal("10.00"),
        percentage=Decimal("10.00"),
        created_at=datetime(2025, 7, 1, tzinfo=timezone.utc),
    )

    store.add_commissions([entry])
    with pytest.raises(DuplicateCommissionError):
        store.add_commissions([entry.model_copy()])

    assert len(store.list_commissions("o1")) == 1
