"""
test_inbox.py - Folder-drop statement intake.

Usage: pytest test_inbox.py
"""

from __future__ import annotations

import os
import shutil
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config import FinanceDefaults
from inbox import StatementInbox, file_signature, signature_key
from ledger_store import LedgerStore

STATEMENT = (
    "<OFX><BANKACCTFROM><ACCTID>555</BANKACCTFROM>"
    "<STMTTRN><TRNTYPE>CREDIT<DTPOSTED>20250722<TRNAMT>150.00<FITID>F1</STMTTRN>"
    "</OFX>"
)


def _setup(tmp_path):
    inbox = StatementInbox(str(tmp_path / "inbox"), str(tmp_path / "archive"))
    store = LedgerStore(str(tmp_path / "ledger.json"))
    store.seed({"receivables": [{"id": "r1", "order_id": "o1", "expected_amount": "150", "due_date": "2025-07-22"}]})
    return inbox, store


def test_process_imports_and_archives(tmp_path):
    inbox, store = _setup(tmp_path)
    (inbox.inbox_path / "july.ofx").write_text(STATEMENT, encoding="utf-8")
    (inbox.inbox_path / "notes.csv").write_text("ignored", encoding="utf-8")

    results = inbox.process(store, FinanceDefaults())

    assert [r["file"] for r in results] == ["july.ofx"]
    assert results[0]["status"] == "imported"
    assert results[0]["report"]["matched"][0]["receivable_id"] == "r1"
    assert not (inbox.inbox_path / "july.ofx").exists()
    assert (inbox.inbox_path / "notes.csv").exists()
    assert len(list(inbox.archive_path.rglob("july.ofx"))) == 1
    assert len(inbox.load_manifest()["processed"]) == 1


def test_invalid_file_is_rejected_but_archived(tmp_path):
    inbox, store = _setup(tmp_path)
    (inbox.inbox_path / "broken.txt").write_text("hello", encoding="utf-8")

    results = inbox.process(store, FinanceDefaults())

    assert results[0]["status"] == "rejected"
    assert results[0]["report"]["status"] == "invalid"
    assert inbox.pending_files() == []


def test_same_file_dropped_again_is_skipped(tmp_path):
    inbox, store = _setup(tmp_path)
    source = inbox.inbox_path / "july.ofx"
    source.write_text(STATEMENT, encoding="utf-8")
    signature = file_signature(source)
    inbox.process(store, FinanceDefaults())

    archived = next(inbox.archive_path.rglob("july.ofx"))
    shutil.copy2(archived, source)
    os.utime(source, ns=(signature["mtime_ns"], signature["mtime_ns"]))

    assert signature_key(file_signature(source)) == signature_key(signature)
    assert inbox.pending_files() == []
    assert inbox.process(store, FinanceDefaults()) == []


def test_empty_inbox(tmp_path):
    inbox, store = _setup(tmp_path)
    assert inbox.process(store) == []
    assert inbox.load_manifest() == {"processed": {}, "updated_at": None}
