"""
test_normalize.py - Money, date and name normalization.

Usage: pytest test_normalize.py
"""

from __future__ import annotations

import os
import sys
from datetime import date, datetime
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from normalize import (
    normalize_name,
    parse_statement_date,
    percent_to_rate,
    percentage_of,
    round_money,
    sum_money,
    to_date,
    to_decimal,
)
from models import ReceivableRecord


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("10.00", Decimal("10.00")),
        ("10,00", Decimal("10.00")),
        ("-250.00", Decimal("-250.00")),
        (" 42 ", Decimal("42")),
        (7, Decimal("7")),
        (0.1, Decimal("0.1")),
        (Decimal("3.14159"), Decimal("3.14159")),
    ],
)
def test_to_decimal_accepts_numbers_and_numeric_text(raw, expected):
    assert to_decimal(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "abc", "N/A", "nan", "inf", True, "1,000.50"])
def test_to_decimal_rejects_garbage(raw):
    assert to_decimal(raw) is None


def test_round_money_is_half_up():
    assert round_money("2.345") == Decimal("2.35")
    assert round_money("2.344") == Decimal("2.34")
    assert round_money("-2.345") == Decimal("-2.35")
    assert round_money(None) == Decimal("0.00")


def test_percent_helpers():
    assert percent_to_rate("28,00", 10) == Decimal("0.28")
    assert percent_to_rate(None, 9) == Decimal("0.09")
    assert percent_to_rate("oops", "15") == Decimal("0.15")
    assert percentage_of("1000.00", "10") == Decimal("100")
    assert sum_money(["1.10", "2.20", None, "x"]) == Decimal("3.30")


def test_parse_statement_date_ignores_time_and_timezone():
    assert parse_statement_date("20250722") == date(2025, 7, 22)
    assert parse_statement_date("20250722120000[-3:BRT]") == date(2025, 7, 22)
    assert parse_statement_date("20251322") is None
    assert parse_statement_date("2025-07-22") is None
    assert parse_statement_date("") is None


def test_to_date_handles_loose_inputs():
    assert to_date("2025-07-22") == date(2025, 7, 22)
    assert to_date("20250722") == date(2025, 7, 22)
    assert to_date(datetime(2025, 7, 22, 10, 30)) == date(2025, 7, 22)
    assert to_date("not a date") is None
    assert to_date(None) is None


def test_receivable_dates_accept_stored_text():
    receivable = ReceivableRecord(
        id="r1",
        order_id="o1",
        expected_amount="10",
        due_date="2025-07-21T00:00:00-03:00",
        matched_at="20250722",
    )
    assert receivable.due_date == date(2025, 7, 21)
    assert receivable.matched_at == date(2025, 7, 22)
    assert ReceivableRecord(id="r2", order_id="o1", expected_amount="10", due_date="Jul 21, 2025").due_date == date(2025, 7, 21)


def test_normalize_name_strips_accents_and_punctuation():
    assert normalize_name("  José  da Silva-LTDA. ") == "jose da silva ltda"
    assert normalize_name(None) == ""
