"""
normalize.py - Money, percentage, date and text normalization.

Core normalizers:
    to_decimal(value)            -> Decimal or None (never float)
    round_money(value)           -> Decimal quantized to cents, half-up
    percent_to_rate(value, fb)   -> fraction (Decimal) from a percent input
    parse_statement_date(text)   -> date from an 8-digit YYYYMMDD prefix
    to_date(value)               -> date from loose text via dateutil
    normalize_name(text)         -> comparable lowercase name

Design principles:
    - Money never passes through float
    - Rounding happens once, at the final step, via round_money
    - Invalid input degrades to None / neutral defaults; callers decide fallbacks
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser as dateparser

from logging_config import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

NULL_TOKENS = {"", "n/a", "na", "none", "null", "nan", "undefined"}


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert numbers or numeric strings to Decimal.

    Accepts "10.00", "10,00" and "-250.00". Thousands separators are not
    supported. Floats are converted through their repr so 0.1 becomes
    Decimal("0.1"). Returns None for anything that does not parse to a
    finite number.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    if isinstance(value, int):
        return Decimal(value)

    if isinstance(value, float):
        candidate = Decimal(repr(value))
        return candidate if candidate.is_finite() else None

    text = str(value).strip()
    if text.lower() in NULL_TOKENS:
        return None

    if "," in text and "." not in text:
        text = text.replace(",", ".")

    try:
        parsed = Decimal(text)
    except (InvalidOperation, ValueError):
        logger.debug("to_decimal | parse_failed | raw=%r", value)
        return None

    if not parsed.is_finite():
        return None
    return parsed


def round_money(value: Any) -> Decimal:
    """Round to cents with half-up semantics. Unparsable input becomes 0.00."""
    parsed = to_decimal(value)
    if parsed is None:
        return ZERO.quantize(CENT)
    return parsed.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_to_rate(value: Any, fallback_percent: Any) -> Decimal:
    """Turn a percentage (28, "28.00", "28,00") into a rate (0.28).

    Missing or unparsable input uses `fallback_percent`.
    """
    parsed = to_decimal(value)
    if parsed is None:
        parsed = to_decimal(fallback_percent) or ZERO
    return parsed / HUNDRED


def percentage_of(value: Any, percentage: Any) -> Decimal:
    """value * percentage / 100, unrounded."""
    base = to_decimal(value) or ZERO
    pct = to_decimal(percentage) or ZERO
    return base * pct / HUNDRED


def sum_money(values: list[Any]) -> Decimal:
    """Exact sum of money-like values; unparsable entries count as zero."""
    total = ZERO
    for value in values:
        parsed = to_decimal(value)
        if parsed is not None:
            total += parsed
    return total


def parse_statement_date(text: Optional[str]) -> Optional[date]:
    """Decode a statement posting date.

    Only the first 8 characters are used (YYYYMMDD); time-of-day and timezone
    suffixes such as "120000[-3:BRT]" are ignored.
    """
    if not text:
        return None

    prefix = text.strip()[:8]
    if not re.fullmatch(r"\d{8}", prefix):
        logger.debug("parse_statement_date | rejected | raw=%r", text)
        return None

    try:
        return date(int(prefix[0:4]), int(prefix[4:6]), int(prefix[6:8]))
    except ValueError:
        logger.debug("parse_statement_date | invalid_calendar_date | raw=%r", text)
        return None


def to_date(value: Any) -> Optional[date]:
    """Coerce date, datetime or loose date text to a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if text.lower() in NULL_TOKENS:
        return None
    if re.fullmatch(r"\d{8}", text):
        return parse_statement_date(text)

    try:
        return dateparser.parse(text, dayfirst=False).date()
    except (ValueError, TypeError, OverflowError) as exc:
        logger.warning(
            "to_date | parse_error=%s | raw=%r | fallback=None",
            type(exc).__name__,
            value,
        )
        return None


def normalize_name(text: Optional[str]) -> str:
    """Lowercase, strip accents and punctuation for fuzzy comparison."""
    if not text:
        return ""

    name = unicodedata.normalize("NFD", str(text).lower().strip())
    name = "".join(char for char in name if unicodedata.category(char) != "Mn")
    name = re.sub(r"[^\w\s]", " ", name, flags=re.UNICODE)
    name = name.replace("_", " ")
    return re.sub(r"\s+", " ", name).strip()
