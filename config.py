"""
config.py - Process-wide finance defaults.

All fallback rates live in one value object so pricing and commission code
never embed their own copies. Values can be overridden through environment
variables (a local `.env` file is honoured):

    FINANCE_TAX_RATE                  default 9
    FINANCE_COMMISSION_RATE           default 15
    FINANCE_MARGIN_RATE               default 28
    FINANCE_MINIMUM_MARGIN_RATE       default 20
    FINANCE_VENDOR_COMMISSION_RATE    default 10
    FINANCE_PARTNER_COMMISSION_RATE   default 15
    FINANCE_SETTLEMENT_TOLERANCE_DAYS default 3

Rates are percentages (28 means 28%).
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from logging_config import get_logger

logger = get_logger(__name__)

try:
    load_dotenv()
except UnicodeDecodeError:
    load_dotenv(encoding="cp1252")


class FinanceDefaults(BaseModel):
    """Fallback rates and labels used when upstream data is missing."""

    model_config = ConfigDict(frozen=True)

    tax_rate: Decimal = Field(default=Decimal("9"), ge=0)
    commission_rate: Decimal = Field(default=Decimal("15"), ge=0)
    margin_rate: Decimal = Field(default=Decimal("28"), ge=0)
    minimum_margin_rate: Decimal = Field(default=Decimal("20"), ge=0)
    vendor_commission_rate: Decimal = Field(default=Decimal("10"), ge=0)
    partner_commission_rate: Decimal = Field(default=Decimal("15"), ge=0)
    settlement_tolerance_days: int = Field(default=3, ge=0)
    name_not_informed: str = "Name not informed"
    vendor_name_fallback: str = "Vendor"
    product_not_found: str = "Product not found"


_RATE_ENV: dict[str, str] = {
    "tax_rate": "FINANCE_TAX_RATE",
    "commission_rate": "FINANCE_COMMISSION_RATE",
    "margin_rate": "FINANCE_MARGIN_RATE",
    "minimum_margin_rate": "FINANCE_MINIMUM_MARGIN_RATE",
    "vendor_commission_rate": "FINANCE_VENDOR_COMMISSION_RATE",
    "partner_commission_rate": "FINANCE_PARTNER_COMMISSION_RATE",
}


def _env_decimal(name: str) -> Decimal | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = Decimal(raw.replace(",", "."))
    except InvalidOperation:
        logger.warning("config_env_invalid | name=%s | raw=%r | fallback=default", name, raw)
        return None
    if not value.is_finite() or value < 0:
        logger.warning("config_env_invalid | name=%s | raw=%r | fallback=default", name, raw)
        return None
    return value


def load_finance_defaults() -> FinanceDefaults:
    """Build a `FinanceDefaults` from the environment, ignoring bad values."""
    overrides: dict[str, object] = {}
    for field_name, env_name in _RATE_ENV.items():
        value = _env_decimal(env_name)
        if value is not None:
            overrides[field_name] = value

    raw_days = os.getenv("FINANCE_SETTLEMENT_TOLERANCE_DAYS", "").strip()
    if raw_days:
        try:
            days = int(raw_days)
            if days < 0:
                raise ValueError(raw_days)
            overrides["settlement_tolerance_days"] = days
        except ValueError:
            logger.warning(
                "config_env_invalid | name=FINANCE_SETTLEMENT_TOLERANCE_DAYS | raw=%r | fallback=default",
                raw_days,
            )

    return FinanceDefaults(**overrides)
