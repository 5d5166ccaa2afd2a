"""
models.py - Data models for the financial core.

Every component communicates through these records:

    statement.py   ->  BankTransactionRecord, StatementParseResult
    reconcile.py   ->  ReconciliationResult, MatchSuggestion
    pricing.py     ->  PriceQuote, SalePrice
    commissions.py ->  CommissionEntry
    enrichment.py  ->  EnrichedOrder

Design principles:
1. Money is always Decimal; floats never enter a money field
2. Records are plain data; persistence belongs to collaborators
3. Optional numeric inputs coming from storage ("10,00", "", None) are
   coerced here so engines only ever see Decimal or None

Schema relationships:
    Order            --has many--> Payment, CommissionEntry, ReceivableRecord
    Order            --refers to--> Budget, ProductionOrder, Client, User
    MatchedPair      --pairs-->    BankTransactionRecord + ReceivableRecord
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from normalize import ZERO, to_date, to_decimal


class TransactionKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class ReceivableStatus(str, Enum):
    OPEN = "open"
    MATCHED = "matched"
    WRITTEN_OFF = "written_off"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"


class CommissionType(str, Enum):
    VENDOR = "vendor"
    PARTNER = "partner"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PRODUCTION = "production"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class PaymentTiming(str, Enum):
    """When a commission kind becomes payable."""

    ORDER_START = "order_start"
    ORDER_COMPLETION = "order_completion"


class PriceSource(str, Enum):
    COMPUTED = "computed"
    BASE = "base"


class ErrorKind(str, Enum):
    """Recoverable conditions reported on results instead of raised."""

    # Statement content has no <OFX> root tag or OFXHEADER signature.
    INVALID_FORMAT = "invalid_format"

    # A transaction segment lacks FITID, TRNAMT or DTPOSTED. Counted, skipped.
    INCOMPLETE_RECORD = "incomplete_record"

    # More than one open receivable fits a transaction. Left for a human.
    AMBIGUOUS_MATCH = "ambiguous_match"

    # Tax + commission + margin >= 100%. Price collapses to zero.
    CONFIGURATION_ERROR = "configuration_error"

    # Non-cancelled commission already exists for the same slot. Fatal.
    DUPLICATE_COMMISSION = "duplicate_commission"


def _optional_decimal(value: Any) -> Optional[Decimal]:
    return to_decimal(value)


def _required_decimal(value: Any) -> Decimal:
    parsed = to_decimal(value)
    return parsed if parsed is not None else ZERO


# =============================================================================
# Statement / reconciliation records
# =============================================================================


class BankTransactionRecord(BaseModel):
    """One movement extracted from a bank statement export.

    Records are created once per parse and never mutated. `external_id`
    (the statement's FITID) is stable per statement line and is the only key
    used to recognise the same movement across overlapping statement files.
    """

    model_config = ConfigDict(frozen=True)

    external_id: str = Field(
        ...,
        min_length=1,
        description="Bank-assigned unique reference for the statement line (FITID).",
    )
    posted_at: date = Field(..., description="Posting date (DTPOSTED, calendar date only).")
    amount: Decimal = Field(
        ...,
        description="Signed amount as printed on the statement. Positive means money in.",
    )
    description: str = Field(
        default="",
        description="MEMO when present, otherwise NAME, otherwise a generic label.",
    )
    kind: TransactionKind = Field(..., description="credit when amount >= 0, else debit.")
    raw_type: Optional[str] = Field(
        default=None,
        description="Statement-native type code (TRNTYPE), e.g. CREDIT, DEBIT, PAYMENT.",
    )

    @model_validator(mode="before")
    @classmethod
    def _derive_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("kind") is None and data.get("amount") is not None:
            amount = to_decimal(data.get("amount"))
            if amount is not None:
                data = dict(data)
                data["kind"] = TransactionKind.CREDIT if amount >= 0 else TransactionKind.DEBIT
        return data

    @property
    def is_credit(self) -> bool:
        return self.kind == TransactionKind.CREDIT


class StatementParseResult(BaseModel):
    """Records plus the diagnostics shown to the person who uploaded the file."""

    records: list[BankTransactionRecord] = Field(default_factory=list)
    segment_count: int = Field(default=0, ge=0, description="Transaction blocks found.")
    parsed_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    error_kind: Optional[ErrorKind] = None
    account_id: Optional[str] = Field(
        default=None,
        description="ACCTID from the statement header, used in the import de-dup key.",
    )

    @property
    def total_credits(self) -> Decimal:
        return sum((r.amount for r in self.records if r.is_credit), ZERO)

    @property
    def total_debits(self) -> Decimal:
        return sum((-r.amount for r in self.records if not r.is_credit), ZERO)


class ReceivableRecord(BaseModel):
    """An expected incoming payment tied to exactly one order."""

    id: str
    order_id: str
    expected_amount: Decimal
    due_date: date
    status: ReceivableStatus = ReceivableStatus.OPEN
    client_id: Optional[str] = None
    counterparty_name: Optional[str] = Field(
        default=None,
        description="Display name of the payer, used only for review suggestions.",
    )
    matched_transaction_id: Optional[str] = None
    matched_amount: Optional[Decimal] = None
    matched_at: Optional[date] = None

    @field_validator("expected_amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Decimal:
        return _required_decimal(value)

    @field_validator("due_date", "matched_at", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        parsed = to_date(value)
        return parsed if parsed is not None else value


class MatchedPair(BaseModel):
    transaction: BankTransactionRecord
    receivable: ReceivableRecord


class ReconciliationResult(BaseModel):
    """Classification of every transaction handed to the reconciler.

    Each input transaction lands in exactly one of the three lists.
    `ambiguous_candidates` maps an ambiguous transaction's external id to the
    receivable ids that tied, so an operator can decide.
    """

    matched: list[MatchedPair] = Field(default_factory=list)
    ambiguous: list[BankTransactionRecord] = Field(default_factory=list)
    unmatched: list[BankTransactionRecord] = Field(default_factory=list)
    ambiguous_candidates: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.matched) + len(self.ambiguous) + len(self.unmatched)


class MatchSuggestion(BaseModel):
    """Ranked review hint for a transaction the reconciler did not auto-match."""

    receivable: ReceivableRecord
    score: float = Field(..., ge=0, le=100)
    amount_diff: Decimal
    date_diff: int = Field(..., ge=0)
    name_score: float = Field(..., ge=0, le=100)
    evidence: list[str] = Field(default_factory=list)


# =============================================================================
# Pricing
# =============================================================================


class MarginTier(BaseModel):
    """Revenue bracket with its target and minimum margin (percent values).

    Storage hands these over as strings; unparsable values become None and
    take the documented fallbacks (min -> 0, max -> open-ended, rates ->
    process defaults).
    """

    id: Optional[str] = None
    min_revenue: Optional[Decimal] = None
    max_revenue: Optional[Decimal] = None
    margin_rate: Optional[Decimal] = None
    minimum_margin_rate: Optional[Decimal] = None
    order: Optional[int] = None

    @field_validator("min_revenue", "max_revenue", "margin_rate", "minimum_margin_rate", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class PricingSettings(BaseModel):
    tax_rate: Optional[Decimal] = None
    commission_rate: Optional[Decimal] = None

    @field_validator("tax_rate", "commission_rate", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class TierSelection(BaseModel):
    margin_rate: Decimal = Field(..., description="Selected margin, percent.")
    minimum_margin_rate: Decimal = Field(..., description="Selected minimum margin, percent.")
    tier: Optional[MarginTier] = None

    @property
    def from_defaults(self) -> bool:
        return self.tier is None


class PriceQuote(BaseModel):
    ideal_price: Decimal = ZERO
    minimum_price: Decimal = ZERO
    margin_applied: Decimal = ZERO
    minimum_margin_applied: Decimal = ZERO
    error_kind: Optional[ErrorKind] = None

    @property
    def is_zero(self) -> bool:
        return self.ideal_price == ZERO and self.minimum_price == ZERO


class SalePrice(BaseModel):
    price: Decimal
    source: PriceSource
    details: Optional[PriceQuote] = None


# =============================================================================
# Orders, payments, commissions
# =============================================================================


class Order(BaseModel):
    id: str
    order_number: Optional[str] = None
    client_id: Optional[str] = None
    vendor_id: str
    budget_id: Optional[str] = None
    production_order_id: Optional[str] = None
    contact_name: Optional[str] = None
    total_value: Decimal = ZERO
    status: OrderStatus = OrderStatus.PENDING
    tracking_code: Optional[str] = None

    @field_validator("total_value", mode="before")
    @classmethod
    def _coerce_total(cls, value: Any) -> Decimal:
        return _required_decimal(value)


class Payment(BaseModel):
    id: str
    order_id: str
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PENDING
    method: Optional[str] = None
    paid_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Decimal:
        return _required_decimal(value)


class CommissionSettings(BaseModel):
    vendor_commission_rate: Optional[Decimal] = None
    partner_commission_rate: Optional[Decimal] = Field(
        default=None,
        description="Partner pool percentage, split equally among active partners.",
    )
    vendor_payment_timing: PaymentTiming = PaymentTiming.ORDER_COMPLETION
    partner_payment_timing: PaymentTiming = PaymentTiming.ORDER_START

    @field_validator("vendor_commission_rate", "partner_commission_rate", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class CommissionEntry(BaseModel):
    """A commission owed to one beneficiary for one order.

    Vendor entries carry `vendor_id`, partner entries carry `partner_id`.
    `partner_count` records how many partners shared the pool when the
    entry was computed, so historical splits stay explainable after the
    partner roster changes.
    """

    id: Optional[str] = None
    order_id: str
    type: CommissionType
    vendor_id: Optional[str] = None
    partner_id: Optional[str] = None
    amount: Decimal
    percentage: Decimal
    status: CommissionStatus = CommissionStatus.PENDING
    created_at: datetime
    order_value: Optional[Decimal] = None
    order_number: Optional[str] = None
    partner_count: Optional[int] = Field(default=None, ge=1)

    @field_validator("amount", "percentage", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Decimal:
        return _required_decimal(value)

    @model_validator(mode="after")
    def _check_beneficiary(self) -> "CommissionEntry":
        if self.type == CommissionType.VENDOR and not self.vendor_id:
            raise ValueError("vendor commission requires vendor_id")
        if self.type == CommissionType.PARTNER and not self.partner_id:
            raise ValueError("partner commission requires partner_id")
        return self

    @property
    def beneficiary_id(self) -> str:
        if self.type == CommissionType.VENDOR:
            return self.vendor_id or ""
        return self.partner_id or ""


class CommissionStatusChange(BaseModel):
    entry_id: Optional[str]
    order_id: str
    type: CommissionType
    beneficiary_id: str
    from_status: CommissionStatus
    to_status: CommissionStatus


class Partner(BaseModel):
    user_id: str
    commission_rate: Optional[Decimal] = None
    is_active: bool = True

    @field_validator("commission_rate", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class VendorProfile(BaseModel):
    user_id: str
    commission_rate: Optional[Decimal] = None

    @field_validator("commission_rate", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


# =============================================================================
# Enrichment lookups
# =============================================================================


class User(BaseModel):
    id: str
    name: Optional[str] = None
    role: Optional[str] = None


class Client(BaseModel):
    id: str
    name: Optional[str] = None
    user_id: Optional[str] = None


class Product(BaseModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image_link: Optional[str] = None
    cost_price: Optional[Decimal] = None
    base_price: Optional[Decimal] = None

    @field_validator("cost_price", "base_price", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class Budget(BaseModel):
    id: str
    total_value: Optional[Decimal] = None
    down_payment: Optional[Decimal] = None

    @field_validator("total_value", "down_payment", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class BudgetItem(BaseModel):
    id: str
    budget_id: str
    product_id: str
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None

    @field_validator("unit_price", "total_price", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Optional[Decimal]:
        return _optional_decimal(value)


class ProductionOrder(BaseModel):
    id: str
    order_id: str
    producer_id: Optional[str] = None
    status: str = "pending"
    tracking_code: Optional[str] = None
    delivery_deadline: Optional[datetime] = None
    has_unread_notes: bool = False


class EnrichOptions(BaseModel):
    include_unread_notes: bool = False
    include_payments: bool = False
    include_detailed_financials: bool = False


class ProductSummary(BaseModel):
    name: str
    description: str = ""
    category: str = ""
    image_link: str = ""


class EnrichedBudgetItem(BudgetItem):
    product: ProductSummary


class BudgetInfo(BaseModel):
    down_payment: Decimal = ZERO
    total_value: Decimal = ZERO


class EnrichedOrder(Order):
    """Display-ready order. Optional sections are None unless requested."""

    client_name: str
    vendor_name: str
    producer_name: Optional[str] = None
    budget_items: list[EnrichedBudgetItem] = Field(default_factory=list)
    has_unread_notes: Optional[bool] = None
    payments: Optional[list[Payment]] = None
    paid_value: Optional[Decimal] = None
    remaining_value: Optional[Decimal] = None
    estimated_delivery: Optional[datetime] = None
    budget_info: Optional[BudgetInfo] = None


# =============================================================================
# Import pipeline
# =============================================================================


class ImportReport(BaseModel):
    """Outcome of one statement upload: parse counts, de-dup, reconciliation."""

    account_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    parsed_count: int = 0
    skipped_count: int = 0
    duplicate_count: int = 0
    reconciliation: ReconciliationResult = Field(default_factory=ReconciliationResult)

    @property
    def imported_count(self) -> int:
        return self.parsed_count - self.duplicate_count
