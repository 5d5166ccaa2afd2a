"""
collaborators.py - Persistence interfaces the financial core depends on.

The engines never touch storage directly. Services receive one of these
interfaces and everything else stays pure. `ledger_store.LedgerStore`
implements all of them on a JSON file; any database-backed store can do
the same.

Lookup methods return None for unknown ids. Write methods raise on
failure and callers let that propagate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence

from models import (
    BankTransactionRecord,
    Budget,
    BudgetItem,
    Client,
    CommissionEntry,
    CommissionSettings,
    CommissionStatus,
    MarginTier,
    Order,
    OrderStatus,
    Payment,
    PricingSettings,
    Product,
    ProductionOrder,
    ReceivableRecord,
    User,
)


class ReceivableRepository(ABC):
    """Open receivables and their settlement."""

    @abstractmethod
    def list_open_receivables(self) -> list[ReceivableRecord]:
        ...

    @abstractmethod
    def mark_receivable_matched(self, receivable: ReceivableRecord) -> None:
        """Persist a receivable already transitioned to `matched`."""
        ...


class TransactionImportLog(ABC):
    """Statement lines already imported, keyed by (account reference, external id)."""

    @abstractmethod
    def has_imported(self, account_ref: Optional[str], external_id: str) -> bool:
        ...

    @abstractmethod
    def record_imported(
        self,
        account_ref: Optional[str],
        records: Sequence[BankTransactionRecord],
    ) -> None:
        ...


class PricingRepository(ABC):
    @abstractmethod
    def get_pricing_settings(self) -> Optional[PricingSettings]:
        ...

    @abstractmethod
    def list_margin_tiers(self) -> list[MarginTier]:
        ...


class CommissionRepository(ABC):
    """Orders, commission entries and the settings that drive them."""

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    def list_orders(self) -> list[Order]:
        ...

    @abstractmethod
    def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        ...

    @abstractmethod
    def list_commissions(self, order_id: Optional[str] = None) -> list[CommissionEntry]:
        ...

    @abstractmethod
    def add_commissions(self, entries: Iterable[CommissionEntry]) -> list[CommissionEntry]:
        """Persist new entries and return them with ids assigned.

        Slot occupancy is re-checked against stored entries in the same
        write, raising DuplicateCommissionError if a live entry holds a slot.
        """
        ...

    @abstractmethod
    def update_commission_status(self, entry_id: str, status: CommissionStatus) -> None:
        ...

    @abstractmethod
    def get_commission_settings(self) -> Optional[CommissionSettings]:
        ...

    @abstractmethod
    def list_active_partner_ids(self) -> list[str]:
        ...

    @abstractmethod
    def get_vendor_rate(self, vendor_id: str) -> Optional[str]:
        """Raw commission rate from the vendor profile, if one is set."""
        ...


class EnrichmentRepository(ABC):
    """Read-only lookups used to build display-ready orders."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[Client]:
        ...

    @abstractmethod
    def get_client_by_user_id(self, user_id: str) -> Optional[Client]:
        ...

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    def get_budget(self, budget_id: str) -> Optional[Budget]:
        ...

    @abstractmethod
    def list_budget_items(self, budget_id: str) -> list[BudgetItem]:
        ...

    @abstractmethod
    def list_payments(self, order_id: str) -> list[Payment]:
        ...

    @abstractmethod
    def list_production_orders(self, order_id: str) -> list[ProductionOrder]:
        ...


class StatementImportRepository(ReceivableRepository, TransactionImportLog):
    """Receivables plus the import log, as needed by statement uploads."""

    @abstractmethod
    def settle_transaction(
        self,
        account_ref: Optional[str],
        record: BankTransactionRecord,
        receivable: ReceivableRecord,
    ) -> None:
        """Mark the receivable matched and log the statement line atomically.

        Either both writes land or neither does, so a failed import can be
        re-run without the line being taken for a duplicate.
        """
        ...
