"""
ledger_store.py - JSON-file persistence for orders, receivables and commissions.

One JSON document holds every collection the financial core reads or
writes. The whole document is loaded at construction and rewritten
atomically (temp file + fsync + replace) after each write, under a lock.
Suitable for a single process; a database-backed store can implement the
same collaborator interfaces.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from collaborators import (
    CommissionRepository,
    EnrichmentRepository,
    PricingRepository,
    StatementImportRepository,
)
from commissions import ensure_no_duplicates
from errors import CollaboratorError, NotFoundError
from logging_config import get_logger
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
    Partner,
    Payment,
    PricingSettings,
    Product,
    ProductionOrder,
    ReceivableRecord,
    ReceivableStatus,
    User,
    VendorProfile,
)

logger = get_logger(__name__)

NO_ACCOUNT = "_"


class LedgerState(BaseModel):
    """Everything persisted in the ledger file."""

    model_config = ConfigDict(extra="ignore")

    orders: list[Order] = Field(default_factory=list)
    receivables: list[ReceivableRecord] = Field(default_factory=list)
    commissions: list[CommissionEntry] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)
    clients: list[Client] = Field(default_factory=list)
    products: list[Product] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    budget_items: list[BudgetItem] = Field(default_factory=list)
    production_orders: list[ProductionOrder] = Field(default_factory=list)
    partners: list[Partner] = Field(default_factory=list)
    vendors: list[VendorProfile] = Field(default_factory=list)
    margin_tiers: list[MarginTier] = Field(default_factory=list)
    pricing_settings: Optional[PricingSettings] = None
    commission_settings: Optional[CommissionSettings] = None
    imported_transactions: dict[str, list[BankTransactionRecord]] = Field(
        default_factory=dict,
        description="Imported statement lines per account reference.",
    )
    updated_at: Optional[str] = None


def _find(items: Iterable[Any], record_id: str, attr: str = "id") -> Optional[Any]:
    for item in items:
        if getattr(item, attr) == record_id:
            return item
    return None


class LedgerStore(
    StatementImportRepository,
    PricingRepository,
    CommissionRepository,
    EnrichmentRepository,
):
    """Disk-backed store implementing every collaborator interface."""

    def __init__(self, path: Optional[str] = None) -> None:
        target = path or os.getenv("LEDGER_FILE", "data/ledger.json")
        self.path = Path(target).resolve()
        self._lock = threading.RLock()
        self.state = self._load()

    # -- file handling -------------------------------------------------------

    def _load(self) -> LedgerState:
        if not self.path.exists():
            return LedgerState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return LedgerState.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.error(
                "ledger_load_error | path=%s | error_type=%s | error=%s",
                self.path,
                type(exc).__name__,
                exc,
            )
            raise CollaboratorError(f"Ledger file unreadable: {self.path}") from exc

    def reload(self) -> None:
        with self._lock:
            self.state = self._load()

    def save(self) -> None:
        """Persist state atomically via temp-file + replace."""
        with self._lock:
            self.state.updated_at = datetime.now(timezone.utc).isoformat()
            payload = self.state.model_dump(mode="json")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    mode="w",
                    encoding="utf-8",
                    dir=str(self.path.parent),
                    delete=False,
                    suffix=".tmp",
                    prefix="ledger-",
                ) as tmp_file:
                    json.dump(payload, tmp_file, ensure_ascii=False, indent=2)
                    tmp_file.flush()
                    os.fsync(tmp_file.fileno())
                    tmp_path = Path(tmp_file.name)
                os.replace(tmp_path, self.path)
            except OSError as exc:
                logger.error(
                    "ledger_save_error | path=%s | error_type=%s | error=%s",
                    self.path,
                    type(exc).__name__,
                    exc,
                )
                raise CollaboratorError(f"Ledger file not writable: {self.path}") from exc

    @contextmanager
    def _writing(self) -> Iterator[LedgerState]:
        """Mutate state and persist it; on any failure the previous state is restored."""
        with self._lock:
            snapshot = self.state.model_copy(deep=True)
            try:
                yield self.state
                self.save()
            except Exception:
                self.state = snapshot
                raise

    def seed(self, state: LedgerState | dict[str, Any]) -> None:
        """Replace the whole ledger, e.g. from fixtures or a migration."""
        replacement = LedgerState.model_validate(state)
        with self._lock:
            previous = self.state
            self.state = replacement
            try:
                self.save()
            except CollaboratorError:
                self.state = previous
                raise

    # -- receivables ---------------------------------------------------------

    def list_open_receivables(self) -> list[ReceivableRecord]:
        with self._lock:
            return [r for r in self.state.receivables if r.status == ReceivableStatus.OPEN]

    def _receivable_index(self, receivable_id: str) -> int:
        for index, current in enumerate(self.state.receivables):
            if current.id == receivable_id:
                return index
        raise NotFoundError("receivable", receivable_id)

    def mark_receivable_matched(self, receivable: ReceivableRecord) -> None:
        with self._lock:
            index = self._receivable_index(receivable.id)
            with self._writing() as state:
                state.receivables[index] = receivable.model_copy(
                    update={"status": ReceivableStatus.MATCHED}
                )

    def settle_transaction(
        self,
        account_ref: Optional[str],
        record: BankTransactionRecord,
        receivable: ReceivableRecord,
    ) -> None:
        """Mark the receivable matched and log the line in one write."""
        with self._lock:
            index = self._receivable_index(receivable.id)
            with self._writing() as state:
                state.receivables[index] = receivable.model_copy(
                    update={"status": ReceivableStatus.MATCHED}
                )
                self._append_imported(state, account_ref, [record])

    # -- import log ----------------------------------------------------------

    def has_imported(self, account_ref: Optional[str], external_id: str) -> bool:
        with self._lock:
            records = self.state.imported_transactions.get(account_ref or NO_ACCOUNT, [])
            return any(record.external_id == external_id for record in records)

    @staticmethod
    def _append_imported(
        state: LedgerState,
        account_ref: Optional[str],
        records: Sequence[BankTransactionRecord],
    ) -> None:
        bucket = state.imported_transactions.setdefault(account_ref or NO_ACCOUNT, [])
        known = {record.external_id for record in bucket}
        bucket.extend(record for record in records if record.external_id not in known)

    def record_imported(
        self,
        account_ref: Optional[str],
        records: Sequence[BankTransactionRecord],
    ) -> None:
        if not records:
            return
        with self._writing() as state:
            self._append_imported(state, account_ref, records)

    # -- pricing -------------------------------------------------------------

    def get_pricing_settings(self) -> Optional[PricingSettings]:
        return self.state.pricing_settings

    def list_margin_tiers(self) -> list[MarginTier]:
        return list(self.state.margin_tiers)

    # -- orders & commissions ------------------------------------------------

    def get_order(self, order_id: str) -> Optional[Order]:
        return _find(self.state.orders, order_id)

    def list_orders(self) -> list[Order]:
        return list(self.state.orders)

    def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        with self._lock:
            for index, order in enumerate(self.state.orders):
                if order.id == order_id:
                    with self._writing() as state:
                        state.orders[index] = order.model_copy(update={"status": status})
                    return
        raise NotFoundError("order", order_id)

    def list_commissions(self, order_id: Optional[str] = None) -> list[CommissionEntry]:
        with self._lock:
            return [c for c in self.state.commissions if order_id is None or c.order_id == order_id]

    def add_commissions(self, entries: Iterable[CommissionEntry]) -> list[CommissionEntry]:
        """Insert entries, re-checking slot occupancy against the stored ones under the lock."""
        with self._lock:
            stored = [
                entry if entry.id else entry.model_copy(update={"id": uuid.uuid4().hex})
                for entry in entries
            ]
            if not stored:
                return stored
            orders = {entry.order_id for entry in stored}
            ensure_no_duplicates(
                [*(c for c in self.state.commissions if c.order_id in orders), *stored]
            )
            with self._writing() as state:
                state.commissions.extend(stored)
            return stored

    def update_commission_status(self, entry_id: str, status: CommissionStatus) -> None:
        with self._lock:
            for index, entry in enumerate(self.state.commissions):
                if entry.id == entry_id:
                    with self._writing() as state:
                        state.commissions[index] = entry.model_copy(update={"status": status})
                    return
        raise NotFoundError("commission", entry_id)

    def get_commission_settings(self) -> Optional[CommissionSettings]:
        return self.state.commission_settings

    def list_active_partner_ids(self) -> list[str]:
        return [p.user_id for p in self.state.partners if p.is_active]

    def get_vendor_rate(self, vendor_id: str) -> Optional[str]:
        vendor = _find(self.state.vendors, vendor_id, attr="user_id")
        if vendor is None or vendor.commission_rate is None:
            return None
        return str(vendor.commission_rate)

    # -- enrichment lookups --------------------------------------------------

    def get_user(self, user_id: str) -> Optional[User]:
        return _find(self.state.users, user_id)

    def get_client(self, client_id: str) -> Optional[Client]:
        return _find(self.state.clients, client_id)

    def get_client_by_user_id(self, user_id: str) -> Optional[Client]:
        return _find(self.state.clients, user_id, attr="user_id")

    def get_product(self, product_id: str) -> Optional[Product]:
        return _find(self.state.products, product_id)

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        return _find(self.state.budgets, budget_id)

    def list_budget_items(self, budget_id: str) -> list[BudgetItem]:
        return [item for item in self.state.budget_items if item.budget_id == budget_id]

    def list_payments(self, order_id: str) -> list[Payment]:
        return [p for p in self.state.payments if p.order_id == order_id]

    def list_production_orders(self, order_id: str) -> list[ProductionOrder]:
        return [po for po in self.state.production_orders if po.order_id == order_id]
