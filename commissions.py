"""
commissions.py - Vendor and partner commission computation.

Per order:
    vendor:   total * vendor_rate / 100                  (one entry)
    partners: total * (pool_rate / partner_count) / 100  (one entry each)

Rate chain for the vendor: vendor profile -> commission settings -> default.
The partner pool comes from commission settings, else the default.

Recomputation is presence-driven: for each order, vendor and partner kinds
are checked independently and only a missing kind is created. Any existing
entry counts as present, including cancelled ones, so a cancelled
commission is never silently re-issued. Running it twice creates nothing
the second time, and a crash halfway leaves nothing that a re-run cannot
pick up.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from collaborators import CommissionRepository
from config import FinanceDefaults, load_finance_defaults
from errors import DuplicateCommissionError, NotFoundError
from logging_config import get_logger
from models import (
    CommissionEntry,
    CommissionSettings,
    CommissionStatus,
    CommissionType,
    Order,
    OrderStatus,
)
from normalize import ZERO, percentage_of, round_money, to_decimal

logger = get_logger(__name__)


def resolve_vendor_rate(
    vendor_rate: Any,
    settings: Optional[CommissionSettings],
    defaults: Optional[FinanceDefaults] = None,
) -> Decimal:
    """Vendor percentage: profile rate, then settings, then default."""
    parsed = to_decimal(vendor_rate)
    if parsed is not None and parsed >= ZERO:
        return parsed
    if settings is not None and settings.vendor_commission_rate is not None:
        return settings.vendor_commission_rate
    return (defaults or load_finance_defaults()).vendor_commission_rate


def resolve_partner_pool(
    settings: Optional[CommissionSettings],
    defaults: Optional[FinanceDefaults] = None,
) -> Decimal:
    if settings is not None and settings.partner_commission_rate is not None:
        return settings.partner_commission_rate
    return (defaults or load_finance_defaults()).partner_commission_rate


def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in ids:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def _non_negative_rate(value: Any, label: str, order_id: str) -> Decimal:
    parsed = to_decimal(value) or ZERO
    if parsed < ZERO:
        logger.warning(
            "commission_rate_negative | order=%s | rate=%s | value=%s | fallback=0",
            order_id,
            label,
            parsed,
        )
        return ZERO
    return parsed


def compute_for_order(
    order: Order,
    vendor_rate: Any,
    partner_rate_pool: Any,
    partner_ids: Sequence[str],
    now: Optional[datetime] = None,
) -> list[CommissionEntry]:
    """Pending commission entries for one order. Pure.

    The vendor entry comes first, then one partner entry per distinct
    partner id in the given order. No partners means no partner entries.
    Negative rates count as zero.
    """
    created_at = now or datetime.now(timezone.utc)
    total = order.total_value
    vendor_pct = _non_negative_rate(vendor_rate, "vendor", order.id)
    pool_pct = _non_negative_rate(partner_rate_pool, "partner_pool", order.id)
    partners = _unique(partner_ids)

    entries = [
        CommissionEntry(
            order_id=order.id,
            type=CommissionType.VENDOR,
            vendor_id=order.vendor_id,
            amount=round_money(percentage_of(total, vendor_pct)),
            percentage=round_money(vendor_pct),
            status=CommissionStatus.PENDING,
            created_at=created_at,
            order_value=total,
            order_number=order.order_number,
        )
    ]

    if partners:
        share = pool_pct / Decimal(len(partners))
        for partner_id in partners:
            entries.append(
                CommissionEntry(
                    order_id=order.id,
                    type=CommissionType.PARTNER,
                    partner_id=partner_id,
                    amount=round_money(percentage_of(total, share)),
                    percentage=round_money(share),
                    status=CommissionStatus.PENDING,
                    created_at=created_at,
                    order_value=total,
                    order_number=order.order_number,
                    partner_count=len(partners),
                )
            )

    logger.debug(
        "commission_computed | order=%s | total=%s | vendor_pct=%s | pool_pct=%s | partners=%s",
        order.id,
        total,
        vendor_pct,
        pool_pct,
        len(partners),
    )
    return entries


def _kinds_by_order(entries: Iterable[CommissionEntry]) -> dict[str, set[CommissionType]]:
    kinds: dict[str, set[CommissionType]] = defaultdict(set)
    for entry in entries:
        kinds[entry.order_id].add(entry.type)
    return kinds


def recalculate_missing(
    orders: Sequence[Order],
    existing_entries: Sequence[CommissionEntry],
    settings: Optional[CommissionSettings],
    partner_ids: Sequence[str],
    vendor_rates: Optional[Mapping[str, Any]] = None,
    defaults: Optional[FinanceDefaults] = None,
    now: Optional[datetime] = None,
) -> list[CommissionEntry]:
    """Entries for the commission kinds each order is missing.

    Cancelled orders are skipped. Partner entries use the partner roster
    passed in, and each entry records the roster size it was split across.
    """
    defaults = defaults or load_finance_defaults()
    vendor_rates = vendor_rates or {}
    present = _kinds_by_order(existing_entries)
    pool = resolve_partner_pool(settings, defaults)
    created_at = now or datetime.now(timezone.utc)

    missing: list[CommissionEntry] = []
    skipped_cancelled = 0
    for order in orders:
        if order.status == OrderStatus.CANCELLED:
            skipped_cancelled += 1
            continue

        kinds = present.get(order.id, set())
        need_vendor = CommissionType.VENDOR not in kinds
        need_partner = CommissionType.PARTNER not in kinds and bool(partner_ids)
        if not (need_vendor or need_partner):
            continue

        vendor_rate = resolve_vendor_rate(vendor_rates.get(order.vendor_id), settings, defaults)
        for entry in compute_for_order(order, vendor_rate, pool, partner_ids, created_at):
            if entry.type == CommissionType.VENDOR and need_vendor:
                missing.append(entry)
            elif entry.type == CommissionType.PARTNER and need_partner:
                missing.append(entry)

    logger.info(
        "commission_recalculated | orders=%s | existing=%s | created=%s | skipped_cancelled=%s",
        len(orders),
        len(existing_entries),
        len(missing),
        skipped_cancelled,
    )
    return missing


def _slot(entry: CommissionEntry) -> tuple[str, str]:
    if entry.type == CommissionType.VENDOR:
        return entry.order_id, "vendor"
    return entry.order_id, f"partner:{entry.partner_id}"


def ensure_no_duplicates(entries: Iterable[CommissionEntry]) -> None:
    """Raise DuplicateCommissionError if a slot holds two live entries.

    A slot is the vendor commission of an order, or the commission of one
    partner on an order. Cancelled entries never occupy a slot.
    """
    occupied: set[tuple[str, str]] = set()
    for entry in entries:
        if entry.status == CommissionStatus.CANCELLED:
            continue
        slot = _slot(entry)
        if slot in occupied:
            logger.error("commission_duplicate | order=%s | slot=%s", slot[0], slot[1])
            raise DuplicateCommissionError(slot[0], slot[1])
        occupied.add(slot)


class CommissionService:
    """Commission creation and bulk recomputation against a repository."""

    def __init__(self, repository: CommissionRepository, defaults: Optional[FinanceDefaults] = None) -> None:
        self.repository = repository
        self.defaults = defaults or load_finance_defaults()

    def _vendor_rate(self, vendor_id: str, settings: Optional[CommissionSettings]) -> Decimal:
        return resolve_vendor_rate(self.repository.get_vendor_rate(vendor_id), settings, self.defaults)

    def create_for_order(self, order_id: str, now: Optional[datetime] = None) -> list[CommissionEntry]:
        """Create the commissions of a newly created order.

        Raises NotFoundError for an unknown order and DuplicateCommissionError
        if live entries already occupy any slot this would fill.
        """
        order = self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        if order.status == OrderStatus.CANCELLED:
            logger.info("commission_create_skipped | order=%s | reason=cancelled", order_id)
            return []

        settings = self.repository.get_commission_settings()
        planned = compute_for_order(
            order,
            self._vendor_rate(order.vendor_id, settings),
            resolve_partner_pool(settings, self.defaults),
            self.repository.list_active_partner_ids(),
            now,
        )
        ensure_no_duplicates([*self.repository.list_commissions(order_id), *planned])

        # add_commissions repeats the check atomically against stored entries.
        created = self.repository.add_commissions(planned)
        logger.info(
            "commission_created | order=%s | entries=%s | total=%s",
            order_id,
            len(created),
            sum((entry.amount for entry in created), ZERO),
        )
        return created

    def recalculate_all(self, now: Optional[datetime] = None) -> list[CommissionEntry]:
        """Fill in missing commission kinds for every order. Idempotent."""
        orders = self.repository.list_orders()
        existing = self.repository.list_commissions()
        settings = self.repository.get_commission_settings()
        vendor_rates = {
            vendor_id: self.repository.get_vendor_rate(vendor_id)
            for vendor_id in _unique(order.vendor_id for order in orders)
        }

        missing = recalculate_missing(
            orders,
            existing,
            settings,
            self.repository.list_active_partner_ids(),
            vendor_rates=vendor_rates,
            defaults=self.defaults,
            now=now,
        )
        if not missing:
            return []

        ensure_no_duplicates([*existing, *missing])
        return self.repository.add_commissions(missing)
