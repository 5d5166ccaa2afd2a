"""
commission_lifecycle.py - Commission status transitions driven by order status.

    order cancelled                       -> pending/confirmed entries cancelled
    partner timing order_start, order
      confirmed/production/shipped/delivered -> partner pending -> confirmed
    vendor timing order_completion, order
      delivered                           -> vendor pending -> confirmed

Paid entries are never touched. Marking entries paid belongs to payout
handling, not to order status changes.
"""

from __future__ import annotations

from typing import Optional, Sequence

from collaborators import CommissionRepository
from errors import NotFoundError
from logging_config import get_logger
from models import (
    CommissionEntry,
    CommissionSettings,
    CommissionStatus,
    CommissionStatusChange,
    CommissionType,
    Order,
    OrderStatus,
    PaymentTiming,
)

logger = get_logger(__name__)

STARTED_STATUSES = frozenset(
    {OrderStatus.CONFIRMED, OrderStatus.PRODUCTION, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
)
CANCELLABLE = frozenset({CommissionStatus.PENDING, CommissionStatus.CONFIRMED})


def _payable(timing: PaymentTiming, status: OrderStatus) -> bool:
    if timing == PaymentTiming.ORDER_START:
        return status in STARTED_STATUSES
    return status == OrderStatus.DELIVERED


def _target_status(
    entry: CommissionEntry,
    order: Order,
    settings: CommissionSettings,
) -> Optional[CommissionStatus]:
    if order.status == OrderStatus.CANCELLED:
        return CommissionStatus.CANCELLED if entry.status in CANCELLABLE else None

    if entry.status != CommissionStatus.PENDING:
        return None

    timing = (
        settings.vendor_payment_timing
        if entry.type == CommissionType.VENDOR
        else settings.partner_payment_timing
    )
    return CommissionStatus.CONFIRMED if _payable(timing, order.status) else None


def plan_status_changes(
    order: Order,
    entries: Sequence[CommissionEntry],
    settings: Optional[CommissionSettings] = None,
) -> list[CommissionStatusChange]:
    """Transitions implied by the order's current status. Pure."""
    settings = settings or CommissionSettings()
    changes = []
    for entry in entries:
        if entry.order_id != order.id:
            continue
        target = _target_status(entry, order, settings)
        if target is None:
            continue
        changes.append(
            CommissionStatusChange(
                entry_id=entry.id,
                order_id=order.id,
                type=entry.type,
                beneficiary_id=entry.beneficiary_id,
                from_status=entry.status,
                to_status=target,
            )
        )
    return changes


def apply_order_status(
    order_id: str,
    new_status: OrderStatus,
    repository: CommissionRepository,
) -> list[CommissionStatusChange]:
    """Persist an order status change and the commission transitions it implies."""
    order = repository.get_order(order_id)
    if order is None:
        raise NotFoundError("order", order_id)

    previous = order.status
    repository.update_order_status(order_id, new_status)
    order = order.model_copy(update={"status": new_status})

    changes = plan_status_changes(
        order,
        repository.list_commissions(order_id),
        repository.get_commission_settings(),
    )
    for change in changes:
        if change.entry_id is None:
            logger.warning(
                "commission_status_skipped | order=%s | beneficiary=%s | reason=missing_entry_id",
                order_id,
                change.beneficiary_id,
            )
            continue
        repository.update_commission_status(change.entry_id, change.to_status)

    logger.info(
        "order_status_applied | order=%s | from=%s | to=%s | commission_changes=%s",
        order_id,
        previous.value,
        new_status.value,
        len(changes),
    )
    return changes
