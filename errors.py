"""
errors.py - Hard-failure exceptions.

Recoverable conditions (bad statement content, missing cost data, ambiguous
matches, rate misconfiguration) are reported through `ErrorKind` values on
result objects. Only the failures below are raised to callers.
"""

from __future__ import annotations

from models import ErrorKind


class FinanceEngineError(Exception):
    """Base class for errors raised by the financial core."""


class DuplicateCommissionError(FinanceEngineError):
    """A second non-cancelled commission entry for the same beneficiary slot.

    Raised when a caller tries to create commissions that already exist, or
    when existing entries already violate the one-per-slot invariant.
    """

    error_kind = ErrorKind.DUPLICATE_COMMISSION

    def __init__(self, order_id: str, slot: str, message: str | None = None) -> None:
        self.order_id = order_id
        self.slot = slot
        super().__init__(message or f"Duplicate commission for order {order_id}: {slot}")


class CollaboratorError(FinanceEngineError):
    """A persistence collaborator failed to read or write."""


class NotFoundError(FinanceEngineError):
    """A referenced record does not exist in the collaborator."""

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} not found: {record_id}")
