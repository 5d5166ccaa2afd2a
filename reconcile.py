"""
reconcile.py - Bank movement to receivable matching.

A transaction matches a receivable when both hold:
- amount: equal after rounding both sides to cents (no tolerance)
- date: posting date within +/- `tolerance_days` of the receivable due date

Exactly one open candidate -> matched. More than one -> ambiguous, never
auto-resolved. None -> unmatched. Transactions are processed in input order
and a receivable matched earlier in the run is not offered again
(first-come assignment).

`suggest_candidates` ranks near-misses for the review queue. It scores
amount proximity, date proximity and payer-name similarity, and never
changes a classification.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from rapidfuzz import fuzz

from collaborators import ReceivableRepository
from config import FinanceDefaults, load_finance_defaults
from errors import CollaboratorError
from logging_config import get_logger
from models import (
    BankTransactionRecord,
    MatchedPair,
    MatchSuggestion,
    ReceivableRecord,
    ReceivableStatus,
    ReconciliationResult,
)
from normalize import ZERO, normalize_name, round_money

logger = get_logger(__name__)

AMOUNT_WEIGHT = 0.50
DATE_WEIGHT = 0.30
NAME_WEIGHT = 0.20

SUGGESTION_MAX_DATE_DIFF_DAYS = 30
SUGGESTION_DATE_SPAN_DAYS = 10.0
SUGGESTION_AMOUNT_SPAN_PCT = 0.25
MIN_SUGGESTION_SCORE = 30.0
MAX_SUGGESTIONS = 3


def amounts_match(transaction: BankTransactionRecord, receivable: ReceivableRecord) -> bool:
    return round_money(transaction.amount) == round_money(receivable.expected_amount)


def within_settlement_window(posted_at: date, due_date: date, tolerance_days: int) -> bool:
    return abs((posted_at - due_date).days) <= tolerance_days


def find_candidates(
    transaction: BankTransactionRecord,
    receivables: Iterable[ReceivableRecord],
    tolerance_days: int,
) -> list[ReceivableRecord]:
    """Open receivables that satisfy both the amount and the date rule."""
    if transaction.amount <= ZERO:
        return []
    return [
        receivable
        for receivable in receivables
        if receivable.status == ReceivableStatus.OPEN
        and amounts_match(transaction, receivable)
        and within_settlement_window(transaction.posted_at, receivable.due_date, tolerance_days)
    ]


def reconcile(
    transactions: Sequence[BankTransactionRecord],
    open_receivables: Sequence[ReceivableRecord],
    tolerance_days: Optional[int] = None,
    defaults: Optional[FinanceDefaults] = None,
) -> ReconciliationResult:
    """Classify every transaction as matched, ambiguous or unmatched.

    Pure: inputs are not mutated. Matched pairs carry a copy of the
    receivable already transitioned to `matched`.
    """
    if tolerance_days is None:
        tolerance_days = (defaults or load_finance_defaults()).settlement_tolerance_days

    result = ReconciliationResult()
    consumed: set[str] = set()

    for transaction in transactions:
        available = (r for r in open_receivables if r.id not in consumed)
        candidates = find_candidates(transaction, available, tolerance_days)

        if len(candidates) == 1:
            receivable = candidates[0]
            consumed.add(receivable.id)
            settled = receivable.model_copy(
                update={
                    "status": ReceivableStatus.MATCHED,
                    "matched_transaction_id": transaction.external_id,
                    "matched_amount": transaction.amount,
                    "matched_at": transaction.posted_at,
                }
            )
            result.matched.append(MatchedPair(transaction=transaction, receivable=settled))
            logger.debug(
                "reconcile_matched | txn=%s | receivable=%s | order=%s | amount=%s",
                transaction.external_id,
                receivable.id,
                receivable.order_id,
                transaction.amount,
            )
        elif len(candidates) > 1:
            result.ambiguous.append(transaction)
            result.ambiguous_candidates[transaction.external_id] = [r.id for r in candidates]
            logger.info(
                "reconcile_ambiguous | txn=%s | amount=%s | candidates=%s | decision=deferred",
                transaction.external_id,
                transaction.amount,
                [r.id for r in candidates],
            )
        else:
            result.unmatched.append(transaction)

    logger.info(
        "reconcile_complete | transactions=%s | receivables=%s | matched=%s | ambiguous=%s | unmatched=%s | tolerance_days=%s",
        len(transactions),
        len(open_receivables),
        len(result.matched),
        len(result.ambiguous),
        len(result.unmatched),
        tolerance_days,
    )
    return result


def apply_reconciliation(
    result: ReconciliationResult,
    repository: ReceivableRepository,
) -> int:
    """Persist the `matched` transition for every matched pair.

    Ambiguous and unmatched transactions cause no writes. Collaborator
    failures are re-raised as CollaboratorError.
    """
    applied = 0
    for pair in result.matched:
        try:
            repository.mark_receivable_matched(pair.receivable)
        except Exception as exc:
            logger.error(
                "reconcile_apply_error | receivable=%s | txn=%s | applied_before_failure=%s | error=%s",
                pair.receivable.id,
                pair.transaction.external_id,
                applied,
                exc,
            )
            raise CollaboratorError(
                f"Failed to mark receivable {pair.receivable.id} as matched"
            ) from exc
        applied += 1
    return applied


class Reconciler:
    """Fetch open receivables, classify a batch, persist the matches."""

    def __init__(
        self,
        repository: ReceivableRepository,
        defaults: Optional[FinanceDefaults] = None,
    ) -> None:
        self.repository = repository
        self.defaults = defaults or load_finance_defaults()

    def run(self, transactions: Sequence[BankTransactionRecord]) -> ReconciliationResult:
        receivables = list(self.repository.list_open_receivables())
        result = reconcile(transactions, receivables, defaults=self.defaults)
        apply_reconciliation(result, self.repository)
        return result


# =============================================================================
# Review suggestions
# =============================================================================


def score_amount(transaction_amount: Decimal, expected_amount: Decimal) -> tuple[float, Decimal, str]:
    """Score amount proximity (0-100). Exact cents -> 100, 25% off -> 0."""
    txn_value = round_money(transaction_amount)
    expected = round_money(expected_amount)
    abs_diff = abs(txn_value - expected)

    if expected <= ZERO:
        return 0.0, abs_diff, f"Receivable amount is {expected} - cannot compare"

    if abs_diff == ZERO:
        return 100.0, abs_diff, f"Exact amount match: {expected}"

    pct = float(abs_diff / expected)
    score = round(max(0.0, 1.0 - pct / SUGGESTION_AMOUNT_SPAN_PCT) * 100.0, 1)
    return score, abs_diff, f"Amount differs: {txn_value} vs {expected} (diff: {abs_diff}, {pct * 100:.1f}%)"


def score_date(posted_at: date, due_date: date) -> tuple[float, int, str]:
    """Score date proximity (0-100). Same day -> 100, 10+ days -> 0."""
    days_apart = abs((posted_at - due_date).days)
    score = round(max(0.0, 1.0 - days_apart / SUGGESTION_DATE_SPAN_DAYS) * 100.0, 1)
    if days_apart == 0:
        return score, days_apart, f"Same date: {due_date.isoformat()}"
    direction = "after" if posted_at > due_date else "before"
    return (
        score,
        days_apart,
        f"Posted {days_apart} day(s) {direction} due date (posted: {posted_at.isoformat()}, due: {due_date.isoformat()})",
    )


def score_name(description: str, counterparty_name: Optional[str]) -> tuple[float, str]:
    """Fuzzy similarity between the statement memo and the payer name."""
    memo = normalize_name(description)
    payer = normalize_name(counterparty_name)
    if not memo or not payer:
        return 0.0, "Payer name unavailable - cannot compare"

    score = round(float(fuzz.token_set_ratio(memo, payer)), 1)
    if score >= 80:
        return score, f"Payer name found in memo: '{payer}' ~ '{memo}' (score: {score})"
    return score, f"Payer name differs: '{payer}' vs '{memo}' (score: {score})"


def suggest_candidates(
    transaction: BankTransactionRecord,
    receivables: Iterable[ReceivableRecord],
    max_results: int = MAX_SUGGESTIONS,
    min_score: float = MIN_SUGGESTION_SCORE,
) -> list[MatchSuggestion]:
    """Rank open receivables as review hints for one transaction."""
    if transaction.amount <= ZERO:
        return []

    suggestions: list[MatchSuggestion] = []
    for receivable in receivables:
        if receivable.status != ReceivableStatus.OPEN:
            continue

        d_score, days_apart, d_evidence = score_date(transaction.posted_at, receivable.due_date)
        if days_apart > SUGGESTION_MAX_DATE_DIFF_DAYS:
            continue

        a_score, abs_diff, a_evidence = score_amount(transaction.amount, receivable.expected_amount)
        n_score, n_evidence = score_name(transaction.description, receivable.counterparty_name)

        overall = round(
            a_score * AMOUNT_WEIGHT + d_score * DATE_WEIGHT + n_score * NAME_WEIGHT,
            1,
        )
        if overall < min_score:
            continue

        suggestions.append(
            MatchSuggestion(
                receivable=receivable,
                score=overall,
                amount_diff=abs_diff,
                date_diff=days_apart,
                name_score=n_score,
                evidence=[a_evidence, d_evidence, n_evidence],
            )
        )

    suggestions.sort(key=lambda s: (-s.score, s.date_diff, s.receivable.id))
    result = suggestions[:max_results]
    logger.debug(
        "suggestions_ranked | txn=%s | candidates=%s | returned=%s",
        transaction.external_id,
        len(suggestions),
        len(result),
    )
    return result
