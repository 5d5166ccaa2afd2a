"""
ingest.py - Statement upload pipeline.

    parse -> drop lines already imported for the account
          -> reconcile against open receivables
          -> per match: mark receivable + log line (one write)
          -> log the ambiguous and unmatched lines

A line enters the import log only once its outcome is persisted. If a
write fails halfway, lines already settled are duplicates on the next run
and the rest are reconciled again, so re-uploading is always safe.
"""

from __future__ import annotations

from typing import Optional, Union

from collaborators import StatementImportRepository
from config import FinanceDefaults, load_finance_defaults
from errors import CollaboratorError
from logging_config import get_logger
from models import ImportReport, ReconciliationResult
from reconcile import reconcile
from statement import dedupe_transactions, parse_statement

logger = get_logger(__name__)


def _settle_matches(
    result: ReconciliationResult,
    account_ref: Optional[str],
    repository: StatementImportRepository,
) -> int:
    settled = 0
    for pair in result.matched:
        try:
            repository.settle_transaction(account_ref, pair.transaction, pair.receivable)
        except Exception as exc:
            logger.error(
                "statement_settle_error | account=%s | txn=%s | receivable=%s | settled_before_failure=%s | error=%s",
                account_ref,
                pair.transaction.external_id,
                pair.receivable.id,
                settled,
                exc,
            )
            raise CollaboratorError(
                f"Failed to settle transaction {pair.transaction.external_id} "
                f"against receivable {pair.receivable.id}"
            ) from exc
        settled += 1
    return settled


def import_statement(
    content: Union[str, bytes, None],
    repository: StatementImportRepository,
    defaults: Optional[FinanceDefaults] = None,
) -> ImportReport:
    defaults = defaults or load_finance_defaults()
    parsed = parse_statement(content)
    account_ref = parsed.account_id

    previously_seen = [
        record.external_id
        for record in parsed.records
        if repository.has_imported(account_ref, record.external_id)
    ]
    fresh, duplicates = dedupe_transactions(parsed.records, previously_seen)

    result = reconcile(fresh, repository.list_open_receivables(), defaults=defaults)
    _settle_matches(result, account_ref, repository)

    unsettled = [*result.ambiguous, *result.unmatched]
    if unsettled:
        try:
            repository.record_imported(account_ref, unsettled)
        except Exception as exc:
            logger.error(
                "statement_record_error | account=%s | lines=%s | error=%s",
                account_ref,
                len(unsettled),
                exc,
            )
            raise CollaboratorError(f"Failed to record {len(unsettled)} imported line(s)") from exc

    report = ImportReport(
        account_id=account_ref,
        error_kind=parsed.error_kind,
        parsed_count=parsed.parsed_count,
        skipped_count=parsed.skipped_count,
        duplicate_count=len(duplicates),
        reconciliation=result,
    )
    logger.info(
        "statement_imported | account=%s | parsed=%s | skipped=%s | duplicates=%s | matched=%s | ambiguous=%s | unmatched=%s",
        account_ref,
        report.parsed_count,
        report.skipped_count,
        report.duplicate_count,
        len(result.matched),
        len(result.ambiguous),
        len(result.unmatched),
    )
    return report
