"""
report.py - Tabular views and human-readable summaries of statement imports.

    transactions_frame(records)        -> DataFrame, one row per transaction
    reconciliation_frame(result)       -> DataFrame with a classification column
    summarize_reconciliation(result)   -> counts and totals per classification
    format_import_report(report)       -> text block for the uploader
    format_import_report_json(report)  -> JSON-compatible dict
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

import pandas as pd

from logging_config import get_logger
from models import BankTransactionRecord, ErrorKind, ImportReport, ReconciliationResult
from normalize import round_money, sum_money

logger = get_logger(__name__)

OUTPUT_WIDTH = 60
SEPARATOR = "=" * OUTPUT_WIDTH
MAX_ROWS_DISPLAY = 10

CLASSIFICATIONS = ("matched", "ambiguous", "unmatched")

TRANSACTION_COLUMNS = ["external_id", "posted_at", "amount", "kind", "description", "raw_type"]
RECONCILIATION_COLUMNS = TRANSACTION_COLUMNS + [
    "classification",
    "receivable_id",
    "order_id",
    "candidates",
]

ERROR_MESSAGES = {
    ErrorKind.INVALID_FORMAT: "File is not a recognised bank statement",
    ErrorKind.INCOMPLETE_RECORD: "Some transaction blocks were missing required fields and were skipped",
    ErrorKind.AMBIGUOUS_MATCH: "More than one open receivable fits; needs manual review",
}


def _transaction_row(record: BankTransactionRecord) -> dict[str, Any]:
    return {
        "external_id": record.external_id,
        "posted_at": record.posted_at,
        "amount": record.amount,
        "kind": record.kind.value,
        "description": record.description,
        "raw_type": record.raw_type,
    }


def transactions_frame(records: Iterable[BankTransactionRecord]) -> pd.DataFrame:
    """Transactions as a DataFrame. Amounts stay Decimal (object dtype)."""
    rows = [_transaction_row(record) for record in records]
    return pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)


def reconciliation_frame(result: ReconciliationResult) -> pd.DataFrame:
    rows: list[dict[str, Any]] = []
    for pair in result.matched:
        row = _transaction_row(pair.transaction)
        row.update(
            classification="matched",
            receivable_id=pair.receivable.id,
            order_id=pair.receivable.order_id,
            candidates="",
        )
        rows.append(row)
    for record in result.ambiguous:
        row = _transaction_row(record)
        row.update(
            classification="ambiguous",
            receivable_id=None,
            order_id=None,
            candidates=", ".join(result.ambiguous_candidates.get(record.external_id, [])),
        )
        rows.append(row)
    for record in result.unmatched:
        row = _transaction_row(record)
        row.update(classification="unmatched", receivable_id=None, order_id=None, candidates="")
        rows.append(row)

    frame = pd.DataFrame(rows, columns=RECONCILIATION_COLUMNS)
    if not frame.empty:
        frame = frame.sort_values(["posted_at", "external_id"], kind="stable").reset_index(drop=True)
    return frame


def summarize_reconciliation(result: ReconciliationResult) -> dict[str, dict[str, Any]]:
    """Count and amount total (cents, as string) per classification."""
    frame = reconciliation_frame(result)
    summary: dict[str, dict[str, Any]] = {
        name: {"count": 0, "total": str(round_money(0))} for name in CLASSIFICATIONS
    }
    if frame.empty:
        return summary

    for name, group in frame.groupby("classification"):
        summary[str(name)] = {
            "count": int(len(group)),
            "total": str(round_money(sum_money(list(group["amount"])))),
        }
    return summary


def _status_line(report: ImportReport) -> str:
    if report.error_kind == ErrorKind.INVALID_FORMAT:
        return "IMPORT FAILED - invalid statement"
    if report.imported_count == 0 and report.duplicate_count:
        return "NOTHING NEW - statement already imported"
    return f"IMPORTED {report.imported_count} transaction(s)"


def format_import_report(report: Optional[ImportReport]) -> str:
    """Format an ImportReport into a readable text block."""
    if report is None:
        logger.error("report_input_error | report_none=True | fallback=error_block")
        return "\n" + SEPARATOR + "\n  ERROR: No import data available\n" + SEPARATOR + "\n"

    summary = summarize_reconciliation(report.reconciliation)
    lines: list[str] = ["", SEPARATOR, f"  {_status_line(report)}", SEPARATOR, ""]

    lines.append(f"  Account:      {report.account_id or 'not informed'}")
    lines.append(f"  Parsed:       {report.parsed_count}")
    lines.append(f"  Skipped:      {report.skipped_count}")
    lines.append(f"  Duplicates:   {report.duplicate_count}")
    lines.append("")

    for name in CLASSIFICATIONS:
        lines.append(f"  {name.capitalize():<13} {summary[name]['count']:>4}  |  {summary[name]['total']}")

    ambiguous = report.reconciliation.ambiguous
    if ambiguous:
        lines.append("")
        lines.append(f"  {ERROR_MESSAGES[ErrorKind.AMBIGUOUS_MATCH]}:")
        for record in ambiguous[:MAX_ROWS_DISPLAY]:
            candidates = report.reconciliation.ambiguous_candidates.get(record.external_id, [])
            lines.append(
                f"    • {record.external_id}  {record.amount}  {record.posted_at.isoformat()}"
                f"  -> {', '.join(candidates)}"
            )
        if len(ambiguous) > MAX_ROWS_DISPLAY:
            lines.append(f"    • ... and {len(ambiguous) - MAX_ROWS_DISPLAY} more")

    message = ERROR_MESSAGES.get(report.error_kind) if report.error_kind else None
    if message:
        lines.append("")
        lines.append(f"  WARNING: {message}")

    lines.append("")
    lines.append(SEPARATOR)
    lines.append("")
    return "\n".join(lines)


def format_import_report_json(report: Optional[ImportReport]) -> dict:
    """Format an ImportReport as a JSON-compatible dict."""
    if report is None:
        logger.error("report_json_input_error | report_none=True | fallback=error_payload")
        return {
            "status": "error",
            "error_kind": None,
            "counts": {},
            "reconciliation": {},
            "warnings": ["Import report was None"],
        }

    result = report.reconciliation
    if report.error_kind == ErrorKind.INVALID_FORMAT:
        status = "invalid"
    elif report.error_kind == ErrorKind.INCOMPLETE_RECORD:
        status = "partial"
    else:
        status = "ok"

    warnings = []
    if report.error_kind in ERROR_MESSAGES:
        warnings.append(ERROR_MESSAGES[report.error_kind])
    if result.ambiguous:
        warnings.append(f"{len(result.ambiguous)} transaction(s): {ERROR_MESSAGES[ErrorKind.AMBIGUOUS_MATCH]}")

    return {
        "status": status,
        "account_id": report.account_id,
        "error_kind": report.error_kind.value if report.error_kind else None,
        "counts": {
            "parsed": report.parsed_count,
            "skipped": report.skipped_count,
            "duplicates": report.duplicate_count,
            "imported": report.imported_count,
        },
        "reconciliation": summarize_reconciliation(result),
        "matched": [
            {
                "transaction_id": pair.transaction.external_id,
                "receivable_id": pair.receivable.id,
                "order_id": pair.receivable.order_id,
                "amount": str(pair.transaction.amount),
            }
            for pair in result.matched
        ],
        "ambiguous": [
            {
                "transaction_id": record.external_id,
                "amount": str(record.amount),
                "error_kind": ErrorKind.AMBIGUOUS_MATCH.value,
                "candidates": result.ambiguous_candidates.get(record.external_id, []),
            }
            for record in result.ambiguous
        ],
        "unmatched": [record.external_id for record in result.unmatched],
        "warnings": warnings,
    }
