"""
statement.py - Bank statement (OFX-like) parsing.

The export format has no enforced grammar: closing tags are optional, values
may run until the next tag or line break, and files routinely carry
non-transaction noise. Parsing is therefore a segment scanner with
independent per-record validation. A malformed record is data, not a parse
failure, and never aborts the batch.

    parse(content)            -> list[BankTransactionRecord]
    parse_statement(content)  -> StatementParseResult (records + diagnostics)
    dedupe_transactions(...)  -> (fresh, duplicates) by external id
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

from logging_config import get_logger
from models import BankTransactionRecord, ErrorKind, StatementParseResult, TransactionKind
from normalize import parse_statement_date, to_decimal

logger = get_logger(__name__)

ROOT_MARKERS = ("<OFX>", "OFXHEADER")
SEGMENT_OPEN = "<STMTTRN>"
SEGMENT_CLOSE = "</STMTTRN>"


def _decode(raw_content: Union[str, bytes, None]) -> Optional[str]:
    if raw_content is None:
        return None
    if isinstance(raw_content, str):
        return raw_content
    try:
        return raw_content.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("statement_encoding_warning | reason='utf-8 decode failed' | fallback=latin-1")
        return raw_content.decode("latin-1")


def extract_field(segment: str, name: str) -> str:
    """Return the stripped value of `<name>` inside `segment`, or ''.

    With a closing tag the value ends there. Without one it ends at the next
    '<' or line break, whichever comes first, or at the end of the segment.
    """
    start_tag = f"<{name}>"
    start = segment.find(start_tag)
    if start == -1:
        return ""

    value_start = start + len(start_tag)
    end = segment.find(f"</{name}>", value_start)
    if end != -1:
        return segment[value_start:end].strip()

    boundaries = [
        index
        for index in (segment.find("<", value_start), segment.find("\n", value_start))
        if index != -1
    ]
    value_end = min(boundaries) if boundaries else len(segment)
    return segment[value_start:value_end].strip()


def _split_segments(content: str) -> tuple[str, list[str]]:
    """Split into (header, transaction segments)."""
    parts = content.split(SEGMENT_OPEN)
    segments: list[str] = []
    for block in parts[1:]:
        close = block.find(SEGMENT_CLOSE)
        segments.append(block[:close] if close != -1 else block)
    return parts[0], segments


def _parse_segment(segment: str) -> Optional[BankTransactionRecord]:
    trn_type = extract_field(segment, "TRNTYPE")
    date_posted = extract_field(segment, "DTPOSTED")
    amount_text = extract_field(segment, "TRNAMT")
    fit_id = extract_field(segment, "FITID")
    memo = extract_field(segment, "MEMO") or extract_field(segment, "NAME")

    if not (fit_id and amount_text and date_posted):
        logger.debug(
            "statement_segment_skipped | reason=missing_field | fitid=%r | amount=%r | date=%r",
            fit_id,
            amount_text,
            date_posted,
        )
        return None

    posted_at = parse_statement_date(date_posted)
    amount = to_decimal(amount_text)
    if posted_at is None or amount is None:
        logger.debug(
            "statement_segment_skipped | reason=undecodable | fitid=%r | amount=%r | date=%r",
            fit_id,
            amount_text,
            date_posted,
        )
        return None

    return BankTransactionRecord(
        external_id=fit_id,
        posted_at=posted_at,
        amount=amount,
        description=memo or f"Transaction {trn_type}".strip(),
        kind=TransactionKind.CREDIT if amount >= 0 else TransactionKind.DEBIT,
        raw_type=trn_type or None,
    )


def parse_statement(raw_content: Union[str, bytes, None]) -> StatementParseResult:
    """Parse statement content into records plus import diagnostics.

    Never raises. Content without a statement marker yields an empty result
    with `error_kind=INVALID_FORMAT`. If segments were found but some were
    dropped, `error_kind` is `INCOMPLETE_RECORD` and `skipped_count` says how
    many.
    """
    content = _decode(raw_content)
    if not content or not any(marker in content for marker in ROOT_MARKERS):
        logger.warning(
            "statement_invalid_format | length=%s | fallback=empty",
            len(content) if content else 0,
        )
        return StatementParseResult(error_kind=ErrorKind.INVALID_FORMAT)

    header, segments = _split_segments(content)
    account_id = extract_field(header, "ACCTID") or None

    records: list[BankTransactionRecord] = []
    for segment in segments:
        record = _parse_segment(segment)
        if record is not None:
            records.append(record)

    skipped = len(segments) - len(records)
    result = StatementParseResult(
        records=records,
        segment_count=len(segments),
        parsed_count=len(records),
        skipped_count=skipped,
        error_kind=ErrorKind.INCOMPLETE_RECORD if skipped else None,
        account_id=account_id,
    )

    logger.info(
        "statement_parsed | account=%s | segments=%s | parsed=%s | skipped=%s | credits=%s | debits=%s",
        account_id,
        result.segment_count,
        result.parsed_count,
        result.skipped_count,
        result.total_credits,
        result.total_debits,
    )
    return result


def parse(raw_content: Union[str, bytes, None]) -> list[BankTransactionRecord]:
    """Parse statement content into transaction records, in input order."""
    return parse_statement(raw_content).records


def dedupe_transactions(
    records: Iterable[BankTransactionRecord],
    seen_ids: Iterable[str] = (),
) -> tuple[list[BankTransactionRecord], list[BankTransactionRecord]]:
    """Split records into (fresh, duplicates) by external id.

    A record is a duplicate when its id is in `seen_ids` or already appeared
    earlier in `records`. The first occurrence wins.
    """
    seen = set(seen_ids)
    fresh: list[BankTransactionRecord] = []
    duplicates: list[BankTransactionRecord] = []
    for record in records:
        if record.external_id in seen:
            duplicates.append(record)
            continue
        seen.add(record.external_id)
        fresh.append(record)
    return fresh, duplicates
