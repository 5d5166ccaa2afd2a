"""
inbox.py - Folder-drop intake for bank statement files.

Statement exports dropped into the inbox folder are imported one by one
through `ingest.import_statement`, then moved to the archive folder. A
manifest in the archive folder records the signature (name, size, mtime)
of every processed file so a file copied back into the inbox is not
imported again.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from collaborators import StatementImportRepository
from config import FinanceDefaults
from ingest import import_statement
from logging_config import get_logger
from models import ErrorKind
from report import format_import_report_json

logger = get_logger(__name__)

SUPPORTED_STATEMENT_EXTENSIONS = {".ofx", ".txt"}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_mtime_ns(path: Path) -> int:
    try:
        return int(path.stat().st_mtime_ns)
    except OSError:
        return 0


def file_signature(path: Path) -> dict[str, Any]:
    stat = path.stat()
    return {
        "name": path.name,
        "size": int(stat.st_size),
        "mtime_ns": int(stat.st_mtime_ns),
    }


def signature_key(signature: dict[str, Any]) -> str:
    return f"{signature.get('name','')}::{signature.get('size',0)}::{signature.get('mtime_ns',0)}"


class StatementInbox:
    """Imports statement files from a folder and archives them."""

    def __init__(
        self,
        inbox_path: Optional[str] = None,
        archive_path: Optional[str] = None,
        max_files_per_run: int = 20,
    ) -> None:
        self.inbox_path = Path(inbox_path or os.getenv("STATEMENT_INBOX", "data/inbox")).resolve()
        self.archive_path = Path(archive_path or os.getenv("STATEMENT_ARCHIVE", "data/archive")).resolve()
        self.max_files_per_run = max(1, int(max_files_per_run))
        self.manifest_path = self.archive_path / "manifest.json"
        self.ensure_directories()

    def ensure_directories(self) -> None:
        self.inbox_path.mkdir(parents=True, exist_ok=True)
        self.archive_path.mkdir(parents=True, exist_ok=True)

    def load_manifest(self) -> dict[str, Any]:
        if not self.manifest_path.exists():
            return {"processed": {}, "updated_at": None}
        try:
            raw = json.loads(self.manifest_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(
                "inbox_manifest_load_warning | path=%s | error_type=%s | error=%s | fallback='empty'",
                self.manifest_path,
                type(exc).__name__,
                exc,
            )
            return {"processed": {}, "updated_at": None}
        processed = raw.get("processed") if isinstance(raw, dict) else None
        return {
            "processed": processed if isinstance(processed, dict) else {},
            "updated_at": raw.get("updated_at") if isinstance(raw, dict) else None,
        }

    def save_manifest(self, manifest: dict[str, Any]) -> None:
        normalized = {
            "processed": manifest.get("processed", {}),
            "updated_at": _utc_now_iso(),
        }
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(self.archive_path),
            delete=False,
            prefix="manifest-",
            suffix=".tmp",
        ) as tmp_file:
            json.dump(normalized, tmp_file, ensure_ascii=False, indent=2)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = Path(tmp_file.name)
        os.replace(tmp_path, self.manifest_path)

    def pending_files(self) -> list[Path]:
        """Unprocessed statement files, oldest first."""
        processed = self.load_manifest()["processed"]
        files = [
            path
            for path in self.inbox_path.iterdir()
            if path.is_file()
            and not path.name.startswith(".")
            and path.suffix.lower() in SUPPORTED_STATEMENT_EXTENSIONS
            and signature_key(file_signature(path)) not in processed
        ]
        files.sort(key=lambda item: (_safe_mtime_ns(item), item.name))
        return files[: self.max_files_per_run]

    def _archive(self, source: Path) -> Path:
        target_dir = self.archive_path / datetime.now(timezone.utc).strftime("%Y%m%d")
        target_dir.mkdir(parents=True, exist_ok=True)
        destination = target_dir / source.name
        candidate = 1
        while destination.exists():
            destination = target_dir / f"{source.stem}_{candidate}{source.suffix}"
            candidate += 1
        shutil.move(str(source), str(destination))
        return destination

    def process(
        self,
        repository: StatementImportRepository,
        defaults: Optional[FinanceDefaults] = None,
    ) -> list[dict[str, Any]]:
        """Import every pending file. Returns one summary dict per file."""
        files = self.pending_files()
        if not files:
            logger.info("inbox_scan | inbox=%s | pending=0", self.inbox_path)
            return []

        manifest = self.load_manifest()
        results: list[dict[str, Any]] = []
        for path in files:
            signature = file_signature(path)
            report = import_statement(path.read_bytes(), repository, defaults)
            archived = self._archive(path)

            status = "rejected" if report.error_kind == ErrorKind.INVALID_FORMAT else "imported"
            manifest["processed"][signature_key(signature)] = {
                **signature,
                "status": status,
                "account_id": report.account_id,
                "archived_as": str(archived.relative_to(self.archive_path)),
                "processed_at": _utc_now_iso(),
            }
            self.save_manifest(manifest)

            results.append({"file": path.name, "status": status, "report": format_import_report_json(report)})
            logger.info(
                "inbox_file_processed | file=%s | status=%s | imported=%s | duplicates=%s",
                path.name,
                status,
                report.imported_count,
                report.duplicate_count,
            )
        return results
