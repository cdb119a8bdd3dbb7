"""SQLite-backed record of archived documents and scan runs."""

from __future__ import annotations

import uuid
from pathlib import Path

import sqlite_utils

from .models import ProcessedDocument, RunStatus, ScanRun
from .utils import utc_now_iso


class ProcessingStore:
    """Dedup set source and run log for the scanner."""

    DOCUMENTS = "processed_documents"
    RUNS = "scan_runs"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db = sqlite_utils.Database(str(db_path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.DOCUMENTS].create(
            {
                "id": str,
                "email_id": str,
                "message_id": str,
                "sender_email": str,
                "sender_name": str,
                "subject": str,
                "invoice_number": str,
                "email_date": str,
                "file_name": str,
                "original_file_name": str,
                "archive_file_id": str,
                "archive_file_url": str,
                "ledger_id": str,
                "ledger_row": int,
                "file_size": str,
                "mime_type": str,
                "status": str,
                "processed_at": str,
            },
            pk="id",
            if_not_exists=True,
        )
        self.db[self.DOCUMENTS].create_index(["email_id"], if_not_exists=True)
        self.db[self.RUNS].create(
            {
                "id": str,
                "status": str,
                "emails_processed": int,
                "documents_processed": int,
                "errors_count": int,
                "error_details": str,
                "started_at": str,
                "completed_at": str,
            },
            pk="id",
            if_not_exists=True,
        )

    def processed_email_ids(self) -> set[str]:
        rows = self.db[self.DOCUMENTS].rows_where(select="distinct email_id")
        return {row["email_id"] for row in rows}

    def record_document(self, document: ProcessedDocument) -> ProcessedDocument:
        document.id = document.id or uuid.uuid4().hex
        document.processed_at = document.processed_at or utc_now_iso()
        self.db[self.DOCUMENTS].insert(document.to_row(), pk="id")
        return document

    def start_run(self) -> ScanRun:
        run = ScanRun(id=uuid.uuid4().hex, status=RunStatus.STARTED, started_at=utc_now_iso())
        self.db[self.RUNS].insert(run.to_row(), pk="id")
        return run

    def save_run(self, run: ScanRun) -> None:
        self.db[self.RUNS].upsert(run.to_row(), pk="id")

    def document_count(self) -> int:
        return self.db[self.DOCUMENTS].count

    def unique_sender_count(self) -> int:
        row = self.db.execute(
            f"select count(distinct sender_email) from [{self.DOCUMENTS}]"
        ).fetchone()
        return row[0]

    def recent_runs(self, limit: int = 10) -> list[ScanRun]:
        rows = self.db[self.RUNS].rows_where(order_by="started_at desc, rowid desc", limit=limit)
        return [ScanRun.from_row(row) for row in rows]

    def recent_documents(self, limit: int = 20) -> list[ProcessedDocument]:
        rows = self.db[self.DOCUMENTS].rows_where(order_by="processed_at desc, rowid desc", limit=limit)
        return [ProcessedDocument.from_row(row) for row in rows]
