"""Scan cycle: find unprocessed finance emails and archive their documents."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .errors import AttachmentProcessingFailed, EmailProcessingFailed, NoPayload, SetupFailed
from .interfaces import ArchiveSink, LedgerSink, MailSource
from .models import (
    AttachmentDescriptor,
    DocumentSummary,
    EmailDetails,
    LedgerRow,
    ProcessedDocument,
    RunStatus,
    ScanResult,
    ScanRun,
    SearchQuery,
)
from .naming import (
    DocumentFilter,
    extract_invoice_number,
    extract_sender_name,
    ledger_invoice_number,
    structured_filename,
)
from .processing_store import ProcessingStore
from .utils import ensure_utc, format_file_size, today_iso, utc_now_iso

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Runs one scan per call to :meth:`run_scan`.

    Every run is logged as a ScanRun: ``started`` on entry, then ``completed``
    (even if every email failed) or ``failed`` when setup or the run log
    itself breaks. A failing email never stops the others; it only adds an
    ``"<emailId>: <message>"`` entry to the result's errors.
    """

    def __init__(
        self,
        mail: MailSource,
        archive: ArchiveSink,
        ledger: LedgerSink,
        store: ProcessingStore,
        *,
        default_query: SearchQuery,
        document_filter: DocumentFilter,
        archive_folder_name: str = "Financial Documents",
        ledger_name: str = "Financial Documents Log",
    ) -> None:
        self.mail = mail
        self.archive = archive
        self.ledger = ledger
        self.store = store
        self.default_query = default_query
        self.document_filter = document_filter
        self.archive_folder_name = archive_folder_name
        self.ledger_name = ledger_name

    def run_scan(self, query: Optional[SearchQuery] = None) -> ScanResult:
        run = self.store.start_run()
        result = ScanResult()

        try:
            logger.info("Starting financial document scan...")
            folder_id, ledger_id = self._setup()

            processed_ids = self.store.processed_email_ids()
            candidates = self.mail.search(query or self.default_query)
            unprocessed = [message_id for message_id in candidates if message_id not in processed_ids]
            logger.info(
                "Found %s total emails, %s unprocessed", len(candidates), len(unprocessed)
            )

            if not unprocessed:
                self._finish(run, result)
                logger.info("No new financial emails found")
                return result

            for message_id in unprocessed:
                try:
                    documents = self._process_email(message_id, folder_id, ledger_id)
                except EmailProcessingFailed as exc:
                    error = f"{message_id}: {exc.reason}"
                    logger.error("Email %s", error)
                    result.errors.append(error)
                    continue

                result.processed += 1
                result.documents.extend(documents)
                logger.info("Successfully processed email %s", message_id)

            self._finish(run, result)
            logger.info(
                "Scan complete: %s emails processed, %s errors",
                result.processed,
                len(result.errors),
            )
            return result
        except Exception as exc:
            run.status = RunStatus.FAILED
            run.error_details = str(exc)
            run.completed_at = utc_now_iso()
            self.store.save_run(run)
            logger.exception("Scan process failed")
            raise

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_documents": self.store.document_count(),
            "unique_senders": self.store.unique_sender_count(),
            "recent_runs": [run.to_row() for run in self.store.recent_runs(limit=10)],
        }

    def get_recent_documents(self, limit: int = 20) -> list[ProcessedDocument]:
        return self.store.recent_documents(limit=limit)

    def _setup(self) -> tuple[str, str]:
        try:
            folder_id = self.archive.ensure_container(self.archive_folder_name)
            ledger_id = self.ledger.ensure_ledger(self.ledger_name)
        except Exception as exc:
            raise SetupFailed(f"Failed to prepare archive folder or ledger: {exc}") from exc
        logger.info("Using archive folder: %s, ledger: %s", folder_id, ledger_id)
        return folder_id, ledger_id

    def _finish(self, run: ScanRun, result: ScanResult) -> None:
        run.status = RunStatus.COMPLETED
        run.emails_processed = result.processed
        run.documents_processed = len(result.documents)
        run.errors_count = len(result.errors)
        run.error_details = json.dumps(result.errors) if result.errors else None
        run.completed_at = utc_now_iso()
        self.store.save_run(run)

    def _process_email(self, message_id: str, folder_id: str, ledger_id: str) -> list[DocumentSummary]:
        try:
            details = self.mail.fetch_details(message_id)
            if details is None:
                raise NoPayload("No payload found for this email")

            logger.info(
                "Processing %s attachments from: %s", len(details.attachments), details.sender
            )
            summaries: list[DocumentSummary] = []
            for attachment in details.attachments:
                if not self.document_filter.accepts(attachment):
                    continue
                summaries.append(
                    self._process_attachment(message_id, details, attachment, folder_id, ledger_id)
                )

            if summaries:
                self.mail.apply_processed_marker(message_id)
            return summaries
        except Exception as exc:
            raise EmailProcessingFailed(message_id, str(exc)) from exc

    def _process_attachment(
        self,
        message_id: str,
        details: EmailDetails,
        attachment: AttachmentDescriptor,
        folder_id: str,
        ledger_id: str,
    ) -> DocumentSummary:
        try:
            content = self.mail.fetch_attachment(message_id, attachment.attachment_id)
            file_name = structured_filename(
                details.sender, details.subject, details.date, attachment.filename
            )
            archived = self.archive.store(content, file_name, attachment.mime_type, folder_id)

            email_date = ensure_utc(details.date) if details.date else None
            sender_name = extract_sender_name(details.sender)
            file_size = format_file_size(attachment.size)
            row_number = self.ledger.append_row(
                ledger_id,
                LedgerRow(
                    processed_date=today_iso(),
                    email_date=email_date.date().isoformat() if email_date else "",
                    sender_email=details.sender,
                    sender_name=sender_name,
                    subject=details.subject,
                    invoice_number=ledger_invoice_number(details.subject),
                    file_name=file_name,
                    archive_file_id=archived.file_id,
                    archive_file_url=archived.web_url,
                    file_size=file_size,
                ),
            )

            self.store.record_document(
                ProcessedDocument(
                    email_id=message_id,
                    message_id=details.internet_message_id or message_id,
                    sender_email=details.sender,
                    sender_name=sender_name,
                    subject=details.subject,
                    invoice_number=extract_invoice_number(details.subject),
                    email_date=email_date.isoformat() if email_date else None,
                    file_name=file_name,
                    original_file_name=attachment.filename,
                    archive_file_id=archived.file_id,
                    archive_file_url=archived.web_url,
                    ledger_id=ledger_id,
                    ledger_row=row_number,
                    file_size=file_size,
                    mime_type=attachment.mime_type,
                )
            )
        except Exception as exc:
            logger.error("Failed to process attachment %s: %s", attachment.filename, exc)
            raise AttachmentProcessingFailed(attachment.filename, str(exc)) from exc

        logger.info("Processed attachment: %s -> %s", attachment.filename, file_name)
        return DocumentSummary(
            email_id=message_id,
            file_name=file_name,
            archive_file_id=archived.file_id,
            ledger_row=row_number,
        )
