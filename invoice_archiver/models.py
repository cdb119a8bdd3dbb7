"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class RunStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Credential:
    """The single bearer credential used for every Graph call."""

    access_token: str
    refresh_token: Optional[str]
    scope: str
    token_type: str
    expiry_epoch_ms: Optional[int]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def is_expired(self, now_ms: int) -> bool:
        return self.expiry_epoch_ms is not None and self.expiry_epoch_ms <= now_ms


@dataclass
class TokenGrant:
    """Token endpoint response, normalised from the raw msal dict."""

    access_token: str
    refresh_token: Optional[str]
    scope: str
    token_type: str
    expires_in: Optional[int]

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> "TokenGrant":
        scope = payload.get("scope") or ""
        if isinstance(scope, (list, tuple)):
            scope = " ".join(scope)
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            scope=scope,
            token_type=payload.get("token_type", "Bearer"),
            expires_in=int(expires_in) if expires_in is not None else None,
        )


@dataclass
class AttachmentDescriptor:
    """Metadata for a file attachment."""

    filename: str
    attachment_id: str
    mime_type: str = "application/octet-stream"
    size: int = 0


@dataclass
class EmailDetails:
    """Message headers plus its file attachments, in mailbox order."""

    message_id: str
    subject: str
    sender: str
    date: Optional[datetime]
    attachments: list[AttachmentDescriptor] = field(default_factory=list)
    internet_message_id: Optional[str] = None


@dataclass
class SearchQuery:
    """Candidate-email search, translated into a mailbox query by the source."""

    keywords: list[str]
    exclude_marker: Optional[str] = None
    senders: list[str] = field(default_factory=list)
    received_since: Optional[datetime] = None
    max_results: int = 50


@dataclass
class ArchivedFile:
    file_id: str
    web_url: str


@dataclass
class LedgerRow:
    """One ledger line; field order matches the sheet columns."""

    processed_date: str
    email_date: str
    sender_email: str
    sender_name: str
    subject: str
    invoice_number: str
    file_name: str
    archive_file_id: str
    archive_file_url: str
    file_size: str

    HEADERS = (
        "Date Processed",
        "Email Date",
        "Sender Email",
        "Sender Name",
        "Subject",
        "Invoice Number",
        "File Name",
        "Archive File ID",
        "Archive File Link",
        "File Size",
    )

    def values(self) -> list[str]:
        return list(asdict(self).values())


@dataclass
class ProcessedDocument:
    """An archived attachment; written once, never updated."""

    email_id: str
    message_id: str
    sender_email: str
    sender_name: str
    subject: str
    invoice_number: Optional[str]
    email_date: Optional[str]
    file_name: str
    original_file_name: str
    archive_file_id: str
    archive_file_url: str
    ledger_id: str
    ledger_row: Optional[int]
    file_size: str
    mime_type: str
    status: str = "completed"
    processed_at: Optional[str] = None
    id: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProcessedDocument":
        return cls(**row)


@dataclass
class ScanRun:
    id: str
    status: RunStatus
    started_at: str
    emails_processed: int = 0
    documents_processed: int = 0
    errors_count: int = 0
    error_details: Optional[str] = None
    completed_at: Optional[str] = None

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["status"] = self.status.value
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ScanRun":
        values = dict(row)
        values["status"] = RunStatus(values["status"])
        return cls(**values)


@dataclass
class DocumentSummary:
    email_id: str
    file_name: str
    archive_file_id: str
    ledger_row: Optional[int]


@dataclass
class ScanResult:
    """What one scan produced: successes, their documents, per-email errors."""

    processed: int = 0
    documents: list[DocumentSummary] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
