"""Shared fixtures: in-memory collaborators and a temporary SQLite store."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

import pytest

from invoice_archiver.config import DEFAULT_DOCUMENT_EXTENSIONS
from invoice_archiver.models import (
    ArchivedFile,
    AttachmentDescriptor,
    Credential,
    EmailDetails,
    LedgerRow,
    SearchQuery,
    TokenGrant,
)
from invoice_archiver.naming import DocumentFilter
from invoice_archiver.processing_store import ProcessingStore
from invoice_archiver.scanner import ScanOrchestrator

EMAIL_DATE = datetime(2024, 3, 14, 9, 30, tzinfo=UTC)


def make_email(message_id: str, *filenames: str, subject: str = "Invoice #4821 - March") -> EmailDetails:
    return EmailDetails(
        message_id=message_id,
        subject=subject,
        sender="billing.team@acme-corp.com",
        date=EMAIL_DATE,
        attachments=[
            AttachmentDescriptor(
                filename=name,
                attachment_id=f"{message_id}-att-{index}",
                mime_type="application/pdf",
                size=1536,
            )
            for index, name in enumerate(filenames)
        ],
    )


class FakeMailSource:
    def __init__(self) -> None:
        self.emails: dict[str, EmailDetails] = {}
        self.failing_attachments: set[str] = set()
        self.marked: list[str] = []
        self.queries: list[SearchQuery] = []

    def add(self, email: EmailDetails) -> None:
        self.emails[email.message_id] = email

    def search(self, query: SearchQuery) -> list[str]:
        self.queries.append(query)
        return [
            message_id for message_id in self.emails if message_id not in self.marked
        ][: query.max_results]

    def fetch_details(self, message_id: str) -> Optional[EmailDetails]:
        return self.emails.get(message_id)

    def fetch_attachment(self, message_id: str, attachment_id: str) -> bytes:
        if attachment_id in self.failing_attachments:
            raise ConnectionError("attachment download timed out")
        return f"bytes of {attachment_id}".encode()

    def apply_processed_marker(self, message_id: str) -> None:
        if message_id not in self.marked:
            self.marked.append(message_id)


class FakeArchive:
    def __init__(self) -> None:
        self.containers: list[str] = []
        self.files: dict[str, tuple[str, bytes]] = {}
        self.fail_setup = False

    def ensure_container(self, name: str) -> str:
        if self.fail_setup:
            raise PermissionError("drive quota exceeded")
        self.containers.append(name)
        return "folder-1"

    def store(self, content: bytes, filename: str, mime_type: str, container_id: str) -> ArchivedFile:
        file_id = f"file-{len(self.files) + 1}"
        self.files[file_id] = (filename, content)
        return ArchivedFile(file_id=file_id, web_url=f"https://onedrive.example/{file_id}")


class FakeLedger:
    def __init__(self) -> None:
        self.rows: list[LedgerRow] = []
        self.fail_setup = False

    def ensure_ledger(self, name: str) -> str:
        if self.fail_setup:
            raise PermissionError("workbook is locked for editing")
        return "ledger-1"

    def append_row(self, ledger_id: str, row: LedgerRow) -> Optional[int]:
        self.rows.append(row)
        return len(self.rows) + 1  # header occupies row 1


class MemoryCredentialStore:
    principal = "default_user"

    def __init__(self, credential: Optional[Credential] = None) -> None:
        self.credential = credential
        self.saves = 0

    def load(self) -> Optional[Credential]:
        return self.credential

    def save(self, credential: Credential) -> None:
        self.saves += 1
        self.credential = credential

    def clear(self) -> None:
        self.credential = None


class FakeTokenClient:
    def __init__(self, grant: Optional[TokenGrant] = None, error: Optional[Exception] = None) -> None:
        self.grant = grant or TokenGrant(
            access_token="fresh-access",
            refresh_token=None,
            scope="Mail.ReadWrite",
            token_type="Bearer",
            expires_in=3600,
        )
        self.error = error
        self.refresh_calls: list[str] = []

    def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.error:
            raise self.error
        return self.grant

    def authorize(self) -> TokenGrant:
        return self.grant


@pytest.fixture
def store(tmp_path: Path) -> ProcessingStore:
    return ProcessingStore(tmp_path / "archiver.db")


@pytest.fixture
def mail() -> FakeMailSource:
    return FakeMailSource()


@pytest.fixture
def archive() -> FakeArchive:
    return FakeArchive()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def scanner(mail, archive, ledger, store) -> ScanOrchestrator:
    return ScanOrchestrator(
        mail,
        archive,
        ledger,
        store,
        default_query=SearchQuery(
            keywords=["invoice", "receipt", "bill"], exclude_marker="processed-financial-docs"
        ),
        document_filter=DocumentFilter(DEFAULT_DOCUMENT_EXTENSIONS.split(";")),
    )
