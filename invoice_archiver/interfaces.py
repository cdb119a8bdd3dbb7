"""Collaborator contracts the scan pipeline and credential manager depend on."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import (
    ArchivedFile,
    Credential,
    EmailDetails,
    LedgerRow,
    SearchQuery,
    TokenGrant,
)


class MailSource(Protocol):
    def search(self, query: SearchQuery) -> list[str]: ...

    def fetch_details(self, message_id: str) -> Optional[EmailDetails]: ...

    def fetch_attachment(self, message_id: str, attachment_id: str) -> bytes: ...

    def apply_processed_marker(self, message_id: str) -> None: ...


class ArchiveSink(Protocol):
    def ensure_container(self, name: str) -> str: ...

    def store(self, content: bytes, filename: str, mime_type: str, container_id: str) -> ArchivedFile: ...


class LedgerSink(Protocol):
    def ensure_ledger(self, name: str) -> str: ...

    def append_row(self, ledger_id: str, row: LedgerRow) -> Optional[int]: ...


class CredentialStore(Protocol):
    principal: str

    def load(self) -> Optional[Credential]: ...

    def save(self, credential: Credential) -> None: ...

    def clear(self) -> None: ...


class TokenClient(Protocol):
    def refresh(self, refresh_token: str) -> TokenGrant: ...

    def authorize(self) -> TokenGrant: ...
