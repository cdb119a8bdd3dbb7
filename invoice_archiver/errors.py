"""Exception types raised across the archiver."""

from __future__ import annotations


class ArchiverError(RuntimeError):
    """Base class for archiver failures."""


class Unauthenticated(ArchiverError):
    """No credential has ever been stored for the principal."""


class CredentialExpired(ArchiverError):
    """The stored credential expired and cannot be refreshed."""


class RefreshFailed(ArchiverError):
    """The token endpoint rejected a refresh exchange."""


class SetupFailed(ArchiverError):
    """Archive folder or ledger provisioning failed; fatal to a scan."""


class NoPayload(ArchiverError):
    """A message could not be retrieved from the mailbox."""


class AttachmentProcessingFailed(ArchiverError):
    """One attachment failed somewhere between download and persistence."""

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"Failed to process attachment {filename}: {reason}")
        self.filename = filename
        self.reason = reason


class EmailProcessingFailed(ArchiverError):
    """Wraps any failure for a single email; recovered at the run level."""

    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(reason)
        self.message_id = message_id
        self.reason = reason
