"""Heuristics that pick document attachments and derive their archive metadata."""

from __future__ import annotations

import logging
import random
import re
import string
from datetime import datetime
from typing import Iterable, Optional

from .models import AttachmentDescriptor
from .utils import ensure_utc, today_iso

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PATTERNS = [
    re.compile(r"invoice[\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"inv[\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"bill[\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"receipt[\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"#(\d+)"),
]
# Filenames also accept any long digit run as a reference.
FILENAME_TOKEN_PATTERNS = INVOICE_NUMBER_PATTERNS + [re.compile(r"(\d{4,})")]

LEDGER_MISSING_INVOICE = "N/A"
_TOKEN_ALPHABET = string.ascii_uppercase + string.digits


class DocumentFilter:
    """Accept attachments whose extension is on the document allow-list."""

    def __init__(self, extensions: Iterable[str]) -> None:
        self.extensions = {ext.lower().lstrip(".") for ext in extensions}

    def accepts(self, attachment: AttachmentDescriptor) -> bool:
        extension = file_extension(attachment.filename)
        if extension and extension.lower() in self.extensions:
            return True
        logger.debug("Skipping non-document file: %s", attachment.filename)
        return False


def file_extension(filename: str) -> Optional[str]:
    if "." not in filename:
        return None
    extension = filename.rsplit(".", 1)[1]
    return extension or None


def sender_local_part(sender: str) -> str:
    return sender.split("@", 1)[0]


def extract_sender_name(sender: str) -> str:
    """'john.doe@acme.com' -> 'john doe'."""
    return re.sub(r"[^a-zA-Z0-9\s]", " ", sender_local_part(sender)).strip()


def extract_invoice_number(subject: str) -> Optional[str]:
    for pattern in INVOICE_NUMBER_PATTERNS:
        match = pattern.search(subject or "")
        if match:
            return match.group(1)
    return None


def ledger_invoice_number(subject: str) -> str:
    return extract_invoice_number(subject) or LEDGER_MISSING_INVOICE


def invoice_token(subject: str) -> str:
    """Always returns a token; random when the subject carries no number."""
    for pattern in FILENAME_TOKEN_PATTERNS:
        match = pattern.search(subject or "")
        if match:
            return f"INV{match.group(1)}"
    return "INV" + "".join(random.choices(_TOKEN_ALPHABET, k=6))


def structured_filename(
    sender: str, subject: str, email_date: Optional[datetime], original_filename: str
) -> str:
    """Build '<sender>_<INVtoken>_<date>.<ext>', degrading to '<today>_<original>'."""
    try:
        sender_part = re.sub(r"[^a-zA-Z0-9]", "", sender_local_part(sender))[:20]
        date_part = ensure_utc(email_date).date().isoformat()
        extension = file_extension(original_filename) or "pdf"
        name = f"{sender_part}_{invoice_token(subject)}_{date_part}.{extension}"
    except (AttributeError, TypeError, ValueError) as exc:
        logger.error("Failed to generate structured filename for %s: %s", original_filename, exc)
        return f"{today_iso()}_{original_filename}"

    logger.debug("Generated filename: %s -> %s", original_filename, name)
    return name
