"""Outlook mailbox access: candidate search, message details, attachment bytes, processed marker."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from .graph_client import GraphClient
from .models import AttachmentDescriptor, EmailDetails, SearchQuery
from .utils import parse_graph_datetime

logger = logging.getLogger(__name__)

FILE_ATTACHMENT_TYPE = "#microsoft.graph.fileAttachment"


def build_search_expression(query: SearchQuery) -> str:
    """Translate a SearchQuery into an Outlook KQL $search expression."""
    clauses = ["hasAttachments:true"]
    if query.keywords:
        clauses.append("(" + " OR ".join(query.keywords) + ")")
    if query.senders:
        clauses.append("(" + " OR ".join(f"from:{sender}" for sender in query.senders) + ")")
    if query.received_since:
        clauses.append(f"received>={query.received_since.date().isoformat()}")
    return " AND ".join(clauses)


class OutlookMailSource:
    """Mailbox side of the pipeline, backed by the signed-in user's Outlook."""

    MESSAGES_ROOT = "/me/messages"
    # Default Graph ids change when a message moves folders; the dedup set needs stable ones.
    ID_HEADERS = {"Prefer": 'IdType="ImmutableId"'}

    def __init__(self, graph: GraphClient, marker: str, page_size: int = 25) -> None:
        self.graph = graph
        self.marker = marker
        self.page_size = page_size

    def search(self, query: SearchQuery) -> list[str]:
        params = {
            "$search": f'"{build_search_expression(query)}"',
            "$select": "id,categories",
            "$top": self.page_size,
        }
        message_ids: list[str] = []
        for raw in self.graph.iter_values(self.MESSAGES_ROOT, params=params, headers=self.ID_HEADERS):
            # $search cannot negate categories, so the marker is excluded here.
            if query.exclude_marker and query.exclude_marker in (raw.get("categories") or []):
                continue
            message_ids.append(raw["id"])
            if len(message_ids) >= query.max_results:
                break

        logger.info("Found %s emails matching criteria", len(message_ids))
        return message_ids

    def fetch_details(self, message_id: str) -> Optional[EmailDetails]:
        raw = self.graph.get_json(
            f"{self.MESSAGES_ROOT}/{quote(message_id)}",
            params={"$select": "id,internetMessageId,subject,from,receivedDateTime"},
            missing_ok=True,
            headers=self.ID_HEADERS,
        )
        if not raw:
            return None

        sender = (raw.get("from") or {}).get("emailAddress") or {}
        received = raw.get("receivedDateTime")
        details = EmailDetails(
            message_id=raw.get("id", message_id),
            subject=raw.get("subject") or "",
            sender=sender.get("address", ""),
            date=parse_graph_datetime(received) if received else None,
            attachments=self._list_file_attachments(message_id),
            internet_message_id=raw.get("internetMessageId"),
        )
        logger.info("Retrieved details for email: %s", details.subject)
        return details

    def fetch_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Download attachment bytes."""
        response = self.graph.get(
            f"{self.MESSAGES_ROOT}/{quote(message_id)}/attachments/{quote(attachment_id)}/$value",
            headers=self.ID_HEADERS,
        )
        content = response.content
        logger.debug("Downloaded attachment %s (%s bytes)", attachment_id, len(content))
        return content

    def apply_processed_marker(self, message_id: str) -> None:
        self._ensure_category(self.marker)

        path = f"{self.MESSAGES_ROOT}/{quote(message_id)}"
        raw = self.graph.get_json(path, params={"$select": "categories"}, headers=self.ID_HEADERS)
        categories = list(raw.get("categories") or [])
        if self.marker in categories:
            return
        self.graph.patch_json(
            path, {"categories": categories + [self.marker]}, headers=self.ID_HEADERS
        )
        logger.info("Applied processed marker to email %s", message_id)

    def _ensure_category(self, name: str) -> None:
        existing = self.graph.iter_values("/me/outlook/masterCategories")
        if any(category.get("displayName") == name for category in existing):
            return
        self.graph.post_json(
            "/me/outlook/masterCategories", {"displayName": name, "color": "preset4"}
        )
        logger.info("Created category: %s", name)

    def _list_file_attachments(self, message_id: str) -> list[AttachmentDescriptor]:
        params = {"$select": "id,name,contentType,size,isInline"}
        attachments: list[AttachmentDescriptor] = []
        for raw in self.graph.iter_values(
            f"{self.MESSAGES_ROOT}/{quote(message_id)}/attachments",
            params=params,
            headers=self.ID_HEADERS,
        ):
            if raw.get("@odata.type") != FILE_ATTACHMENT_TYPE or raw.get("isInline"):
                continue
            attachments.append(
                AttachmentDescriptor(
                    filename=raw.get("name", ""),
                    attachment_id=raw["id"],
                    mime_type=raw.get("contentType") or "application/octet-stream",
                    size=raw.get("size") or 0,
                )
            )
        return attachments
