"""OneDrive uploader for archived documents."""

from __future__ import annotations

import logging
from urllib.parse import quote

from .graph_client import GraphClient
from .models import ArchivedFile

logger = logging.getLogger(__name__)


class OneDriveArchive:
    """Keep documents in a single OneDrive folder."""

    def __init__(self, graph: GraphClient) -> None:
        self.graph = graph

    def ensure_container(self, name: str) -> str:
        existing = self.graph.get_json(f"/me/drive/root:/{quote(name)}", missing_ok=True)
        if existing:
            if "folder" not in existing:
                raise RuntimeError(f"OneDrive item '{name}' exists but is not a folder")
            logger.info("Found existing folder: %s (%s)", name, existing["id"])
            return existing["id"]

        created = self.graph.post_json(
            "/me/drive/root/children",
            {"name": name, "folder": {}, "@microsoft.graph.conflictBehavior": "fail"},
        )
        folder_id = created.get("id")
        if not folder_id:
            raise RuntimeError(f"OneDrive did not return a folder id for {name}")
        logger.info("Created new folder: %s (%s)", name, folder_id)
        return folder_id

    def store(self, content: bytes, filename: str, mime_type: str, container_id: str) -> ArchivedFile:
        logger.info("Uploading '%s' to OneDrive", filename)
        payload = self.graph.put_content(
            f"/me/drive/items/{container_id}:/{quote(filename)}:/content",
            content,
            mime_type or "application/octet-stream",
            params={"@microsoft.graph.conflictBehavior": "rename"},
        )
        file_id = payload.get("id")
        if not file_id:
            raise RuntimeError(f"OneDrive did not return a file id for {filename}")
        return ArchivedFile(file_id=file_id, web_url=payload.get("webUrl", ""))
