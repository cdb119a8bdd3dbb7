"""Authenticated Microsoft Graph transport shared by the mailbox, drive and workbook adapters."""

from __future__ import annotations

import logging
from typing import Any, Iterator, Optional

import requests
from requests import Response
from requests.adapters import HTTPAdapter, Retry

from .credentials import CredentialManager

logger = logging.getLogger(__name__)


def _make_session() -> requests.Session:
    session = requests.Session()
    # Uploads use conflictBehavior=rename and POST creates folders, so neither is replayed.
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET", "PATCH"]),
        respect_retry_after_header=True,
    )
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class GraphClient:
    """Thin wrapper that signs every Graph request with a currently valid token."""

    GRAPH_BASE = "https://graph.microsoft.com/v1.0"
    TIMEOUT = 30
    UPLOAD_TIMEOUT = 60

    def __init__(self, credentials: CredentialManager, session: requests.Session | None = None) -> None:
        self.credentials = credentials
        self.session = session or _make_session()

    def get(
        self,
        path: str,
        params: dict | None = None,
        *,
        missing_ok: bool = False,
        headers: dict | None = None,
    ) -> Optional[Response]:
        return self.request("GET", path, params=params, missing_ok=missing_ok, headers=headers)

    def get_json(
        self,
        path: str,
        params: dict | None = None,
        *,
        missing_ok: bool = False,
        headers: dict | None = None,
    ) -> Optional[dict]:
        response = self.get(path, params=params, missing_ok=missing_ok, headers=headers)
        if response is None:
            return None
        return response.json()

    def post_json(self, path: str, body: dict[str, Any], *, headers: dict | None = None) -> dict:
        return self.request("POST", path, json=body, headers=headers).json()

    def patch_json(self, path: str, body: dict[str, Any], *, headers: dict | None = None) -> dict:
        return self.request("PATCH", path, json=body, headers=headers).json()

    def put_content(self, path: str, content: bytes, content_type: str, params: dict | None = None) -> dict:
        response = self.request(
            "PUT",
            path,
            params=params,
            data=content,
            headers={"Content-Type": content_type},
            timeout=self.UPLOAD_TIMEOUT,
        )
        return response.json()

    def iter_values(
        self, path: str, params: dict | None = None, *, headers: dict | None = None
    ) -> Iterator[dict]:
        """Yield items of a collection, following @odata.nextLink pages."""
        url: str | None = path
        while url:
            logger.debug("Fetching Graph page %s", url)
            payload = self.get_json(url, params=params, headers=headers)
            yield from payload.get("value", [])
            url = payload.get("@odata.nextLink")
            params = None  # only pass params to the first call

    def request(
        self,
        method: str,
        path: str,
        *,
        missing_ok: bool = False,
        headers: dict | None = None,
        timeout: int | None = None,
        **kwargs,
    ) -> Optional[Response]:
        url = path if path.startswith("https://") else f"{self.GRAPH_BASE}{path}"
        credential = self.credentials.get_valid()
        request_headers = {"Authorization": f"Bearer {credential.access_token}"}
        if headers:
            request_headers.update(headers)

        resp = self.session.request(
            method, url, headers=request_headers, timeout=timeout or self.TIMEOUT, **kwargs
        )
        if missing_ok and resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            logger.error("Graph request failed (%s): %s", resp.status_code, resp.text)
            resp.raise_for_status()
        return resp
