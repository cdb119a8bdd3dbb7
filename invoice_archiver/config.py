"""Configuration management for the Outlook invoice archiver."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

DEFAULT_DOCUMENT_EXTENSIONS = "pdf;doc;docx;png;jpg;jpeg;gif;tiff"


def _split_list(value: str | Sequence[str] | None, coerce_lower: bool = True) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;,]", value)
    else:
        items = list(value)
    cleaned: list[str] = []
    for item in items:
        trimmed = item.strip()
        if not trimmed:
            continue
        cleaned.append(trimmed.lower() if coerce_lower else trimmed)
    return cleaned


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    graph_client_id: str = Field(..., alias="GRAPH_CLIENT_ID")
    graph_tenant_id: str | None = Field(None, alias="GRAPH_TENANT_ID")
    graph_authority: str | None = Field(None, alias="GRAPH_AUTHORITY")
    graph_scopes_raw: str = Field(
        "Mail.ReadWrite;MailboxSettings.ReadWrite;Files.ReadWrite", alias="GRAPH_SCOPES"
    )
    graph_page_size: int = Field(25, alias="GRAPH_PAGE_SIZE")

    search_keywords_raw: str = Field("invoice;receipt;bill", alias="SEARCH_KEYWORDS")
    search_max_results: int = Field(50, alias="SEARCH_MAX_RESULTS")
    processed_marker: str = Field("processed-financial-docs", alias="PROCESSED_MARKER")
    document_extensions_raw: str = Field(DEFAULT_DOCUMENT_EXTENSIONS, alias="DOCUMENT_EXTENSIONS")

    archive_folder_name: str = Field("Financial Documents", alias="ARCHIVE_FOLDER_NAME")
    ledger_name: str = Field("Financial Documents Log", alias="LEDGER_NAME")
    ledger_sheet_name: str = Field("Financial Documents", alias="LEDGER_SHEET_NAME")

    archiver_db: Path = Field(Path("data/invoice_archiver.db"), alias="ARCHIVER_DB")
    credential_principal: str = Field("default_user", alias="CREDENTIAL_PRINCIPAL")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("graph_tenant_id", "graph_authority", mode="before")
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("processed_marker", "archive_folder_name", "ledger_name", "ledger_sheet_name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @property
    def authority_url(self) -> str:
        if self.graph_authority:
            return self.graph_authority.rstrip("/")
        if self.graph_tenant_id:
            return f"https://login.microsoftonline.com/{self.graph_tenant_id}"
        return "https://login.microsoftonline.com/common"

    @property
    def graph_scopes(self) -> list[str]:
        """Scopes requested for delegated Graph auth."""
        scopes = _split_list(self.graph_scopes_raw, coerce_lower=False)
        return scopes or ["Mail.ReadWrite"]

    @property
    def search_keywords(self) -> list[str]:
        keywords = _split_list(self.search_keywords_raw, coerce_lower=True)
        return keywords or ["invoice", "receipt", "bill"]

    @property
    def document_extensions(self) -> frozenset[str]:
        extensions = _split_list(self.document_extensions_raw, coerce_lower=True)
        if not extensions:
            extensions = _split_list(DEFAULT_DOCUMENT_EXTENSIONS)
        return frozenset(ext.lstrip(".") for ext in extensions)
