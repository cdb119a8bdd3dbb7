"""SQLite-backed store for the single Graph credential."""

from __future__ import annotations

import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import sqlite_utils

from .models import Credential


class SqliteCredentialStore:
    """Persist one credential row keyed by a fixed principal id."""

    TABLE = "credentials"

    def __init__(self, db_path: Path, principal: str = "default_user") -> None:
        self.db_path = db_path
        self.principal = principal
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Refreshes may happen on any thread; CredentialManager serialises access.
        self.db = sqlite_utils.Database(sqlite3.connect(str(db_path), check_same_thread=False))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db[self.TABLE].create(
            {
                "principal": str,
                "access_token": str,
                "refresh_token": str,
                "scope": str,
                "token_type": str,
                "expiry_epoch_ms": int,
                "created_at": str,
                "updated_at": str,
            },
            pk="principal",
            if_not_exists=True,
        )

    def load(self) -> Optional[Credential]:
        rows = list(self.db[self.TABLE].rows_where("principal = ?", [self.principal], limit=1))
        if not rows:
            return None
        row = rows[0]
        row.pop("principal")
        return Credential(**row)

    def save(self, credential: Credential) -> None:
        record = asdict(credential)
        record["principal"] = self.principal
        with self.db.conn:
            self.db[self.TABLE].upsert(record, pk="principal")

    def clear(self) -> None:
        with self.db.conn:
            self.db[self.TABLE].delete_where("principal = ?", [self.principal])
