"""Credential storage for connected sources."""

from __future__ import annotations

from typing import Protocol

import orjson

from knowledge_hub.db.sqlite import SQLiteDatabase
from knowledge_hub.sources.base import Credentials


class CredentialStore(Protocol):
    def encrypt(self, tenant_id: str, source_id: str, credentials: Credentials) -> None: ...

    def decrypt(self, tenant_id: str, source_id: str) -> Credentials: ...


class DatabaseCredentialStore:
    """Keeps the opaque credential JSON on the source row.

    Encryption at rest belongs to the deployment's secret manager; this store
    only scopes reads and writes by tenant.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def encrypt(self, tenant_id: str, source_id: str, credentials: Credentials) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE sources SET credentials_json = ? WHERE id = ? AND tenant_id = ?",
                [orjson.dumps(credentials).decode("utf-8"), source_id, tenant_id],
            )
            if cursor.rowcount == 0:
                raise KeyError(f"source {source_id} not found for tenant {tenant_id}")

    def decrypt(self, tenant_id: str, source_id: str) -> Credentials:
        row = self.db.execute(
            "SELECT credentials_json FROM sources WHERE id = ? AND tenant_id = ?",
            [source_id, tenant_id],
        ).fetchone()
        if row is None:
            raise KeyError(f"source {source_id} not found for tenant {tenant_id}")
        if not row["credentials_json"]:
            return {}
        return orjson.loads(row["credentials_json"])


__all__ = ["CredentialStore", "DatabaseCredentialStore"]
