"""Tenant-scoped vector store backed by SQLite blobs.

Similarity search is a linear scan over the tenant's rows. ``_scan`` is the
only place that chooses candidate rows; an indexed implementation narrows
candidates there and keeps the public contract unchanged.
"""

from __future__ import annotations

import math
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Iterator, Sequence

import orjson

from knowledge_hub.core.errors import VectorStoreError
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.db.sqlite import SQLiteDatabase, placeholders
from knowledge_hub.ingest.embeddings import pack_vector, unpack_vector
from knowledge_hub.models.entities import VectorMatch, VectorMetadata, VectorRecord
from knowledge_hub.utils.time import now_ms

logger = get_logger(__name__)

FLOAT32_BYTES = 4


class VectorStore(ABC):
    """Contract shared by every vector store implementation."""

    @abstractmethod
    def upsert(self, records: Sequence[VectorRecord], tenant: str) -> int: ...

    @abstractmethod
    def query(self, vector: Sequence[float], top_k: int, tenant: str) -> list[VectorMatch]: ...

    @abstractmethod
    def delete(self, ids: Sequence[str], tenant: str) -> int: ...

    @abstractmethod
    def ids(self, tenant: str | None = None) -> list[tuple[str, str]]: ...


class SQLiteVectorStore(VectorStore):
    """Cosine similarity search over packed float32 blobs."""

    def __init__(self, db: SQLiteDatabase, dimensions: int) -> None:
        self.db = db
        self.dimensions = dimensions

    def upsert(self, records: Sequence[VectorRecord], tenant: str) -> int:
        """Insert or replace vectors by id; later records in the batch count as newer."""
        if not records:
            return 0
        rows = []
        now = now_ms()
        for record in records:
            if len(record.values) != self.dimensions:
                raise VectorStoreError(
                    f"vector {record.id} has {len(record.values)} dimensions, expected {self.dimensions}"
                )
            rows.append(
                (
                    tenant,
                    record.id,
                    self.dimensions,
                    pack_vector(record.values),
                    orjson.dumps(replace(record.metadata, tenant_id=tenant).to_dict()).decode("utf-8"),
                    now,
                )
            )
        try:
            with self.db.transaction() as cursor:
                cursor.executemany(
                    """
                    INSERT OR REPLACE INTO vectors (tenant_id, vector_id, dim, embedding, metadata_json, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise VectorStoreError(f"upsert failed: {exc}") from exc
        logger.debug("Vectors stored", extra=log_context(tenant_id=tenant, count=len(rows)))
        return len(rows)

    def query(self, vector: Sequence[float], top_k: int, tenant: str) -> list[VectorMatch]:
        """Return up to ``top_k`` matches by descending cosine score, newest first on ties."""
        if len(vector) != self.dimensions:
            raise ValueError(f"query vector has {len(vector)} dimensions, expected {self.dimensions}")
        if top_k <= 0:
            return []
        query_values = [float(value) for value in vector]
        query_norm = _norm(query_values)
        scored: list[tuple[float, int, sqlite3.Row]] = []
        skipped = 0
        try:
            for row in self._scan(tenant):
                blob = row["embedding"]
                if len(blob) != self.dimensions * FLOAT32_BYTES:
                    skipped += 1
                    continue
                score = cosine_similarity(query_values, unpack_vector(blob), query_norm)
                scored.append((score, row["seq"], row))
        except sqlite3.Error as exc:
            raise VectorStoreError(f"query failed: {exc}") from exc
        if skipped:
            logger.warning(
                "Skipped vectors with mismatched dimensions",
                extra=log_context(tenant_id=tenant, skipped=skipped),
            )
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [
            VectorMatch(
                id=row["vector_id"],
                score=score,
                metadata=VectorMetadata.from_dict(orjson.loads(row["metadata_json"])),
            )
            for score, _, row in scored[:top_k]
        ]

    def delete(self, ids: Sequence[str], tenant: str) -> int:
        """Remove vectors by id within the tenant; unknown ids are ignored."""
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return 0
        deleted = 0
        try:
            with self.db.transaction() as cursor:
                for offset in range(0, len(unique_ids), 500):
                    batch = unique_ids[offset : offset + 500]
                    cursor.execute(
                        f"DELETE FROM vectors WHERE tenant_id = ? AND vector_id IN ({placeholders(batch)})",
                        [tenant, *batch],
                    )
                    deleted += cursor.rowcount
        except sqlite3.Error as exc:
            raise VectorStoreError(f"delete failed: {exc}") from exc
        logger.info("Vectors deleted", extra=log_context(tenant_id=tenant, requested=len(unique_ids), deleted=deleted))
        return deleted

    def get(self, vector_id: str, tenant: str) -> list[float] | None:
        row = self.db.execute(
            "SELECT embedding FROM vectors WHERE tenant_id = ? AND vector_id = ?",
            [tenant, vector_id],
        ).fetchone()
        return unpack_vector(row["embedding"]) if row else None

    def count(self, tenant: str) -> int:
        row = self.db.execute("SELECT COUNT(*) AS count FROM vectors WHERE tenant_id = ?", [tenant]).fetchone()
        return int(row["count"]) if row else 0

    def ids(self, tenant: str | None = None) -> list[tuple[str, str]]:
        """Return ``(tenant_id, vector_id)`` pairs, optionally for one tenant."""
        if tenant is None:
            rows = self.db.query("SELECT tenant_id, vector_id FROM vectors ORDER BY seq", [])
        else:
            rows = self.db.query(
                "SELECT tenant_id, vector_id FROM vectors WHERE tenant_id = ? ORDER BY seq",
                [tenant],
            )
        return [(row["tenant_id"], row["vector_id"]) for row in rows]

    def _scan(self, tenant: str) -> Iterator[sqlite3.Row]:
        cursor = self.db.execute(
            "SELECT seq, vector_id, embedding, metadata_json FROM vectors WHERE tenant_id = ?",
            [tenant],
        )
        yield from cursor


def cosine_similarity(a: Sequence[float], b: Sequence[float], norm_a: float | None = None) -> float:
    """Cosine similarity; zero-norm inputs score 0.0."""
    norm_a = _norm(a) if norm_a is None else norm_a
    norm_b = _norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)
    if math.isnan(score):
        return 0.0
    return score


def _norm(values: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in values))


__all__ = ["VectorStore", "SQLiteVectorStore", "cosine_similarity"]
