"""Query orchestration: embed the question, rank vectors, hydrate chunks."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Sequence

from knowledge_hub.core.config import Settings
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from knowledge_hub.db.sqlite import SQLiteDatabase, placeholders
from knowledge_hub.ingest.embeddings import Embedder
from knowledge_hub.models.entities import VectorMatch
from knowledge_hub.retrieval.vector_store import VectorStore

logger = get_logger(__name__)

# extra candidates fetched so post-filters still fill top_k
_FILTER_OVERSAMPLE = 4


@dataclass(slots=True)
class Candidate:
    chunk_id: str
    document_id: str
    source_id: str | None
    external_id: str | None
    title: str | None
    text: str
    char_start: int
    char_end: int
    visibility_scope: str
    workspace_label: str | None
    score: float


class QueryService:
    """Tenant-scoped dense retrieval over the vector store."""

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        vector_store: VectorStore,
        embedder: Embedder,
    ) -> None:
        self.db = db
        self.settings = settings
        self.vector_store = vector_store
        self.embedder = embedder

    def query(
        self,
        query_text: str,
        tenant: str,
        k: int | None = None,
        filters: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        start_time = time.perf_counter()
        top_k = k or self.settings.query_top_k
        fetch_k = top_k * _FILTER_OVERSAMPLE if filters else top_k
        vector = self.embedder.embed(query_text, tenant=tenant)
        matches = self.vector_store.query(vector, top_k=fetch_k, tenant=tenant)
        candidates = self._apply_filters(self._hydrate(matches, tenant), filters)[:top_k]
        results = [self._build_result(candidate, rank) for rank, candidate in enumerate(candidates)]

        duration = time.perf_counter() - start_time
        REQUEST_LATENCY.labels(endpoint="query", method="POST").observe(duration)
        REQUEST_COUNT.labels(endpoint="query", method="POST", status="200").inc()
        logger.info(
            "Query served",
            extra=log_context(tenant_id=tenant, k=top_k, matches=len(matches), results=len(results)),
        )
        return {"query": query_text, "tenant_id": tenant, "results": results}

    def _hydrate(self, matches: Sequence[VectorMatch], tenant: str) -> list[Candidate]:
        if not matches:
            return []
        ids = [match.id for match in matches]
        rows = self.db.query(
            f"""
            SELECT
              chunks.id AS chunk_id,
              chunks.document_id,
              chunks.text,
              chunks.char_start,
              chunks.char_end,
              chunks.visibility_scope,
              chunks.workspace_label,
              documents.source_id,
              documents.external_id,
              documents.title
            FROM chunks
            JOIN documents ON documents.id = chunks.document_id
            WHERE chunks.tenant_id = ? AND chunks.id IN ({placeholders(ids)})
            """,
            [tenant, *ids],
        )
        row_map = {row["chunk_id"]: row for row in rows}
        candidates: list[Candidate] = []
        for match in matches:
            row = row_map.get(match.id)
            if row is None:
                # vector outlived its chunk; the stale-vector purge removes it
                continue
            candidates.append(
                Candidate(
                    chunk_id=match.id,
                    document_id=row["document_id"],
                    source_id=row["source_id"],
                    external_id=row["external_id"],
                    title=row["title"],
                    text=row["text"],
                    char_start=row["char_start"],
                    char_end=row["char_end"],
                    visibility_scope=row["visibility_scope"],
                    workspace_label=row["workspace_label"],
                    score=match.score,
                )
            )
        return candidates

    def _apply_filters(self, candidates: list[Candidate], filters: dict[str, Any] | None) -> list[Candidate]:
        if not filters:
            return candidates
        filtered = candidates
        source_ids = filters.get("source_ids")
        if source_ids:
            filtered = [item for item in filtered if item.source_id in source_ids]
        document_ids = filters.get("document_ids")
        if document_ids:
            filtered = [item for item in filtered if item.document_id in document_ids]
        workspace_label = filters.get("workspace_label")
        if workspace_label:
            filtered = [item for item in filtered if item.workspace_label == workspace_label]
        visibility_scope = filters.get("visibility_scope")
        if visibility_scope:
            filtered = [item for item in filtered if item.visibility_scope == visibility_scope]
        return filtered

    def _build_result(self, candidate: Candidate, rank: int) -> dict[str, Any]:
        return {
            "chunk_id": candidate.chunk_id,
            "document_id": candidate.document_id,
            "score": candidate.score,
            "text": candidate.text,
            "char_start": candidate.char_start,
            "char_end": candidate.char_end,
            "provenance": {
                "rank": rank,
                "source_id": candidate.source_id,
                "external_id": candidate.external_id,
                "title": candidate.title,
                "visibility_scope": candidate.visibility_scope,
                "workspace_label": candidate.workspace_label,
            },
        }


__all__ = ["QueryService"]
