"""Chunk persistence helpers and the embed-then-upsert indexing loop."""

from __future__ import annotations

from typing import Sequence

from knowledge_hub.core.errors import EmbeddingBatchError, VectorStoreError
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.core.metrics import CHUNKS_INDEXED, VECTOR_STORE_ERRORS
from knowledge_hub.ingest.chunker import TextWindow, estimate_tokens
from knowledge_hub.ingest.embeddings import Embedder
from knowledge_hub.models.entities import Chunk, Document, SourceRecord, VectorMetadata, VectorRecord
from knowledge_hub.pipeline.cancellation import UnitContext
from knowledge_hub.pipeline.result import StageStats
from knowledge_hub.retrieval.vector_store import VectorStore
from knowledge_hub.storage.base import ChunkRepository, DocumentRepository
from knowledge_hub.utils.ids import new_chunk_ids

logger = get_logger(__name__)


def build_chunks(document: Document, windows: Sequence[TextWindow], source: SourceRecord | None = None) -> list[Chunk]:
    """Turn windows into chunk rows carrying the source's visibility tags."""
    scope = source.scope if source is not None else "organization"
    workspace = source.workspace_label if source is not None else None
    ids = new_chunk_ids(len(windows))
    return [
        Chunk(
            id=chunk_id,
            document_id=document.id,
            tenant_id=document.tenant_id,
            ordinal=ordinal,
            text=window.text,
            char_start=window.char_start,
            char_end=window.char_end,
            token_count=estimate_tokens(window.text),
            visibility_scope=scope,
            workspace_label=workspace,
        )
        for ordinal, (chunk_id, window) in enumerate(zip(ids, windows))
    ]


def reassemble_text(chunks: Sequence[Chunk]) -> str:
    """Rebuild document text from ordered chunks, dropping the overlapping prefixes."""
    parts: list[str] = []
    covered = 0
    for chunk in sorted(chunks, key=lambda item: item.ordinal):
        if parts and chunk.char_end <= covered:
            continue
        offset = max(0, covered - chunk.char_start) if parts else 0
        parts.append(chunk.text[offset:])
        covered = chunk.char_end
    return "".join(parts)


class ChunkIndexer:
    """Embeds chunks batch by batch and writes their vectors.

    Cancellation and the unit deadline are checked before every batch, so a
    cancel observed after batch N leaves batches 1..N indexed and nothing
    after. Embedding and vector store failures are counted, never raised.
    """

    def __init__(
        self,
        chunks: ChunkRepository,
        documents: DocumentRepository,
        embedder: Embedder,
        vector_store: VectorStore,
        batch_size: int = 100,
    ) -> None:
        self.chunks = chunks
        self.documents = documents
        self.embedder = embedder
        self.vector_store = vector_store
        self.batch_size = batch_size

    def index(self, chunk_ids: Sequence[str], tenant_id: str, unit: UnitContext) -> StageStats:
        stats = StageStats()
        ids = list(chunk_ids)
        source_ids: dict[str, str | None] = {}
        for batch_number, offset in enumerate(range(0, len(ids), self.batch_size), start=1):
            if unit.token.cancelled:
                stats.cancelled = True
                logger.info(
                    "Cancellation observed, stopping indexing",
                    extra=log_context(tenant_id=tenant_id, batch=batch_number, indexed=stats.indexed),
                )
                break
            unit.check_deadline()

            batch = self.chunks.get_many(ids[offset : offset + self.batch_size], tenant_id)
            if not batch:
                continue
            try:
                vectors = self.embedder.embed_batch([chunk.text for chunk in batch], tenant=tenant_id)
            except EmbeddingBatchError as exc:
                stats.embedding_errors += 1
                stats.add_error(f"batch {batch_number}", "embed", exc)
                logger.error(
                    "Embedding batch failed, chunks left unindexed",
                    extra=log_context(tenant_id=tenant_id, batch=batch_number, chunks=len(batch), error=str(exc)),
                )
                continue

            records = [
                VectorRecord(
                    id=chunk.id,
                    values=vector,
                    metadata=VectorMetadata(
                        tenant_id=tenant_id,
                        document_id=chunk.document_id,
                        chunk_id=chunk.id,
                        source_id=self._source_id(chunk.document_id, source_ids),
                        visibility_scope=chunk.visibility_scope,
                        workspace_label=chunk.workspace_label,
                        char_start=chunk.char_start,
                        char_end=chunk.char_end,
                    ),
                )
                for chunk, vector in zip(batch, vectors)
            ]
            try:
                self.vector_store.upsert(records, tenant_id)
            except VectorStoreError as exc:
                stats.vector_errors += 1
                VECTOR_STORE_ERRORS.labels(operation="upsert").inc()
                logger.error(
                    "Vector upsert failed",
                    extra=log_context(tenant_id=tenant_id, batch=batch_number, error=str(exc)),
                )
                continue
            stats.indexed += len(records)
            CHUNKS_INDEXED.inc(len(records))
        return stats

    def discard(self, document: Document) -> StageStats:
        """Remove a document's chunks: vectors first, then rows."""
        stats = StageStats()
        chunk_ids = self.chunks.ids_for_document(document.id)
        if not chunk_ids:
            return stats
        try:
            self.vector_store.delete(chunk_ids, document.tenant_id)
        except VectorStoreError as exc:
            stats.vector_errors += 1
            VECTOR_STORE_ERRORS.labels(operation="delete").inc()
            logger.error(
                "Vector delete failed for replaced chunks",
                extra=log_context(tenant_id=document.tenant_id, document_id=document.id, error=str(exc)),
            )
        self.chunks.delete(chunk_ids)
        return stats

    def _source_id(self, document_id: str, cache: dict[str, str | None]) -> str | None:
        if document_id not in cache:
            document = self.documents.get(document_id)
            cache[document_id] = document.source_id if document is not None else None
        return cache[document_id]


__all__ = ["ChunkIndexer", "build_chunks", "reassemble_text"]
