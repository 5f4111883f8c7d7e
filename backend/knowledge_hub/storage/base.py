"""Storage-agnostic repository interfaces used by the pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from knowledge_hub.models.entities import Chunk, Document, IngestJob, SourceRecord


@dataclass(slots=True, frozen=True)
class OrphanChunkRow:
    chunk_id: str
    document_id: str
    tenant_id: str


class SourceCatalog(ABC):
    @abstractmethod
    def get(self, source_id: str) -> SourceRecord | None: ...

    @abstractmethod
    def list(self, tenant_id: str | None = None) -> list[SourceRecord]: ...

    @abstractmethod
    def add(self, source: SourceRecord) -> SourceRecord: ...

    @abstractmethod
    def remove(self, source_id: str) -> bool: ...

    @abstractmethod
    def mark_synced(self, source_id: str, synced_at: int) -> None: ...

    def exists(self, source_id: str) -> bool:
        return self.get(source_id) is not None


class DocumentRepository(ABC):
    @abstractmethod
    def get(self, document_id: str) -> Document | None: ...

    @abstractmethod
    def find_by_identity(self, tenant_id: str, source_id: str | None, external_id: str) -> Document | None: ...

    @abstractmethod
    def save(self, document: Document) -> Document: ...

    @abstractmethod
    def delete(self, document_ids: Sequence[str]) -> int: ...

    @abstractmethod
    def orphaned(self, tenant_id: str | None = None) -> list[Document]:
        """Documents whose parent source no longer exists in the catalog."""

    @abstractmethod
    def chunk_count(self, document_id: str) -> int: ...


class ChunkRepository(ABC):
    @abstractmethod
    def insert_many(self, chunks: Sequence[Chunk]) -> None: ...

    @abstractmethod
    def get_many(self, chunk_ids: Sequence[str], tenant_id: str) -> list[Chunk]:
        """Chunks by id within the tenant, ordered by document and ordinal, embeddings attached."""

    @abstractmethod
    def for_document(self, document_id: str) -> list[Chunk]: ...

    @abstractmethod
    def ids_for_document(self, document_id: str) -> list[str]: ...

    @abstractmethod
    def delete(self, chunk_ids: Sequence[str]) -> int: ...

    @abstractmethod
    def existing_ids(self, chunk_ids: Sequence[str]) -> set[str]: ...

    @abstractmethod
    def orphaned(self, tenant_id: str | None = None) -> list[OrphanChunkRow]:
        """Chunks whose document's parent source no longer exists."""


class JobRepository(ABC):
    @abstractmethod
    def create(self, job: IngestJob) -> IngestJob: ...

    @abstractmethod
    def get(self, job_id: str) -> IngestJob | None: ...

    @abstractmethod
    def compare_and_swap(self, job: IngestJob, expected_version: int) -> bool:
        """Persist ``job`` only if the stored version still equals ``expected_version``."""

    @abstractmethod
    def list_for_source(self, tenant_id: str, source_id: str, limit: int = 20) -> list[IngestJob]: ...


__all__ = [
    "OrphanChunkRow",
    "SourceCatalog",
    "DocumentRepository",
    "ChunkRepository",
    "JobRepository",
]
