"""Orphan detection and cleanup.

Chunks are orphaned when their document's source has been removed from the
catalog. Vectors are always deleted before rows, so an interrupted sweep can
leave rows without vectors but never vectors pointing at missing rows.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from knowledge_hub.core.errors import VectorStoreError
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.core.metrics import VECTOR_STORE_ERRORS
from knowledge_hub.retrieval.vector_store import VectorStore
from knowledge_hub.storage.base import ChunkRepository, DocumentRepository

logger = get_logger(__name__)


@dataclass(slots=True)
class OrphanGroup:
    document_id: str
    tenant_id: str
    chunk_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class OrphanReport:
    groups: list[OrphanGroup] = field(default_factory=list)
    document_ids: list[str] = field(default_factory=list)

    @property
    def chunk_ids(self) -> list[str]:
        return [chunk_id for group in self.groups for chunk_id in group.chunk_ids]

    @property
    def chunk_count(self) -> int:
        return sum(len(group.chunk_ids) for group in self.groups)

    def by_document(self) -> dict[str, list[str]]:
        return {group.document_id: list(group.chunk_ids) for group in self.groups}

    def by_tenant(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = defaultdict(list)
        for group in self.groups:
            grouped[group.tenant_id].extend(group.chunk_ids)
        return dict(grouped)


@dataclass(slots=True)
class ReconcileResult:
    deleted_chunks: int
    deleted_documents: int
    deleted_vectors: int
    dry_run: bool
    report: OrphanReport


@dataclass(slots=True)
class StaleVectorResult:
    found: list[tuple[str, str]]
    deleted: int
    dry_run: bool


class OrphanSweeper:
    def __init__(self, documents: DocumentRepository, chunks: ChunkRepository, vector_store: VectorStore) -> None:
        self.documents = documents
        self.chunks = chunks
        self.vector_store = vector_store

    def find_orphans(self, tenant: str | None = None) -> OrphanReport:
        """Group orphaned chunk ids by document; read only."""
        groups: dict[str, OrphanGroup] = {}
        for row in self.chunks.orphaned(tenant):
            group = groups.get(row.document_id)
            if group is None:
                group = groups[row.document_id] = OrphanGroup(document_id=row.document_id, tenant_id=row.tenant_id)
            group.chunk_ids.append(row.chunk_id)
        report = OrphanReport(
            groups=list(groups.values()),
            document_ids=[document.id for document in self.documents.orphaned(tenant)],
        )
        logger.info(
            "Orphan scan finished",
            extra=log_context(tenant_id=tenant, documents=len(report.document_ids), chunks=report.chunk_count),
        )
        return report

    def reconcile(self, dry_run: bool = True, tenant: str | None = None, delete_documents: bool = True) -> ReconcileResult:
        """Delete orphaned vectors, then chunk rows, then optionally documents.

        A vector delete failure is logged and re-raised before any row is
        touched. ``dry_run`` only reports.
        """
        report = self.find_orphans(tenant)
        if dry_run:
            return ReconcileResult(
                deleted_chunks=0, deleted_documents=0, deleted_vectors=0, dry_run=True, report=report
            )

        deleted_vectors = 0
        for tenant_id, chunk_ids in report.by_tenant().items():
            try:
                deleted_vectors += self.vector_store.delete(chunk_ids, tenant_id)
            except VectorStoreError as exc:
                VECTOR_STORE_ERRORS.labels(operation="delete").inc()
                logger.error(
                    "Orphan vector delete failed, leaving rows in place",
                    extra=log_context(tenant_id=tenant_id, chunks=len(chunk_ids), error=str(exc)),
                )
                raise

        deleted_chunks = self.chunks.delete(report.chunk_ids)
        deleted_documents = self.documents.delete(report.document_ids) if delete_documents else 0
        logger.info(
            "Orphans reconciled",
            extra=log_context(
                tenant_id=tenant,
                deleted_vectors=deleted_vectors,
                deleted_chunks=deleted_chunks,
                deleted_documents=deleted_documents,
            ),
        )
        return ReconcileResult(
            deleted_chunks=deleted_chunks,
            deleted_documents=deleted_documents,
            deleted_vectors=deleted_vectors,
            dry_run=False,
            report=report,
        )

    def find_stale_vectors(self, tenant: str | None = None) -> list[tuple[str, str]]:
        """``(tenant_id, vector_id)`` pairs whose chunk row no longer exists."""
        pairs = self.vector_store.ids(tenant)
        existing = self.chunks.existing_ids([vector_id for _, vector_id in pairs])
        return [(tenant_id, vector_id) for tenant_id, vector_id in pairs if vector_id not in existing]

    def purge_stale_vectors(self, dry_run: bool = True, tenant: str | None = None) -> StaleVectorResult:
        stale = self.find_stale_vectors(tenant)
        if dry_run or not stale:
            return StaleVectorResult(found=stale, deleted=0, dry_run=dry_run)
        by_tenant: dict[str, list[str]] = defaultdict(list)
        for tenant_id, vector_id in stale:
            by_tenant[tenant_id].append(vector_id)
        deleted = 0
        for tenant_id, vector_ids in by_tenant.items():
            deleted += self.vector_store.delete(vector_ids, tenant_id)
        logger.info("Stale vectors purged", extra=log_context(tenant_id=tenant, deleted=deleted))
        return StaleVectorResult(found=stale, deleted=deleted, dry_run=False)


__all__ = ["OrphanGroup", "OrphanReport", "ReconcileResult", "StaleVectorResult", "OrphanSweeper"]
