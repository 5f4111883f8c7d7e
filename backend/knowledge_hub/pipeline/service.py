"""Entry points callers use to start and steer pipeline work."""

from __future__ import annotations

from knowledge_hub.core.errors import JobNotFound
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.models.entities import IngestJob
from knowledge_hub.pipeline.context import PipelineContext
from knowledge_hub.pipeline.messages import (
    CleanupVectorsMessage,
    IngestSourceMessage,
    ReindexDocumentMessage,
)

logger = get_logger(__name__)


class IngestService:
    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def sync_source(self, source_id: str, tenant_id: str) -> IngestJob:
        """Queue an ingest run; returns the job as it stands after dispatch."""
        source = self.context.sources.get(source_id)
        if source is None or source.tenant_id != tenant_id:
            raise KeyError(f"source {source_id} not found for tenant {tenant_id}")
        job = self.context.tracker.create(source_id, tenant_id)
        self.context.dispatch(IngestSourceMessage(source_id=source_id, tenant_id=tenant_id, job_id=job.id))
        return self.context.tracker.get(job.id)

    def get_job(self, job_id: str, tenant_id: str | None = None) -> IngestJob:
        job = self.context.tracker.get(job_id)
        if tenant_id is not None and job.tenant_id != tenant_id:
            raise JobNotFound(job_id)
        return job

    def cancel_job(self, job_id: str, tenant_id: str | None = None) -> IngestJob:
        self.get_job(job_id, tenant_id)
        return self.context.tracker.cancel(job_id)

    def reindex(self, document_id: str, tenant_id: str) -> None:
        document = self.context.documents.get(document_id)
        if document is None or document.tenant_id != tenant_id:
            raise KeyError(f"document {document_id} not found for tenant {tenant_id}")
        logger.info("Reindex requested", extra=log_context(document_id=document_id, tenant_id=tenant_id))
        self.context.dispatch(ReindexDocumentMessage(document_id=document_id, tenant_id=tenant_id))

    def cleanup_vectors(self, chunk_ids: list[str], tenant_id: str) -> None:
        if chunk_ids:
            self.context.dispatch(CleanupVectorsMessage(chunk_ids=tuple(chunk_ids), tenant_id=tenant_id))


__all__ = ["IngestService"]
