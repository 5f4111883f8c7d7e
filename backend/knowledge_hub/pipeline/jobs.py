"""Pipeline units and the router that maps queue messages to them."""

from __future__ import annotations

import time
from typing import Any

from knowledge_hub.core.errors import (
    ConfigurationError,
    FetchError,
    SourceEnumerationError,
    VectorStoreError,
)
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.core.metrics import FILES_TOTAL, INGEST_DURATION, VECTOR_STORE_ERRORS
from knowledge_hub.ingest.chunker import paragraph_segments, split_segments, split_with_overlap
from knowledge_hub.models.entities import JobStatus, SourceRecord
from knowledge_hub.pipeline.cancellation import CancellationToken, UnitContext
from knowledge_hub.pipeline.context import PipelineContext
from knowledge_hub.pipeline.indexing import build_chunks, reassemble_text
from knowledge_hub.pipeline.messages import (
    CleanupVectorsMessage,
    CreateChunksMessage,
    EmbedChunksMessage,
    IngestSourceMessage,
    LargeFileMessage,
    Message,
    ReindexDocumentMessage,
)
from knowledge_hub.pipeline.processing import FileProcessor
from knowledge_hub.pipeline.queue import UnitHandler
from knowledge_hub.pipeline.result import Fatal, Ok, StageResult, StageStats
from knowledge_hub.utils.time import now_ms

logger = get_logger(__name__)


class SourceIngestJob:
    """Enumerates a source, processes small files inline and defers large ones."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.processor = FileProcessor(context)

    def run(self, message: IngestSourceMessage, unit: UnitContext) -> StageResult:
        context = self.context
        tracker = context.tracker
        settings = context.settings
        job_id = message.job_id
        extra = log_context(job_id=job_id, source_id=message.source_id, tenant_id=message.tenant_id)
        started = time.perf_counter()

        source = context.sources.get(message.source_id)
        if source is None or source.tenant_id != message.tenant_id:
            return self._fatal(job_id, SourceEnumerationError(f"source {message.source_id} not found"))

        job = tracker.start(job_id)
        if job.status.is_terminal:
            logger.info("Job already finished before start", extra={**extra, **log_context(status=job.status.value)})
            return Ok(StageStats(cancelled=job.status is JobStatus.CANCELLED))

        try:
            context.embedder()
        except ConfigurationError as exc:
            return self._fatal(job_id, exc)

        try:
            credentials = context.credentials.decrypt(source.tenant_id, source.id)
            handle = context.registry.open(source)
            files = handle.list_files(credentials, settings.list_page_size)
        except SourceEnumerationError as exc:
            return self._fatal(job_id, exc)
        except Exception as exc:
            return self._fatal(job_id, SourceEnumerationError(f"listing {source.uri} failed: {exc}"))

        tracker.set_progress(job_id, total_files=len(files))
        logger.info("Source enumerated", extra={**extra, **log_context(files=len(files))})

        stats = StageStats()
        for descriptor in files:
            if unit.token.cancelled:
                stats.cancelled = True
                logger.info("Cancellation observed, stopping enumeration", extra=extra)
                break
            tracker.set_progress(job_id, current_file=descriptor.name)

            if descriptor.size > settings.large_file_max_bytes:
                skipped = StageStats(skipped=1)
                FILES_TOTAL.labels(outcome="skipped").inc()
                logger.info(
                    "File exceeds size cap, skipping",
                    extra={**extra, **log_context(file=descriptor.name, size=descriptor.size)},
                )
                tracker.record(job_id, skipped)
                stats.merge(skipped)
                continue

            if descriptor.size > settings.small_file_max_bytes:
                # counted before dispatch so a fast unit cannot report first
                tracker.add_pending_large_file(job_id)
                context.dispatch(
                    LargeFileMessage(
                        source_id=source.id,
                        tenant_id=source.tenant_id,
                        job_id=job_id,
                        file=descriptor,
                        credentials=dict(credentials),
                    )
                )
                stats.deferred += 1
                FILES_TOTAL.labels(outcome="deferred").inc()
                continue

            file_stats = self.processor.process(source, handle, credentials, descriptor, unit)
            tracker.record(job_id, file_stats)
            stats.merge(file_stats)
            if file_stats.cancelled:
                break

        INGEST_DURATION.labels(source_type=source.source_type).observe(time.perf_counter() - started)
        if not stats.cancelled:
            context.sources.mark_synced(source.id, now_ms())
            tracker.finish_enumeration(job_id)
        logger.info(
            "Source pass finished",
            extra={
                **extra,
                **log_context(
                    documents=stats.documents,
                    chunks=stats.chunks,
                    deferred=stats.deferred,
                    errors=stats.error_count,
                    cancelled=stats.cancelled,
                ),
            },
        )
        return Ok(stats)

    def on_failure(self, message: IngestSourceMessage, error: BaseException) -> None:
        self.context.tracker.fail(message.job_id, error)

    def _fatal(self, job_id: str, error: Exception) -> Fatal:
        self.context.tracker.fail(job_id, error)
        return Fatal(error)


class LargeFileJob:
    """Processes one deferred file with paragraph-aware chunking."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.processor = FileProcessor(context)

    def run(self, message: LargeFileMessage, unit: UnitContext) -> StageResult:
        tracker = self.context.tracker
        if unit.token.cancelled:
            logger.info("Job cancelled, skipping large file", extra=log_context(job_id=message.job_id))
            stats = StageStats(cancelled=True)
            tracker.report_large_file(message.job_id, stats)
            return Ok(stats)

        source = self.context.sources.get(message.source_id)
        if source is None:
            raise FetchError(f"source {message.source_id} no longer exists")
        handle = self.context.registry.open(source, message.file.source_type)
        stats = self.processor.process(
            source,
            handle,
            message.credentials,
            message.file,
            unit,
            large=True,
            absorb_errors=False,
        )
        tracker.report_large_file(message.job_id, stats)
        return Ok(stats)

    def on_failure(self, message: LargeFileMessage, error: BaseException) -> None:
        stats = StageStats()
        stats.add_error(message.file.name, "large-file", error)
        self.context.tracker.report_large_file(message.job_id, stats)


class CreateChunksJob:
    """Chunks supplied text for an existing document and queues embedding batches."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def run(self, message: CreateChunksMessage, unit: UnitContext) -> StageResult:
        context = self.context
        document = context.documents.get(message.document_id)
        if document is None or document.tenant_id != message.tenant_id:
            logger.warning("Document gone, nothing to chunk", extra=log_context(document_id=message.document_id))
            return Ok(StageStats())

        source: SourceRecord | None = context.sources.get(document.source_id) if document.source_id else None
        settings = context.settings
        # large files were chunked on paragraph boundaries at ingest
        if (document.size_bytes or 0) > settings.small_file_max_bytes:
            windows = split_segments(
                paragraph_segments(message.text), settings.chunk_max_chars, settings.chunk_overlap_chars
            )
        else:
            windows = split_with_overlap(message.text, settings.chunk_max_chars, settings.chunk_overlap_chars)
        chunks = build_chunks(document, windows, source)
        context.chunks.insert_many(chunks)

        batch_size = context.settings.embedding_batch_size
        chunk_ids = [chunk.id for chunk in chunks]
        for offset in range(0, len(chunk_ids), batch_size):
            context.dispatch(
                EmbedChunksMessage(chunk_ids=tuple(chunk_ids[offset : offset + batch_size]), tenant_id=message.tenant_id)
            )
        logger.info(
            "Chunks created",
            extra=log_context(document_id=document.id, tenant_id=document.tenant_id, chunks=len(chunks)),
        )
        return Ok(StageStats(chunks=len(chunks)))

    def on_failure(self, message: CreateChunksMessage, error: BaseException) -> None:
        logger.error(
            "Chunk creation failed",
            extra=log_context(document_id=message.document_id, tenant_id=message.tenant_id, error=str(error)),
        )


class EmbedChunksBatchJob:
    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def run(self, message: EmbedChunksMessage, unit: UnitContext) -> StageResult:
        stats = self.context.indexer().index(message.chunk_ids, message.tenant_id, unit)
        return Ok(stats)

    def on_failure(self, message: EmbedChunksMessage, error: BaseException) -> None:
        logger.error(
            "Embedding batch unit failed",
            extra=log_context(tenant_id=message.tenant_id, chunks=len(message.chunk_ids), error=str(error)),
        )


class ReindexDocumentJob:
    """Re-extracts text from the stored blob, or rebuilds it from existing chunks, and rechunks."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def run(self, message: ReindexDocumentMessage, unit: UnitContext) -> StageResult:
        context = self.context
        document = context.documents.get(message.document_id)
        if document is None or document.tenant_id != message.tenant_id:
            logger.warning("Document gone, nothing to reindex", extra=log_context(document_id=message.document_id))
            return Ok(StageStats())

        text = ""
        if document.blob_pointer:
            try:
                data = context.blobs.get(document.blob_pointer)
                if data:
                    text = context.extractor.extract_text(data, document.mime, document.title)
            except Exception as exc:
                logger.warning(
                    "Blob re-extraction failed, falling back to stored chunks",
                    extra=log_context(document_id=document.id, error=str(exc)),
                )
        if not text.strip():
            text = reassemble_text(context.chunks.for_document(document.id))
        if not text.strip():
            logger.warning("No text available to reindex", extra=log_context(document_id=document.id))
            return Ok(StageStats())

        stats = context.indexer().discard(document)
        context.dispatch(CreateChunksMessage(document_id=document.id, tenant_id=document.tenant_id, text=text))
        logger.info("Reindex queued", extra=log_context(document_id=document.id, characters=len(text)))
        return Ok(stats)

    def on_failure(self, message: ReindexDocumentMessage, error: BaseException) -> None:
        logger.error(
            "Reindex failed",
            extra=log_context(document_id=message.document_id, tenant_id=message.tenant_id, error=str(error)),
        )


class CleanupVectorsJob:
    """Deletes vectors whose chunk rows no longer exist."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def run(self, message: CleanupVectorsMessage, unit: UnitContext) -> StageResult:
        existing = self.context.chunks.existing_ids(message.chunk_ids)
        stale = [chunk_id for chunk_id in message.chunk_ids if chunk_id not in existing]
        stats = StageStats()
        if not stale:
            return Ok(stats)
        try:
            deleted = self.context.vector_store.delete(stale, message.tenant_id)
        except VectorStoreError as exc:
            stats.vector_errors += 1
            VECTOR_STORE_ERRORS.labels(operation="delete").inc()
            logger.error("Stale vector cleanup failed", extra=log_context(tenant_id=message.tenant_id, error=str(exc)))
            return Ok(stats)
        logger.info("Stale vectors removed", extra=log_context(tenant_id=message.tenant_id, deleted=deleted))
        return Ok(stats)

    def on_failure(self, message: CleanupVectorsMessage, error: BaseException) -> None:
        logger.error("Vector cleanup unit failed", extra=log_context(tenant_id=message.tenant_id, error=str(error)))


class JobRouter:
    """Resolves the handler and cancellation token for each message."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self._handlers: dict[type, UnitHandler] = {
            IngestSourceMessage: SourceIngestJob(context),
            LargeFileMessage: LargeFileJob(context),
            CreateChunksMessage: CreateChunksJob(context),
            EmbedChunksMessage: EmbedChunksBatchJob(context),
            ReindexDocumentMessage: ReindexDocumentJob(context),
            CleanupVectorsMessage: CleanupVectorsJob(context),
        }

    def handler_for(self, message: Message) -> UnitHandler:
        handler = self._handlers.get(type(message))
        if handler is None:
            raise KeyError(f"no handler for {type(message).__name__}")
        return handler

    def token_for(self, message: Any) -> CancellationToken:
        job_id = getattr(message, "job_id", None)
        if job_id:
            return self.context.tracker.token(job_id)
        return CancellationToken()


__all__ = [
    "SourceIngestJob",
    "LargeFileJob",
    "CreateChunksJob",
    "EmbedChunksBatchJob",
    "ReindexDocumentJob",
    "CleanupVectorsJob",
    "JobRouter",
]
