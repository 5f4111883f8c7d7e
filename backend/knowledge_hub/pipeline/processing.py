"""Single-file processing shared by the inline and large-file paths."""

from __future__ import annotations

from knowledge_hub.core.errors import ExtractionError, FetchError, UnitTimeout
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.core.metrics import FILES_TOTAL
from knowledge_hub.ingest.chunker import paragraph_segments, split_segments, split_with_overlap
from knowledge_hub.models.entities import Document, FileDescriptor, SourceRecord
from knowledge_hub.pipeline.cancellation import UnitContext
from knowledge_hub.pipeline.context import PipelineContext
from knowledge_hub.pipeline.indexing import build_chunks
from knowledge_hub.pipeline.result import StageStats
from knowledge_hub.sources.base import Credentials, Source
from knowledge_hub.utils.hashing import sha256_bytes
from knowledge_hub.utils.ids import new_id
from knowledge_hub.utils.time import now_ms

logger = get_logger(__name__)


def _stage_of(exc: Exception) -> str:
    if isinstance(exc, FetchError):
        return "fetch"
    if isinstance(exc, ExtractionError):
        return "extract"
    return "process"


class FileProcessor:
    """download, extract, hash, upsert the document, chunk, persist, index"""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context

    def process(
        self,
        source: SourceRecord,
        handle: Source,
        credentials: Credentials,
        descriptor: FileDescriptor,
        unit: UnitContext,
        large: bool = False,
        absorb_errors: bool = True,
    ) -> StageStats:
        """Process one file.

        With ``absorb_errors`` a failure is recorded in the returned stats and
        the caller moves on to the next file; otherwise it propagates so the
        unit's retry budget applies.
        """
        try:
            return self._process(source, handle, credentials, descriptor, unit, large)
        except UnitTimeout:
            raise
        except Exception as exc:
            if not absorb_errors:
                raise
            stats = StageStats()
            stats.add_error(descriptor.name, _stage_of(exc), exc)
            FILES_TOTAL.labels(outcome="error").inc()
            logger.warning(
                "File failed, continuing",
                extra=log_context(
                    tenant_id=source.tenant_id,
                    source_id=source.id,
                    file=descriptor.name,
                    stage=_stage_of(exc),
                    error=str(exc),
                ),
            )
            return stats

    def _process(
        self,
        source: SourceRecord,
        handle: Source,
        credentials: Credentials,
        descriptor: FileDescriptor,
        unit: UnitContext,
        large: bool,
    ) -> StageStats:
        context = self.context
        settings = context.settings
        stats = StageStats()
        log_extra = log_context(tenant_id=source.tenant_id, source_id=source.id, file=descriptor.name)

        try:
            content = handle.fetch_content(credentials, descriptor)
        except FetchError:
            raise
        except Exception as exc:
            raise FetchError(f"download of {descriptor.name} failed: {exc}") from exc

        if unit.token.cancelled:
            stats.cancelled = True
            return stats

        text = context.extractor.extract_text(content, descriptor.mime_type, descriptor.name)
        stats.files += 1
        digest = sha256_bytes(content)
        existing = context.documents.find_by_identity(source.tenant_id, source.id, descriptor.remote_id)

        if not text.strip():
            stats.empty += 1
            FILES_TOTAL.labels(outcome="empty").inc()
            if existing is not None:
                stats.merge(context.indexer().discard(existing))
                self._refresh(existing, source, descriptor, content, digest)
                context.documents.save(existing)
                logger.info("No text extracted, previous chunks removed", extra=log_extra)
            else:
                logger.info("No text extracted, skipping", extra=log_extra)
            return stats

        if (
            existing is not None
            and existing.sha256 == digest
            and context.documents.chunk_count(existing.id) > 0
        ):
            stats.unchanged += 1
            FILES_TOTAL.labels(outcome="unchanged").inc()
            logger.debug("File unchanged since last sync", extra=log_extra)
            return stats

        indexer = context.indexer()
        if existing is not None:
            stats.merge(indexer.discard(existing))
            document = existing
        else:
            document = Document(
                id=new_id("doc"),
                tenant_id=source.tenant_id,
                source_id=source.id,
                external_id=descriptor.remote_id,
                title=None,
                mime=None,
                sha256=None,
                size_bytes=None,
                blob_pointer=None,
                fetched_at=None,
            )
        self._refresh(document, source, descriptor, content, None)
        # the hash is recorded only once the chunks are written and indexed
        context.documents.save(document)

        if large:
            windows = split_segments(
                paragraph_segments(text), settings.chunk_max_chars, settings.chunk_overlap_chars
            )
        else:
            windows = split_with_overlap(text, settings.chunk_max_chars, settings.chunk_overlap_chars)
        chunks = build_chunks(document, windows, source)
        context.chunks.insert_many(chunks)
        stats.documents += 1
        stats.chunks += len(chunks)
        FILES_TOTAL.labels(outcome="indexed").inc()
        logger.info(
            "Document stored",
            extra={**log_extra, **log_context(document_id=document.id, chunks=len(chunks), large=large)},
        )

        stats.merge(indexer.index([chunk.id for chunk in chunks], source.tenant_id, unit))
        document.sha256 = digest
        context.documents.save(document)
        return stats

    def _refresh(
        self,
        document: Document,
        source: SourceRecord,
        descriptor: FileDescriptor,
        content: bytes,
        digest: str | None,
    ) -> None:
        document.title = descriptor.name
        document.mime = descriptor.mime_type
        document.sha256 = digest
        document.size_bytes = len(content)
        document.fetched_at = now_ms()
        try:
            document.blob_pointer = self.context.blobs.put(source.tenant_id, document.id, content)
        except OSError as exc:
            logger.warning(
                "Raw blob not stored",
                extra=log_context(tenant_id=source.tenant_id, file=descriptor.name, error=str(exc)),
            )


__all__ = ["FileProcessor"]
