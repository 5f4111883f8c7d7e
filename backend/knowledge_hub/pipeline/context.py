"""Wiring for the pipeline's collaborators."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable

from knowledge_hub.core.config import Settings
from knowledge_hub.db.sqlite import SQLiteDatabase
from knowledge_hub.ingest.embeddings import Embedder, build_embedder
from knowledge_hub.pipeline.indexing import ChunkIndexer
from knowledge_hub.pipeline.queue import Dispatcher
from knowledge_hub.pipeline.tracker import IngestJobTracker
from knowledge_hub.retrieval.vector_store import SQLiteVectorStore, VectorStore
from knowledge_hub.sources import local
from knowledge_hub.sources.base import SourceRegistry
from knowledge_hub.sources.blobs import BlobStore, LocalBlobStore
from knowledge_hub.sources.credentials import CredentialStore, DatabaseCredentialStore
from knowledge_hub.sources.extractor import BasicExtractor, Extractor
from knowledge_hub.storage.base import ChunkRepository, DocumentRepository, JobRepository, SourceCatalog
from knowledge_hub.storage.sqlite import (
    SQLiteChunkRepository,
    SQLiteDocumentRepository,
    SQLiteJobRepository,
    SQLiteSourceCatalog,
)


@dataclass
class PipelineContext:
    settings: Settings
    sources: SourceCatalog
    documents: DocumentRepository
    chunks: ChunkRepository
    jobs: JobRepository
    vector_store: VectorStore
    extractor: Extractor
    blobs: BlobStore
    credentials: CredentialStore
    registry: SourceRegistry
    tracker: IngestJobTracker
    embedder_factory: Callable[[Settings], Embedder] = build_embedder
    dispatcher: Dispatcher | None = None
    db: SQLiteDatabase | None = None
    _embedder: Embedder | None = field(default=None, repr=False)
    _embedder_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def embedder(self) -> Embedder:
        """Build the embedder on first use; raises EmbeddingConfigError when it cannot be built."""
        with self._embedder_lock:
            if self._embedder is None:
                self._embedder = self.embedder_factory(self.settings)
            return self._embedder

    def indexer(self) -> ChunkIndexer:
        return ChunkIndexer(
            chunks=self.chunks,
            documents=self.documents,
            embedder=self.embedder(),
            vector_store=self.vector_store,
            batch_size=self.settings.embedding_batch_size,
        )

    def dispatch(self, message) -> None:
        if self.dispatcher is None:
            raise RuntimeError("pipeline context has no dispatcher attached")
        self.dispatcher.dispatch(message)


def default_registry() -> SourceRegistry:
    registry = SourceRegistry()
    registry.register(local.SOURCE_TYPE, local.LocalFolderSource.from_record)
    return registry


def build_context(
    settings: Settings,
    db: SQLiteDatabase | None = None,
    embedder: Embedder | None = None,
    registry: SourceRegistry | None = None,
    threaded: bool | None = None,
) -> PipelineContext:
    """Wire SQLite-backed repositories and attach a dispatcher.

    ``threaded`` selects the thread pool dispatcher over running units inline
    on the calling thread; it defaults to the configured ``queue_mode``.
    """
    # imported here because the job handlers import this module
    from knowledge_hub.pipeline.jobs import JobRouter
    from knowledge_hub.pipeline.queue import InlineDispatcher, ThreadPoolDispatcher, lanes_from_settings

    if db is None:
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
    jobs = SQLiteJobRepository(db)
    context = PipelineContext(
        settings=settings,
        sources=SQLiteSourceCatalog(db),
        documents=SQLiteDocumentRepository(db),
        chunks=SQLiteChunkRepository(db),
        jobs=jobs,
        vector_store=SQLiteVectorStore(db, settings.embedding_dimensions),
        extractor=BasicExtractor(),
        blobs=LocalBlobStore(settings.blob_dir),
        credentials=DatabaseCredentialStore(db),
        registry=registry or default_registry(),
        tracker=IngestJobTracker(jobs, max_retries=settings.stats_update_max_retries),
        db=db,
    )
    if embedder is not None:
        context._embedder = embedder
    router = JobRouter(context)
    lanes = lanes_from_settings(settings)
    if threaded is None:
        threaded = settings.queue_mode == "threads"
    context.dispatcher = ThreadPoolDispatcher(router, lanes) if threaded else InlineDispatcher(router, lanes)
    return context


__all__ = ["PipelineContext", "build_context", "default_registry"]
