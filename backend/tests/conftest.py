"""Test fixtures for Knowledge Hub."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

TEST_DIMENSIONS = 64


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("KH_DB_PATH", str(tmp_path / "kh.db"))
    monkeypatch.setenv("KH_BLOB_DIR", str(tmp_path / "blobs"))
    monkeypatch.setenv("KH_QUEUE_MODE", "inline")
    monkeypatch.setenv("KH_EMBEDDING_DIMENSIONS", str(TEST_DIMENSIONS))
    monkeypatch.delenv("KH_CONFIG", raising=False)

    from knowledge_hub.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path):
    from knowledge_hub.core.config import Settings

    return Settings(
        db_path=tmp_path / "kh.db",
        blob_dir=tmp_path / "blobs",
        embedding_dimensions=TEST_DIMENSIONS,
        chunk_max_chars=120,
        chunk_overlap_chars=20,
        small_file_max_bytes=2_000,
        large_file_max_bytes=10_000,
        queue_mode="inline",
    )


class RecordingProvider:
    """Hashed vectors plus a log of every call; ``on_call`` runs before each one."""

    def __init__(self, dimensions: int = TEST_DIMENSIONS, on_call: Callable[[int], None] | None = None) -> None:
        from knowledge_hub.ingest.embeddings import HashedEmbeddingProvider

        self._inner = HashedEmbeddingProvider(dimensions=dimensions)
        self.model = "recording"
        self.calls: list[list[str]] = []
        self.attempts = 0
        self.on_call = on_call

    @property
    def dimensions(self) -> int:
        return self._inner.dimensions

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        attempt = self.attempts
        self.attempts += 1
        if self.on_call is not None:
            self.on_call(attempt)
        self.calls.append(list(texts))
        return self._inner.embed_texts(texts)


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def embedder(provider: RecordingProvider, settings):
    from knowledge_hub.ingest.embeddings import Embedder

    return Embedder(provider, batch_size=settings.embedding_batch_size, max_attempts=2, wait_min=0, wait_max=0)


@pytest.fixture
def context(settings, embedder):
    from knowledge_hub.pipeline.context import build_context

    ctx = build_context(settings, embedder=embedder, threaded=False)
    yield ctx
    ctx.db.close()


@pytest.fixture
def folder_source(tmp_path: Path, context):
    """Register a folder source under tenant ``acme`` and return ``(record, folder)``."""
    from knowledge_hub.models.entities import SourceRecord

    folder = tmp_path / "docs"
    folder.mkdir()
    record = context.sources.add(
        SourceRecord(
            id="src-docs",
            tenant_id="acme",
            source_type="folder",
            uri=folder.as_uri(),
            workspace_label="eng",
        )
    )
    return record, folder


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
