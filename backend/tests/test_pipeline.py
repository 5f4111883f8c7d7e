"""End-to-end tests for ingest runs over the inline dispatcher."""

from __future__ import annotations

import pytest

from knowledge_hub.core.errors import FetchError, VectorStoreError
from knowledge_hub.models.entities import FileDescriptor, JobStatus, SourceRecord
from knowledge_hub.pipeline.context import build_context
from knowledge_hub.pipeline.messages import IngestSourceMessage, LargeFileMessage
from knowledge_hub.pipeline.service import IngestService


def _sync(context, record: SourceRecord):
    return IngestService(context).sync_source(record.id, record.tenant_id)


def _vector_count(context, tenant: str = "acme") -> int:
    return context.vector_store.count(tenant)


def _paragraphs(count: int, width: int = 60) -> str:
    return "\n\n".join(f"paragraph {index} " + "lorem ipsum " * (width // 12) for index in range(count))


class FakeSource:
    """In-memory source; ``broken`` names raise on download."""

    def __init__(self, files: dict[str, bytes], broken: set[str] | None = None) -> None:
        self.files = files
        self.broken = broken or set()
        self.fetches: list[str] = []

    def list_files(self, credentials, limit):
        return [
            FileDescriptor(remote_id=name, name=name, size=len(data), mime_type="text/plain", source_type="fake")
            for name, data in sorted(self.files.items())
        ][:limit]

    def fetch_content(self, credentials, descriptor):
        self.fetches.append(descriptor.name)
        if descriptor.name in self.broken:
            raise FetchError(f"{descriptor.name} is unavailable")
        return self.files[descriptor.name]


@pytest.fixture
def fake_source(context):
    source = FakeSource({})
    context.registry.register("fake", lambda record: source)
    record = context.sources.add(SourceRecord(id="src-fake", tenant_id="acme", source_type="fake", uri="fake://"))
    return record, source


def test_sync_indexes_small_files(context, folder_source) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("alpha " * 50)
    (folder / "b.md").write_text("# Beta\n\nbeta body text")

    job = _sync(context, record)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.documents == 2
    assert job.stats.processed_files == 2
    assert job.stats.total_files == 2
    assert job.stats.errors == 0
    assert job.stats.chunks == _vector_count(context)
    assert context.sources.get(record.id).last_synced_at is not None


def test_chunks_carry_source_visibility_tags(context, folder_source) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("tagged content")
    _sync(context, record)
    document = context.documents.find_by_identity("acme", record.id, "a.txt")
    chunk = context.chunks.for_document(document.id)[0]
    assert chunk.workspace_label == "eng"
    assert chunk.visibility_scope == "organization"
    match = context.vector_store.query(context.embedder().embed("tagged content"), top_k=1, tenant="acme")[0]
    assert match.metadata.document_id == document.id
    assert match.metadata.source_id == record.id
    assert match.metadata.workspace_label == "eng"


def test_empty_extraction_is_not_an_error(context, folder_source) -> None:
    record, folder = folder_source
    (folder / "empty.txt").write_text("   \n\n  ")

    job = _sync(context, record)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.errors == 0
    assert job.stats.chunks == 0
    assert job.stats.processed_files == 1
    assert context.documents.find_by_identity("acme", record.id, "empty.txt") is None


def test_unchanged_files_are_skipped(context, folder_source, provider) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("stable text")
    _sync(context, record)
    calls_after_first = len(provider.calls)

    job = _sync(context, record)

    assert job.stats.unchanged_files == 1
    assert job.stats.documents == 0
    assert len(provider.calls) == calls_after_first


def test_changed_file_replaces_chunks_and_vectors(context, folder_source) -> None:
    record, folder = folder_source
    path = folder / "a.txt"
    path.write_text("first version " * 20)
    _sync(context, record)
    document = context.documents.find_by_identity("acme", record.id, "a.txt")
    old_ids = context.chunks.ids_for_document(document.id)

    path.write_text("second version")
    job = _sync(context, record)

    assert job.stats.documents == 1
    new_ids = context.chunks.ids_for_document(document.id)
    assert len(new_ids) == 1
    assert not set(old_ids) & set(new_ids)
    assert all(context.vector_store.get(chunk_id, "acme") is None for chunk_id in old_ids)
    assert _vector_count(context) == 1


def test_files_are_routed_by_size(context, folder_source) -> None:
    record, folder = folder_source
    (folder / "small.txt").write_text("small file")
    (folder / "large.txt").write_text(_paragraphs(60))
    (folder / "huge.txt").write_text("x" * 12_000)

    job = _sync(context, record)

    assert any(isinstance(message, LargeFileMessage) for message in context.dispatcher.dispatched)
    job = context.tracker.get(job.id)
    assert job.status is JobStatus.COMPLETED
    assert job.stats.pending_large_files == 0
    assert job.stats.skipped_files == 1
    assert job.stats.documents == 2
    assert context.documents.find_by_identity("acme", record.id, "huge.txt") is None

    large = context.documents.find_by_identity("acme", record.id, "large.txt")
    chunks = context.chunks.for_document(large.id)
    assert len(chunks) > 1
    assert all(len(chunk.text) <= context.settings.chunk_max_chars for chunk in chunks)


def test_cancellation_stops_between_embedding_batches(settings, embedder, provider, folder_source) -> None:
    record, folder = folder_source
    (folder / "long.txt").write_text("word " * 90)
    narrow = settings.model_copy(update={"embedding_batch_size": 2})
    context = build_context(narrow, embedder=embedder, threaded=False)
    job = context.tracker.create(record.id, record.tenant_id)

    def cancel_during_first_batch(attempt: int) -> None:
        if attempt == 0:
            context.tracker.cancel(job.id)

    provider.on_call = cancel_during_first_batch
    context.dispatch(IngestSourceMessage(source_id=record.id, tenant_id=record.tenant_id, job_id=job.id))

    document = context.documents.find_by_identity("acme", record.id, "long.txt")
    chunk_ids = context.chunks.ids_for_document(document.id)
    assert len(chunk_ids) == 5
    indexed = [chunk_id for chunk_id in chunk_ids if context.vector_store.get(chunk_id, "acme") is not None]
    assert indexed == chunk_ids[:2]
    assert len(provider.calls) == 1
    assert context.tracker.get(job.id).status is JobStatus.CANCELLED


def test_vector_store_errors_do_not_fail_the_run(context, folder_source, monkeypatch) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("some text")

    def broken_upsert(records, tenant):
        raise VectorStoreError("index offline")

    monkeypatch.setattr(context.vector_store, "upsert", broken_upsert)
    job = _sync(context, record)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.documents == 1
    assert job.stats.errors == 0
    assert job.stats.vector_errors == 1


def test_exhausted_embedding_batch_is_counted(context, folder_source, provider) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("some text")

    def always_fail(attempt: int) -> None:
        raise ConnectionError("provider down")

    provider.on_call = always_fail
    job = _sync(context, record)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.errors == 1
    assert job.stats.chunks == 1
    assert _vector_count(context) == 0


def test_fetch_error_skips_file_and_continues(context, fake_source) -> None:
    record, source = fake_source
    source.files.update({"a.txt": b"first", "b.txt": b"second", "c.txt": b"third"})
    source.broken.add("b.txt")

    job = _sync(context, record)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.errors == 1
    assert job.stats.documents == 2
    assert source.fetches == ["a.txt", "b.txt", "c.txt"]


def test_failed_large_file_is_reported_once(context, fake_source) -> None:
    record, source = fake_source
    source.files.update({"big.txt": b"y " * 3_000, "small.txt": b"fine"})
    source.broken.add("big.txt")

    job = _sync(context, record)
    job = context.tracker.get(job.id)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.pending_large_files == 0
    assert job.stats.errors == 1
    assert source.fetches.count("big.txt") == context.settings.large_lane_max_attempts


def test_enumeration_failure_fails_the_job(context) -> None:
    record = context.sources.add(
        SourceRecord(id="src-gone", tenant_id="acme", source_type="folder", uri="file:///definitely/not/here")
    )
    job = _sync(context, record)
    assert job.status is JobStatus.FAILED
    assert "not a directory" in job.error


def test_unusable_embedder_fails_the_job(settings, folder_source) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("text")
    remote = settings.model_copy(update={"embedding_provider": "openai", "embedding_api_key": None})
    context = build_context(remote, threaded=False)
    job = _sync(context, record)
    assert job.status is JobStatus.FAILED
    assert "embedding_api_key" in job.error


def _fail_first_chunk_write(context, monkeypatch) -> None:
    insert_many = context.chunks.insert_many
    calls = []

    def flaky_insert_many(chunks):
        calls.append(len(chunks))
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return insert_many(chunks)

    monkeypatch.setattr(context.chunks, "insert_many", flaky_insert_many)


def test_failed_chunk_write_is_redone_on_next_sync(context, folder_source, monkeypatch) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("retry me " * 10)
    _fail_first_chunk_write(context, monkeypatch)

    first = _sync(context, record)
    assert first.stats.errors == 1
    document = context.documents.find_by_identity("acme", record.id, "a.txt")
    assert document.sha256 is None

    second = _sync(context, record)

    assert second.stats.unchanged_files == 0
    assert second.stats.documents == 1
    assert len(context.chunks.for_document(document.id)) > 0
    assert context.documents.get(document.id).sha256 is not None


def test_large_file_retry_completes_after_failed_chunk_write(context, folder_source, monkeypatch) -> None:
    record, folder = folder_source
    (folder / "large.txt").write_text(_paragraphs(60))
    _fail_first_chunk_write(context, monkeypatch)

    job = _sync(context, record)
    job = context.tracker.get(job.id)

    assert job.status is JobStatus.COMPLETED
    assert job.stats.errors == 0
    assert job.stats.unchanged_files == 0
    assert job.stats.documents == 1
    large = context.documents.find_by_identity("acme", record.id, "large.txt")
    assert len(context.chunks.for_document(large.id)) > 1


def test_file_that_becomes_empty_drops_its_chunks(context, folder_source) -> None:
    record, folder = folder_source
    path = folder / "notes.txt"
    path.write_text("notes worth keeping " * 20)
    _sync(context, record)
    document = context.documents.find_by_identity("acme", record.id, "notes.txt")
    old_sha = document.sha256
    old_ids = context.chunks.ids_for_document(document.id)
    assert old_ids

    path.write_text("   \n")
    job = _sync(context, record)

    assert job.stats.errors == 0
    assert context.chunks.ids_for_document(document.id) == []
    assert all(context.vector_store.get(chunk_id, "acme") is None for chunk_id in old_ids)
    assert context.documents.get(document.id).sha256 != old_sha
