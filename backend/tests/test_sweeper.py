"""Tests for orphan detection and reconciliation."""

import pytest

from knowledge_hub.core.errors import VectorStoreError
from knowledge_hub.maintenance.sweeper import OrphanSweeper
from knowledge_hub.models.entities import SourceRecord, VectorMetadata, VectorRecord
from knowledge_hub.pipeline.service import IngestService


@pytest.fixture
def sweeper(context) -> OrphanSweeper:
    return OrphanSweeper(context.documents, context.chunks, context.vector_store)


@pytest.fixture
def orphaned(context, folder_source, tmp_path):
    """Index one three-chunk document, keep a second source, then remove the first."""
    record, folder = folder_source
    (folder / "gone.txt").write_text("orphan text " * 22)
    kept_folder = tmp_path / "kept"
    kept_folder.mkdir()
    (kept_folder / "kept.txt").write_text("still attached")
    kept = context.sources.add(
        SourceRecord(id="src-kept", tenant_id="acme", source_type="folder", uri=kept_folder.as_uri())
    )
    service = IngestService(context)
    service.sync_source(record.id, record.tenant_id)
    service.sync_source(kept.id, kept.tenant_id)

    document = context.documents.find_by_identity("acme", record.id, "gone.txt")
    chunk_ids = context.chunks.ids_for_document(document.id)
    assert len(chunk_ids) == 3
    context.sources.remove(record.id)
    return document, chunk_ids


def test_find_orphans_groups_by_document(sweeper: OrphanSweeper, orphaned) -> None:
    document, chunk_ids = orphaned
    report = sweeper.find_orphans()
    assert report.by_document() == {document.id: chunk_ids}
    assert report.chunk_count == 3
    assert report.document_ids == [document.id]
    assert report.by_tenant() == {"acme": chunk_ids}


def test_find_orphans_is_tenant_scoped(sweeper: OrphanSweeper, orphaned) -> None:
    assert sweeper.find_orphans("globex").chunk_count == 0
    assert sweeper.find_orphans("acme").chunk_count == 3


def test_dry_run_changes_nothing(context, sweeper: OrphanSweeper, orphaned) -> None:
    document, chunk_ids = orphaned
    result = sweeper.reconcile(dry_run=True)
    assert result.dry_run
    assert result.deleted_chunks == result.deleted_vectors == result.deleted_documents == 0
    assert result.report.chunk_count == 3
    assert context.chunks.ids_for_document(document.id) == chunk_ids
    assert all(context.vector_store.get(chunk_id, "acme") is not None for chunk_id in chunk_ids)


def test_apply_deletes_vectors_before_rows(context, sweeper: OrphanSweeper, orphaned, monkeypatch) -> None:
    document, chunk_ids = orphaned
    events: list[str] = []
    delete_vectors = context.vector_store.delete
    delete_chunks = context.chunks.delete

    def recording_vector_delete(ids, tenant):
        events.append("vectors")
        return delete_vectors(ids, tenant)

    def recording_chunk_delete(ids):
        events.append("chunks")
        return delete_chunks(ids)

    monkeypatch.setattr(context.vector_store, "delete", recording_vector_delete)
    monkeypatch.setattr(context.chunks, "delete", recording_chunk_delete)

    result = sweeper.reconcile(dry_run=False)

    assert events == ["vectors", "chunks"]
    assert result.deleted_vectors == 3
    assert result.deleted_chunks == 3
    assert result.deleted_documents == 1
    assert context.documents.get(document.id) is None
    assert context.vector_store.count("acme") == 1
    assert sweeper.find_orphans().chunk_count == 0


def test_keep_documents(context, sweeper: OrphanSweeper, orphaned) -> None:
    document, _ = orphaned
    result = sweeper.reconcile(dry_run=False, delete_documents=False)
    assert result.deleted_documents == 0
    assert context.documents.get(document.id) is not None
    assert context.chunks.ids_for_document(document.id) == []


def test_vector_delete_failure_leaves_rows(context, sweeper: OrphanSweeper, orphaned, monkeypatch) -> None:
    document, chunk_ids = orphaned

    def broken_delete(ids, tenant):
        raise VectorStoreError("index offline")

    monkeypatch.setattr(context.vector_store, "delete", broken_delete)
    with pytest.raises(VectorStoreError):
        sweeper.reconcile(dry_run=False)
    assert context.chunks.ids_for_document(document.id) == chunk_ids
    assert context.documents.get(document.id) is not None


def test_stale_vectors_are_found_and_purged(context, sweeper: OrphanSweeper, folder_source) -> None:
    record, folder = folder_source
    (folder / "a.txt").write_text("live chunk")
    IngestService(context).sync_source(record.id, record.tenant_id)
    stray = VectorRecord(
        id="chunk-without-row",
        values=context.embedder().embed("stray"),
        metadata=VectorMetadata(tenant_id="acme"),
    )
    context.vector_store.upsert([stray], "acme")

    preview = sweeper.purge_stale_vectors(dry_run=True)
    assert preview.found == [("acme", "chunk-without-row")]
    assert preview.deleted == 0
    assert context.vector_store.get("chunk-without-row", "acme") is not None

    result = sweeper.purge_stale_vectors(dry_run=False)
    assert result.deleted == 1
    assert context.vector_store.get("chunk-without-row", "acme") is None
    assert context.vector_store.count("acme") == 1
