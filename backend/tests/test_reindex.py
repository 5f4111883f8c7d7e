"""Tests for reindexing and stale vector cleanup units."""

import pytest

from knowledge_hub.models.entities import VectorMetadata, VectorRecord
from knowledge_hub.pipeline.indexing import reassemble_text
from knowledge_hub.pipeline.messages import CreateChunksMessage, EmbedChunksMessage
from knowledge_hub.pipeline.service import IngestService

TEXT = "Reindexing rebuilds chunks from the stored copy of a document. " * 5


@pytest.fixture
def indexed(context, folder_source):
    record, folder = folder_source
    (folder / "notes.txt").write_text(TEXT)
    service = IngestService(context)
    service.sync_source(record.id, record.tenant_id)
    document = context.documents.find_by_identity("acme", record.id, "notes.txt")
    return service, document


def _texts(context, document_id: str) -> list[str]:
    return [chunk.text for chunk in context.chunks.for_document(document_id)]


def test_reindex_from_stored_blob(context, indexed) -> None:
    service, document = indexed
    old_ids = context.chunks.ids_for_document(document.id)
    old_texts = _texts(context, document.id)

    service.reindex(document.id, "acme")

    new_ids = context.chunks.ids_for_document(document.id)
    assert len(new_ids) == len(old_ids)
    assert not set(new_ids) & set(old_ids)
    assert _texts(context, document.id) == old_texts
    assert all(context.vector_store.get(chunk_id, "acme") is None for chunk_id in old_ids)
    assert all(context.vector_store.get(chunk_id, "acme") is not None for chunk_id in new_ids)
    dispatched = [type(message) for message in context.dispatcher.dispatched]
    assert CreateChunksMessage in dispatched
    assert EmbedChunksMessage in dispatched


def test_reindex_falls_back_to_existing_chunks(context, indexed) -> None:
    service, document = indexed
    context.blobs.delete(document.blob_pointer)
    old_texts = _texts(context, document.id)
    assert reassemble_text(context.chunks.for_document(document.id)) == TEXT.strip()

    service.reindex(document.id, "acme")

    assert _texts(context, document.id) == old_texts
    assert context.vector_store.count("acme") == len(old_texts)


def test_reindex_without_any_text_keeps_document(context, indexed) -> None:
    service, document = indexed
    context.blobs.delete(document.blob_pointer)
    context.chunks.delete(context.chunks.ids_for_document(document.id))

    service.reindex(document.id, "acme")

    assert context.documents.get(document.id) is not None
    assert context.chunks.ids_for_document(document.id) == []


def test_reindex_rejects_other_tenants(indexed) -> None:
    service, document = indexed
    with pytest.raises(KeyError):
        service.reindex(document.id, "globex")


def test_cleanup_removes_only_vectors_without_rows(context, indexed) -> None:
    service, document = indexed
    live = context.chunks.ids_for_document(document.id)
    stray = VectorRecord(
        id="chunk-stray",
        values=context.embedder().embed("stray"),
        metadata=VectorMetadata(tenant_id="acme"),
    )
    context.vector_store.upsert([stray], "acme")

    service.cleanup_vectors([live[0], "chunk-stray"], "acme")

    assert context.vector_store.get("chunk-stray", "acme") is None
    assert context.vector_store.get(live[0], "acme") is not None


def test_reindex_keeps_paragraph_boundaries_for_large_files(context, folder_source) -> None:
    record, folder = folder_source
    body = "\n\n".join(f"section {index} " + "filler words " * 8 for index in range(40))
    (folder / "large.txt").write_text(body)
    service = IngestService(context)
    service.sync_source(record.id, record.tenant_id)
    document = context.documents.find_by_identity("acme", record.id, "large.txt")
    assert document.size_bytes > context.settings.small_file_max_bytes
    spans = [(chunk.char_start, chunk.char_end) for chunk in context.chunks.for_document(document.id)]

    service.reindex(document.id, "acme")

    assert [(chunk.char_start, chunk.char_end) for chunk in context.chunks.for_document(document.id)] == spans
