"""SQLite implementations of the repository interfaces."""

from __future__ import annotations

import sqlite3
from typing import Sequence

import orjson

from knowledge_hub.db.sqlite import SQLiteDatabase, placeholders
from knowledge_hub.ingest.embeddings import unpack_vector
from knowledge_hub.models.entities import (
    Chunk,
    Document,
    IngestJob,
    JobStats,
    JobStatus,
    SourceRecord,
)
from knowledge_hub.storage.base import (
    ChunkRepository,
    DocumentRepository,
    JobRepository,
    OrphanChunkRow,
    SourceCatalog,
)
from knowledge_hub.utils.time import now_ms

_SQL_BATCH = 500

_SOURCE_COLUMNS = (
    "id, tenant_id, source_type, uri, label, scope, workspace_label, include_glob, "
    "exclude_glob, is_active, last_synced_at, created_at, updated_at"
)
_DOCUMENT_COLUMNS = (
    "id, tenant_id, source_id, external_id, title, mime, sha256, size_bytes, "
    "blob_pointer, fetched_at, created_at, updated_at"
)
_CHUNK_COLUMNS = (
    "chunks.id, chunks.document_id, chunks.tenant_id, chunks.ordinal, chunks.text, chunks.char_start, "
    "chunks.char_end, chunks.token_count, chunks.visibility_scope, chunks.workspace_label, chunks.created_at"
)
_JOB_COLUMNS = "id, source_id, tenant_id, status, stats_json, error, version, started_at, finished_at, created_at"


def _batched(values: Sequence[str]) -> list[list[str]]:
    items = list(values)
    return [items[offset : offset + _SQL_BATCH] for offset in range(0, len(items), _SQL_BATCH)]


class SQLiteSourceCatalog(SourceCatalog):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, source_id: str) -> SourceRecord | None:
        row = self.db.execute(f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", [source_id]).fetchone()
        return _row_to_source(row) if row else None

    def list(self, tenant_id: str | None = None) -> list[SourceRecord]:
        if tenant_id is None:
            rows = self.db.query(f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY created_at", [])
        else:
            rows = self.db.query(
                f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE tenant_id = ? ORDER BY created_at",
                [tenant_id],
            )
        return [_row_to_source(row) for row in rows]

    def add(self, source: SourceRecord) -> SourceRecord:
        now = now_ms()
        source.created_at = source.created_at or now
        source.updated_at = now
        with self.db.transaction() as cursor:
            cursor.execute(
                f"""
                INSERT INTO sources ({_SOURCE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    source.id,
                    source.tenant_id,
                    source.source_type,
                    source.uri,
                    source.label,
                    source.scope,
                    source.workspace_label,
                    source.include_glob,
                    source.exclude_glob,
                    int(source.is_active),
                    source.last_synced_at,
                    source.created_at,
                    source.updated_at,
                ],
            )
        return source

    def remove(self, source_id: str) -> bool:
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM sources WHERE id = ?", [source_id])
            return cursor.rowcount > 0

    def mark_synced(self, source_id: str, synced_at: int) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                "UPDATE sources SET last_synced_at = ?, updated_at = ? WHERE id = ?",
                [synced_at, synced_at, source_id],
            )


class SQLiteDocumentRepository(DocumentRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, document_id: str) -> Document | None:
        row = self.db.execute(f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", [document_id]).fetchone()
        return _row_to_document(row) if row else None

    def find_by_identity(self, tenant_id: str, source_id: str | None, external_id: str) -> Document | None:
        row = self.db.execute(
            f"""
            SELECT {_DOCUMENT_COLUMNS} FROM documents
            WHERE tenant_id = ? AND source_id IS ? AND external_id = ?
            ORDER BY created_at LIMIT 1
            """,
            [tenant_id, source_id, external_id],
        ).fetchone()
        return _row_to_document(row) if row else None

    def save(self, document: Document) -> Document:
        now = now_ms()
        document.created_at = document.created_at or now
        document.updated_at = now
        with self.db.transaction() as cursor:
            cursor.execute(
                f"""
                INSERT INTO documents ({_DOCUMENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  title = excluded.title,
                  mime = excluded.mime,
                  sha256 = excluded.sha256,
                  size_bytes = excluded.size_bytes,
                  blob_pointer = excluded.blob_pointer,
                  fetched_at = excluded.fetched_at,
                  updated_at = excluded.updated_at
                """,
                [
                    document.id,
                    document.tenant_id,
                    document.source_id,
                    document.external_id,
                    document.title,
                    document.mime,
                    document.sha256,
                    document.size_bytes,
                    document.blob_pointer,
                    document.fetched_at,
                    document.created_at,
                    document.updated_at,
                ],
            )
        return document

    def delete(self, document_ids: Sequence[str]) -> int:
        deleted = 0
        with self.db.transaction() as cursor:
            for batch in _batched(document_ids):
                cursor.execute(f"DELETE FROM documents WHERE id IN ({placeholders(batch)})", batch)
                deleted += cursor.rowcount
        return deleted

    def orphaned(self, tenant_id: str | None = None) -> list[Document]:
        sql = f"""
            SELECT {", ".join(f"documents.{col.strip()}" for col in _DOCUMENT_COLUMNS.split(","))}
            FROM documents
            LEFT JOIN sources ON sources.id = documents.source_id
            WHERE documents.source_id IS NOT NULL AND sources.id IS NULL
        """
        params: list[str] = []
        if tenant_id is not None:
            sql += " AND documents.tenant_id = ?"
            params.append(tenant_id)
        sql += " ORDER BY documents.id"
        return [_row_to_document(row) for row in self.db.query(sql, params)]

    def chunk_count(self, document_id: str) -> int:
        row = self.db.execute("SELECT COUNT(*) AS count FROM chunks WHERE document_id = ?", [document_id]).fetchone()
        return int(row["count"]) if row else 0


class SQLiteChunkRepository(ChunkRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def insert_many(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        now = now_ms()
        with self.db.transaction() as cursor:
            cursor.executemany(
                """
                INSERT INTO chunks (
                  id, document_id, tenant_id, ordinal, text, char_start, char_end,
                  token_count, visibility_scope, workspace_label, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        chunk.document_id,
                        chunk.tenant_id,
                        chunk.ordinal,
                        chunk.text,
                        chunk.char_start,
                        chunk.char_end,
                        chunk.token_count,
                        chunk.visibility_scope,
                        chunk.workspace_label,
                        chunk.created_at or now,
                    )
                    for chunk in chunks
                ],
            )

    def get_many(self, chunk_ids: Sequence[str], tenant_id: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        for batch in _batched(list(dict.fromkeys(chunk_ids))):
            rows = self.db.query(
                f"""
                SELECT {_CHUNK_COLUMNS}, vectors.embedding
                FROM chunks
                LEFT JOIN vectors ON vectors.vector_id = chunks.id AND vectors.tenant_id = chunks.tenant_id
                WHERE chunks.tenant_id = ? AND chunks.id IN ({placeholders(batch)})
                """,
                [tenant_id, *batch],
            )
            chunks.extend(_row_to_chunk(row, with_embedding=True) for row in rows)
        chunks.sort(key=lambda chunk: (chunk.document_id, chunk.ordinal))
        return chunks

    def for_document(self, document_id: str) -> list[Chunk]:
        rows = self.db.query(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? ORDER BY ordinal",
            [document_id],
        )
        return [_row_to_chunk(row) for row in rows]

    def ids_for_document(self, document_id: str) -> list[str]:
        rows = self.db.query("SELECT id FROM chunks WHERE document_id = ? ORDER BY ordinal", [document_id])
        return [row["id"] for row in rows]

    def delete(self, chunk_ids: Sequence[str]) -> int:
        deleted = 0
        with self.db.transaction() as cursor:
            for batch in _batched(chunk_ids):
                cursor.execute(f"DELETE FROM chunks WHERE id IN ({placeholders(batch)})", batch)
                deleted += cursor.rowcount
        return deleted

    def existing_ids(self, chunk_ids: Sequence[str]) -> set[str]:
        found: set[str] = set()
        for batch in _batched(chunk_ids):
            rows = self.db.query(f"SELECT id FROM chunks WHERE id IN ({placeholders(batch)})", batch)
            found.update(row["id"] for row in rows)
        return found

    def orphaned(self, tenant_id: str | None = None) -> list[OrphanChunkRow]:
        sql = """
            SELECT chunks.id AS chunk_id, chunks.document_id, chunks.tenant_id
            FROM chunks
            JOIN documents ON documents.id = chunks.document_id
            LEFT JOIN sources ON sources.id = documents.source_id
            WHERE documents.source_id IS NOT NULL AND sources.id IS NULL
        """
        params: list[str] = []
        if tenant_id is not None:
            sql += " AND chunks.tenant_id = ?"
            params.append(tenant_id)
        sql += " ORDER BY chunks.document_id, chunks.ordinal"
        return [
            OrphanChunkRow(chunk_id=row["chunk_id"], document_id=row["document_id"], tenant_id=row["tenant_id"])
            for row in self.db.query(sql, params)
        ]


class SQLiteJobRepository(JobRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def create(self, job: IngestJob) -> IngestJob:
        job.created_at = job.created_at or now_ms()
        with self.db.transaction() as cursor:
            cursor.execute(
                f"INSERT INTO ingest_jobs ({_JOB_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    job.id,
                    job.source_id,
                    job.tenant_id,
                    job.status.value,
                    orjson.dumps(job.stats.to_dict()).decode("utf-8"),
                    job.error,
                    job.version,
                    job.started_at,
                    job.finished_at,
                    job.created_at,
                ],
            )
        return job

    def get(self, job_id: str) -> IngestJob | None:
        row = self.db.execute(f"SELECT {_JOB_COLUMNS} FROM ingest_jobs WHERE id = ?", [job_id]).fetchone()
        return _row_to_job(row) if row else None

    def compare_and_swap(self, job: IngestJob, expected_version: int) -> bool:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE ingest_jobs
                SET status = ?, stats_json = ?, error = ?, started_at = ?, finished_at = ?, version = ?
                WHERE id = ? AND version = ?
                """,
                [
                    job.status.value,
                    orjson.dumps(job.stats.to_dict()).decode("utf-8"),
                    job.error,
                    job.started_at,
                    job.finished_at,
                    expected_version + 1,
                    job.id,
                    expected_version,
                ],
            )
            swapped = cursor.rowcount == 1
        if swapped:
            job.version = expected_version + 1
        return swapped

    def list_for_source(self, tenant_id: str, source_id: str, limit: int = 20) -> list[IngestJob]:
        rows = self.db.query(
            f"""
            SELECT {_JOB_COLUMNS} FROM ingest_jobs
            WHERE tenant_id = ? AND source_id = ?
            ORDER BY created_at DESC LIMIT ?
            """,
            [tenant_id, source_id, limit],
        )
        return [_row_to_job(row) for row in rows]


def _row_to_source(row: sqlite3.Row) -> SourceRecord:
    return SourceRecord(
        id=row["id"],
        tenant_id=row["tenant_id"],
        source_type=row["source_type"],
        uri=row["uri"],
        label=row["label"],
        scope=row["scope"],
        workspace_label=row["workspace_label"],
        include_glob=row["include_glob"],
        exclude_glob=row["exclude_glob"],
        is_active=bool(row["is_active"]),
        last_synced_at=row["last_synced_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        tenant_id=row["tenant_id"],
        source_id=row["source_id"],
        external_id=row["external_id"],
        title=row["title"],
        mime=row["mime"],
        sha256=row["sha256"],
        size_bytes=row["size_bytes"],
        blob_pointer=row["blob_pointer"],
        fetched_at=row["fetched_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row, with_embedding: bool = False) -> Chunk:
    embedding = None
    if with_embedding and row["embedding"] is not None:
        embedding = unpack_vector(row["embedding"])
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        tenant_id=row["tenant_id"],
        ordinal=row["ordinal"],
        text=row["text"],
        char_start=row["char_start"],
        char_end=row["char_end"],
        token_count=row["token_count"],
        visibility_scope=row["visibility_scope"],
        workspace_label=row["workspace_label"],
        embedding=embedding,
        created_at=row["created_at"],
    )


def _row_to_job(row: sqlite3.Row) -> IngestJob:
    return IngestJob(
        id=row["id"],
        source_id=row["source_id"],
        tenant_id=row["tenant_id"],
        status=JobStatus(row["status"]),
        stats=JobStats.from_dict(orjson.loads(row["stats_json"])),
        error=row["error"],
        version=row["version"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
        created_at=row["created_at"],
    )


__all__ = [
    "SQLiteSourceCatalog",
    "SQLiteDocumentRepository",
    "SQLiteChunkRepository",
    "SQLiteJobRepository",
]
