"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SourceCreateRequest(BaseModel):
    source_type: str = "folder"
    uri: str
    label: str | None = None
    scope: Literal["organization", "workspace", "private"] = "organization"
    workspace_label: str | None = None
    include_glob: str | None = None
    exclude_glob: str | None = None
    credentials: dict[str, Any] | None = Field(default=None, description="Stored encrypted; never returned")


class SourceResponse(BaseModel):
    id: str
    tenant_id: str
    source_type: str
    uri: str
    label: str | None = None
    scope: str
    workspace_label: str | None = None
    include_glob: str | None = None
    exclude_glob: str | None = None
    is_active: bool
    last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DeleteResponse(BaseModel):
    status: Literal["ok", "noop"]
    deleted: int


class IngestRequest(BaseModel):
    source_id: str


class JobStatsModel(BaseModel):
    documents: int = 0
    chunks: int = 0
    errors: int = 0
    pending_large_files: int = 0
    current_file: str | None = None
    total_files: int = 0
    processed_files: int = 0
    skipped_files: int = 0
    unchanged_files: int = 0
    vector_errors: int = 0


class JobResponse(BaseModel):
    id: str
    source_id: str
    tenant_id: str
    status: Literal["queued", "running", "processing_large_files", "completed", "failed", "cancelled"]
    stats: JobStatsModel
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime | None = None


class QueryFilters(BaseModel):
    source_ids: list[str] | None = None
    document_ids: list[str] | None = None
    workspace_label: str | None = None
    visibility_scope: str | None = None


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    k: int = Field(default=6, ge=1, le=50)
    filters: QueryFilters | None = None


class ChunkResult(BaseModel):
    chunk_id: str
    document_id: str
    score: float
    text: str
    char_start: int
    char_end: int
    provenance: dict[str, Any]


class QueryResponse(BaseModel):
    query: str
    tenant_id: str
    results: list[ChunkResult]


class OrphanGroupModel(BaseModel):
    document_id: str
    tenant_id: str
    chunk_ids: list[str]


class OrphanReportResponse(BaseModel):
    groups: list[OrphanGroupModel]
    document_ids: list[str]
    chunk_count: int


class ReconcileRequest(BaseModel):
    dry_run: bool = True
    delete_documents: bool = True


class ReconcileResponse(BaseModel):
    dry_run: bool
    deleted_chunks: int
    deleted_documents: int
    deleted_vectors: int
    report: OrphanReportResponse


class StaleVectorRequest(BaseModel):
    dry_run: bool = True


class StaleVectorResponse(BaseModel):
    dry_run: bool
    found: int
    deleted: int
    vector_ids: list[str]


class ReindexResponse(BaseModel):
    document_id: str
    status: Literal["queued"] = "queued"


__all__ = [
    "SourceCreateRequest",
    "SourceResponse",
    "DeleteResponse",
    "IngestRequest",
    "JobStatsModel",
    "JobResponse",
    "QueryFilters",
    "QueryRequest",
    "ChunkResult",
    "QueryResponse",
    "OrphanGroupModel",
    "OrphanReportResponse",
    "ReconcileRequest",
    "ReconcileResponse",
    "StaleVectorRequest",
    "StaleVectorResponse",
    "ReindexResponse",
]
