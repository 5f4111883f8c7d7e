"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any

VECTOR_METADATA_VERSION = 1


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    PROCESSING_LARGE_FILES = "processing_large_files"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_running(self) -> bool:
        return self in (JobStatus.RUNNING, JobStatus.PROCESSING_LARGE_FILES)


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass(slots=True)
class SourceRecord:
    id: str
    tenant_id: str
    source_type: str
    uri: str
    label: str | None = None
    scope: str = "organization"
    workspace_label: str | None = None
    include_glob: str | None = None
    exclude_glob: str | None = None
    is_active: bool = True
    last_synced_at: int | None = None
    created_at: int | None = None
    updated_at: int | None = None


@dataclass(slots=True, frozen=True)
class FileDescriptor:
    """A candidate file as reported by a source."""

    remote_id: str
    name: str
    size: int
    mime_type: str
    source_type: str
    web_url: str | None = None
    modified_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FileDescriptor":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass(slots=True)
class Document:
    id: str
    tenant_id: str
    source_id: str | None
    external_id: str | None
    title: str | None
    mime: str | None
    sha256: str | None
    size_bytes: int | None
    blob_pointer: str | None
    fetched_at: int | None
    created_at: int | None = None
    updated_at: int | None = None


@dataclass(slots=True)
class Chunk:
    id: str
    document_id: str
    tenant_id: str
    ordinal: int
    text: str
    char_start: int
    char_end: int
    token_count: int
    visibility_scope: str = "organization"
    workspace_label: str | None = None
    embedding: list[float] | None = None
    created_at: int | None = None


@dataclass(slots=True)
class JobStats:
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

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "JobStats":
        if not payload:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass(slots=True)
class IngestJob:
    id: str
    source_id: str
    tenant_id: str
    status: JobStatus
    stats: JobStats = field(default_factory=JobStats)
    error: str | None = None
    version: int = 0
    started_at: int | None = None
    finished_at: int | None = None
    created_at: int | None = None

    def copy(self) -> "IngestJob":
        return replace(self, stats=replace(self.stats))


@dataclass(slots=True)
class VectorMetadata:
    """Fixed metadata schema stored next to every vector."""

    tenant_id: str
    document_id: str | None = None
    chunk_id: str | None = None
    source_id: str | None = None
    visibility_scope: str = "organization"
    workspace_label: str | None = None
    char_start: int | None = None
    char_end: int | None = None
    extras: dict[str, Any] = field(default_factory=dict)
    schema_version: int = VECTOR_METADATA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "VectorMetadata":
        known = {f.name for f in fields(cls)}
        extras = dict(payload.get("extras") or {})
        # unknown keys from older writers are kept rather than dropped
        extras.update({key: value for key, value in payload.items() if key not in known})
        values = {key: value for key, value in payload.items() if key in known and key != "extras"}
        return cls(extras=extras, **values)


@dataclass(slots=True)
class VectorRecord:
    id: str
    values: list[float]
    metadata: VectorMetadata


@dataclass(slots=True)
class VectorMatch:
    id: str
    score: float
    metadata: VectorMetadata


__all__ = [
    "JobStatus",
    "SourceRecord",
    "FileDescriptor",
    "Document",
    "Chunk",
    "JobStats",
    "IngestJob",
    "VectorMetadata",
    "VectorRecord",
    "VectorMatch",
    "VECTOR_METADATA_VERSION",
]
