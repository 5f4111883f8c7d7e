"""Queue message shapes for pipeline units."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from knowledge_hub.models.entities import FileDescriptor


class Lane(str, Enum):
    DEFAULT = "default"
    LARGE_FILES = "large-files"


@dataclass(frozen=True, slots=True)
class IngestSourceMessage:
    source_id: str
    tenant_id: str
    job_id: str

    lane: ClassVar[Lane] = Lane.DEFAULT


@dataclass(frozen=True, slots=True)
class CreateChunksMessage:
    document_id: str
    tenant_id: str
    text: str

    lane: ClassVar[Lane] = Lane.DEFAULT


@dataclass(frozen=True, slots=True)
class EmbedChunksMessage:
    chunk_ids: tuple[str, ...]
    tenant_id: str
    job_id: str | None = None

    lane: ClassVar[Lane] = Lane.DEFAULT


@dataclass(frozen=True, slots=True)
class LargeFileMessage:
    source_id: str
    tenant_id: str
    job_id: str
    file: FileDescriptor
    credentials: dict[str, Any] = field(default_factory=dict, compare=False)

    lane: ClassVar[Lane] = Lane.LARGE_FILES


@dataclass(frozen=True, slots=True)
class ReindexDocumentMessage:
    document_id: str
    tenant_id: str

    lane: ClassVar[Lane] = Lane.DEFAULT


@dataclass(frozen=True, slots=True)
class CleanupVectorsMessage:
    chunk_ids: tuple[str, ...]
    tenant_id: str

    lane: ClassVar[Lane] = Lane.DEFAULT


Message = Union[
    IngestSourceMessage,
    CreateChunksMessage,
    EmbedChunksMessage,
    LargeFileMessage,
    ReindexDocumentMessage,
    CleanupVectorsMessage,
]


__all__ = [
    "Lane",
    "Message",
    "IngestSourceMessage",
    "CreateChunksMessage",
    "EmbedChunksMessage",
    "LargeFileMessage",
    "ReindexDocumentMessage",
    "CleanupVectorsMessage",
]
