"""Typed stage results.

``Ok`` carries stats that may include absorbed per-item errors; ``Fatal``
means the run itself failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass(slots=True, frozen=True)
class ItemError:
    item: str
    stage: str
    message: str


@dataclass(slots=True)
class StageStats:
    files: int = 0
    documents: int = 0
    chunks: int = 0
    indexed: int = 0
    unchanged: int = 0
    empty: int = 0
    skipped: int = 0
    deferred: int = 0
    vector_errors: int = 0
    embedding_errors: int = 0
    cancelled: bool = False
    errors: list[ItemError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def add_error(self, item: str, stage: str, error: BaseException | str) -> None:
        self.errors.append(ItemError(item=item, stage=stage, message=str(error)))

    def merge(self, other: "StageStats") -> "StageStats":
        self.files += other.files
        self.documents += other.documents
        self.chunks += other.chunks
        self.indexed += other.indexed
        self.unchanged += other.unchanged
        self.empty += other.empty
        self.skipped += other.skipped
        self.deferred += other.deferred
        self.vector_errors += other.vector_errors
        self.embedding_errors += other.embedding_errors
        self.cancelled = self.cancelled or other.cancelled
        self.errors.extend(other.errors)
        return self


@dataclass(slots=True, frozen=True)
class Ok:
    stats: StageStats
    ok: bool = True


@dataclass(slots=True, frozen=True)
class Fatal:
    error: Exception
    stats: StageStats = field(default_factory=StageStats)
    ok: bool = False


StageResult = Union[Ok, Fatal]


__all__ = ["ItemError", "StageStats", "Ok", "Fatal", "StageResult"]
