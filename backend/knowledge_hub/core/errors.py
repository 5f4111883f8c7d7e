"""Error taxonomy for the ingestion core.

Only configuration errors and source enumeration errors end an ingest run.
Everything raised while handling a single file, batch or vector write is
absorbed into the run's stats by the pipeline.
"""

from __future__ import annotations


class KnowledgeHubError(Exception):
    """Base class for all domain errors."""


class ConfigurationError(KnowledgeHubError):
    """Invalid static configuration; raised at startup."""


class ChunkingConfigError(ConfigurationError):
    """Chunk size and overlap do not describe a valid window."""


class EmbeddingConfigError(ConfigurationError):
    """The embedding client cannot be constructed."""


class SourceEnumerationError(KnowledgeHubError):
    """Listing files from a source failed; fatal to the run."""


class FetchError(KnowledgeHubError):
    """Downloading a single file failed."""


class ExtractionError(KnowledgeHubError):
    """Text could not be extracted from a file."""


class EmbeddingBatchError(KnowledgeHubError):
    """An embedding request failed after exhausting its retries."""


class VectorStoreError(KnowledgeHubError):
    """A vector store read or write failed."""


class StatsUpdateRace(KnowledgeHubError):
    """Optimistic job update kept losing to concurrent writers."""


class InvalidTransition(KnowledgeHubError):
    """Requested job status change is not allowed from the current status."""

    def __init__(self, job_id: str, current: str, requested: str) -> None:
        super().__init__(f"job {job_id}: cannot move from {current} to {requested}")
        self.job_id = job_id
        self.current = current
        self.requested = requested


class JobNotFound(KnowledgeHubError):
    """No ingest job exists for the given id."""


class JobCancelled(KnowledgeHubError):
    """Raised inside a unit once cancellation has been observed."""


class UnitTimeout(KnowledgeHubError):
    """A unit ran past its lane deadline."""


__all__ = [
    "KnowledgeHubError",
    "ConfigurationError",
    "ChunkingConfigError",
    "EmbeddingConfigError",
    "SourceEnumerationError",
    "FetchError",
    "ExtractionError",
    "EmbeddingBatchError",
    "VectorStoreError",
    "StatsUpdateRace",
    "InvalidTransition",
    "JobNotFound",
    "JobCancelled",
    "UnitTimeout",
]
