"""Ingest job state machine with optimistic, retried stats updates."""

from __future__ import annotations

import weakref
from typing import Callable

from knowledge_hub.core.errors import InvalidTransition, JobNotFound, StatsUpdateRace
from knowledge_hub.core.logging import get_logger, log_context
from knowledge_hub.models.entities import IngestJob, JobStatus
from knowledge_hub.pipeline.cancellation import CancellationToken
from knowledge_hub.pipeline.result import StageStats
from knowledge_hub.storage.base import JobRepository
from knowledge_hub.utils.ids import new_id
from knowledge_hub.utils.time import now_ms

logger = get_logger(__name__)

_ALLOWED: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.PROCESSING_LARGE_FILES, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.PROCESSING_LARGE_FILES: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
}

# returns False when there is nothing to write
Mutation = Callable[[IngestJob], bool]


class IngestJobTracker:
    """Owns every write to an ingest job.

    Each update re-reads the job, applies a mutation and writes it back with a
    compare-and-swap on the job version, so counters from concurrent units
    are never lost.
    """

    def __init__(self, jobs: JobRepository, max_retries: int = 25) -> None:
        self.jobs = jobs
        self.max_retries = max_retries
        self._tokens: "weakref.WeakValueDictionary[str, CancellationToken]" = weakref.WeakValueDictionary()

    def create(self, source_id: str, tenant_id: str) -> IngestJob:
        job = IngestJob(id=new_id("job"), source_id=source_id, tenant_id=tenant_id, status=JobStatus.QUEUED)
        self.jobs.create(job)
        logger.info("Ingest job queued", extra=log_context(job_id=job.id, source_id=source_id, tenant_id=tenant_id))
        return job

    def get(self, job_id: str) -> IngestJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def token(self, job_id: str) -> CancellationToken:
        token = self._tokens.get(job_id)
        if token is None:
            token = CancellationToken(probe=lambda: self._is_cancelled(job_id))
            self._tokens[job_id] = token
        return token

    def start(self, job_id: str) -> IngestJob:
        def mutate(job: IngestJob) -> bool:
            if job.status.is_running:
                # redelivered source unit
                return False
            _transition(job, JobStatus.RUNNING)
            job.started_at = now_ms()
            job.stats.current_file = None
            return True

        return self._update(job_id, mutate)

    def record(self, job_id: str, stats: StageStats) -> IngestJob:
        def mutate(job: IngestJob) -> bool:
            _apply_stats(job, stats)
            return True

        return self._update(job_id, mutate)

    def set_progress(self, job_id: str, total_files: int | None = None, current_file: str | None = None) -> IngestJob:
        def mutate(job: IngestJob) -> bool:
            if total_files is not None:
                job.stats.total_files = total_files
            if current_file is not None:
                job.stats.current_file = current_file
            return True

        return self._update(job_id, mutate)

    def add_pending_large_file(self, job_id: str) -> IngestJob:
        def mutate(job: IngestJob) -> bool:
            job.stats.pending_large_files += 1
            return True

        return self._update(job_id, mutate)

    def report_large_file(self, job_id: str, stats: StageStats) -> IngestJob:
        """Called exactly once per deferred unit, whether it succeeded or failed."""

        def mutate(job: IngestJob) -> bool:
            _apply_stats(job, stats)
            job.stats.pending_large_files = max(0, job.stats.pending_large_files - 1)
            remaining = job.stats.pending_large_files
            if remaining == 0 and job.status is JobStatus.PROCESSING_LARGE_FILES:
                _complete(job)
            elif job.status is JobStatus.PROCESSING_LARGE_FILES:
                job.stats.current_file = f"Processing {remaining} large file(s) in background..."
            return True

        job = self._update(job_id, mutate)
        logger.info(
            "Large file reported",
            extra=log_context(
                job_id=job_id,
                status=job.status.value,
                pending_large_files=job.stats.pending_large_files,
                errors=stats.error_count,
            ),
        )
        return job

    def finish_enumeration(self, job_id: str) -> IngestJob:
        def mutate(job: IngestJob) -> bool:
            if job.status is not JobStatus.RUNNING:
                return False
            pending = job.stats.pending_large_files
            if pending > 0:
                _transition(job, JobStatus.PROCESSING_LARGE_FILES)
                job.stats.current_file = f"Processing {pending} large file(s) in background..."
            else:
                _complete(job)
            return True

        job = self._update(job_id, mutate)
        logger.info(
            "Source enumeration finished",
            extra=log_context(job_id=job_id, status=job.status.value, stats=job.stats.to_dict()),
        )
        return job

    def fail(self, job_id: str, error: BaseException | str) -> IngestJob:
        message = str(error) or type(error).__name__

        def mutate(job: IngestJob) -> bool:
            _transition(job, JobStatus.FAILED)
            job.error = message
            job.finished_at = now_ms()
            return True

        job = self._update(job_id, mutate)
        logger.error("Ingest job failed", extra=log_context(job_id=job_id, error=message))
        return job

    def cancel(self, job_id: str) -> IngestJob:
        def mutate(job: IngestJob) -> bool:
            if job.status is JobStatus.CANCELLED:
                return False
            _transition(job, JobStatus.CANCELLED)
            job.finished_at = now_ms()
            job.stats.current_file = None
            return True

        job = self._update(job_id, mutate, ignore_terminal=False)
        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()
        logger.info("Ingest job cancelled", extra=log_context(job_id=job_id))
        return job

    def _is_cancelled(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        return job is not None and job.status is JobStatus.CANCELLED

    def _update(self, job_id: str, mutate: Mutation, ignore_terminal: bool = True) -> IngestJob:
        for _ in range(self.max_retries):
            current = self.get(job_id)
            if ignore_terminal and current.status.is_terminal:
                logger.info(
                    "Ignoring update to finished job",
                    extra=log_context(job_id=job_id, status=current.status.value),
                )
                return current
            updated = current.copy()
            if not mutate(updated):
                return current
            if self.jobs.compare_and_swap(updated, current.version):
                return updated
            logger.debug("Job update lost a race, retrying", extra=log_context(job_id=job_id))
        raise StatsUpdateRace(f"job {job_id}: update lost {self.max_retries} consecutive races")


def _transition(job: IngestJob, target: JobStatus) -> None:
    if target not in _ALLOWED.get(job.status, frozenset()):
        raise InvalidTransition(job.id, job.status.value, target.value)
    job.status = target


def _complete(job: IngestJob) -> None:
    _transition(job, JobStatus.COMPLETED)
    job.finished_at = now_ms()
    job.stats.current_file = "Completed"


def _apply_stats(job: IngestJob, stats: StageStats) -> None:
    job.stats.documents += stats.documents
    job.stats.chunks += stats.chunks
    job.stats.errors += stats.error_count
    job.stats.processed_files += stats.files
    job.stats.skipped_files += stats.skipped
    job.stats.unchanged_files += stats.unchanged
    job.stats.vector_errors += stats.vector_errors


__all__ = ["IngestJobTracker"]
