"""Tests for the ingest job state machine."""

import itertools

import pytest

from knowledge_hub.core.errors import InvalidTransition, JobNotFound, StatsUpdateRace
from knowledge_hub.models.entities import JobStatus
from knowledge_hub.pipeline.result import StageStats
from knowledge_hub.pipeline.tracker import IngestJobTracker
from knowledge_hub.storage.sqlite import SQLiteJobRepository


@pytest.fixture
def tracker(context) -> IngestJobTracker:
    return context.tracker


def test_small_run_completes_after_enumeration(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    assert job.status is JobStatus.QUEUED
    tracker.start(job.id)
    tracker.record(job.id, StageStats(files=2, documents=2, chunks=5))
    job = tracker.finish_enumeration(job.id)
    assert job.status is JobStatus.COMPLETED
    assert job.stats.documents == 2
    assert job.stats.processed_files == 2
    assert job.finished_at is not None


@pytest.mark.parametrize("order", list(itertools.permutations(["ok", "error", "ok-late"])))
def test_pending_large_files_converge_in_any_order(tracker: IngestJobTracker, order) -> None:
    job = tracker.create("src", "acme")
    tracker.start(job.id)
    for _ in range(3):
        tracker.add_pending_large_file(job.id)
    job = tracker.finish_enumeration(job.id)
    assert job.status is JobStatus.PROCESSING_LARGE_FILES

    for index, outcome in enumerate(order):
        stats = StageStats(files=1, documents=1, chunks=3)
        if outcome == "error":
            stats = StageStats()
            stats.add_error("big.txt", "large-file", "boom")
        job = tracker.report_large_file(job.id, stats)
        if index < 2:
            assert job.status is JobStatus.PROCESSING_LARGE_FILES
    assert job.status is JobStatus.COMPLETED
    assert job.stats.pending_large_files == 0
    assert job.stats.errors == 1
    assert job.stats.documents == 2


def test_large_file_reported_before_enumeration_finishes(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    tracker.start(job.id)
    tracker.add_pending_large_file(job.id)
    job = tracker.report_large_file(job.id, StageStats(files=1, documents=1))
    assert job.status is JobStatus.RUNNING
    job = tracker.finish_enumeration(job.id)
    assert job.status is JobStatus.COMPLETED


def test_fail_records_error(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    tracker.start(job.id)
    job = tracker.fail(job.id, RuntimeError("listing exploded"))
    assert job.status is JobStatus.FAILED
    assert job.error == "listing exploded"


def test_updates_to_finished_jobs_are_ignored(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    tracker.start(job.id)
    tracker.finish_enumeration(job.id)
    job = tracker.record(job.id, StageStats(documents=10))
    assert job.stats.documents == 0
    assert tracker.fail(job.id, "late").status is JobStatus.COMPLETED


def test_cancel_signals_token_and_is_idempotent(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    tracker.start(job.id)
    token = tracker.token(job.id)
    assert not token.cancelled
    assert tracker.cancel(job.id).status is JobStatus.CANCELLED
    assert token.cancelled
    assert tracker.cancel(job.id).status is JobStatus.CANCELLED


def test_cancel_observed_by_fresh_token(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    tracker.cancel(job.id)
    assert tracker.token(job.id).cancelled


def test_cancel_completed_job_is_rejected(tracker: IngestJobTracker) -> None:
    job = tracker.create("src", "acme")
    tracker.start(job.id)
    tracker.finish_enumeration(job.id)
    with pytest.raises(InvalidTransition):
        tracker.cancel(job.id)


def test_unknown_job(tracker: IngestJobTracker) -> None:
    with pytest.raises(JobNotFound):
        tracker.get("missing")


class _RacingRepository(SQLiteJobRepository):
    """Loses the first ``losses`` compare-and-swaps to a concurrent writer."""

    def __init__(self, db, losses: int) -> None:
        super().__init__(db)
        self.losses = losses

    def compare_and_swap(self, job, expected_version):
        if self.losses > 0:
            self.losses -= 1
            current = self.get(job.id)
            current.stats.chunks += 1
            super().compare_and_swap(current, current.version)
            return False
        return super().compare_and_swap(job, expected_version)


def test_lost_races_are_retried_without_losing_updates(context) -> None:
    repo = _RacingRepository(context.db, losses=2)
    tracker = IngestJobTracker(repo, max_retries=5)
    job = tracker.create("src", "acme")
    job = tracker.record(job.id, StageStats(documents=1, chunks=10))
    assert job.stats.documents == 1
    assert job.stats.chunks == 12


def test_race_budget_exhausted(context) -> None:
    repo = _RacingRepository(context.db, losses=10)
    tracker = IngestJobTracker(repo, max_retries=3)
    job = tracker.create("src", "acme")
    with pytest.raises(StatsUpdateRace):
        tracker.record(job.id, StageStats(documents=1))
