from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from finance_importer.db.models.import_job import (
    CANCELLED,
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    ImportJob,
)
from finance_importer.services.errors import JobConflict, JobForbidden, JobNotFound
from finance_importer.services.job_tracker import ProgressDelta
from tests.helpers import create_job, create_processing_job


def delta(processed, failed=0, errors=None):
    return ProgressDelta(
        processed=processed,
        succeeded=processed - failed,
        failed=failed,
        created=processed - failed,
        errors=errors or [],
    )


def test_create_persists_a_pending_job(tracker):
    job = create_job(tracker, total_rows=250, warnings=[{"row_index": 3, "field": "category", "message": "w"}])

    stored = tracker.get_status(job.id)
    assert stored.status == PENDING
    assert stored.total_rows == 250
    assert stored.processed_rows == 0
    assert stored.errors == []
    assert stored.warnings[0]["row_index"] == 3
    assert stored.created_at is not None
    assert stored.cancel_requested is False


def test_get_status_unknown_job(tracker):
    with pytest.raises(JobNotFound):
        tracker.get_status("missing")


def test_get_for_owner_rejects_other_users(tracker):
    job = create_job(tracker, owner_id="alice")
    assert tracker.get_for_owner(job.id, "alice").id == job.id
    with pytest.raises(JobForbidden):
        tracker.get_for_owner(job.id, "bob")


def test_mark_processing_only_moves_pending_jobs(tracker):
    job = create_job(tracker)

    assert tracker.mark_processing(job.id) is True
    assert tracker.mark_processing(job.id) is False

    stored = tracker.get_status(job.id)
    assert stored.status == PROCESSING
    assert stored.started_at is not None


def test_update_progress_accumulates_counters_and_errors(tracker):
    job = create_processing_job(tracker, total_rows=300)
    error = {"row_index": 7, "field": "amount", "message": "bad"}

    tracker.update_progress(job.id, delta(100, failed=1, errors=[error]))
    tracker.update_progress(job.id, delta(100))

    stored = tracker.get_status(job.id)
    assert stored.processed_rows == 200
    assert stored.succeeded_rows == 199
    assert stored.failed_rows == 1
    assert stored.errors == [error]


def test_update_progress_is_ignored_once_terminal(tracker):
    job = create_processing_job(tracker)
    tracker.mark_terminal(job.id, COMPLETED, delta=delta(10))

    tracker.update_progress(job.id, delta(5))

    assert tracker.get_status(job.id).processed_rows == 10


def test_terminal_status_is_final(tracker):
    job = create_processing_job(tracker)

    first = tracker.mark_terminal(job.id, FAILED, error_message="boom", failed_at_row=101)
    second = tracker.mark_terminal(job.id, COMPLETED, delta=delta(5))

    assert first.status == FAILED
    assert first.completed_at is not None
    assert second.status == FAILED
    assert second.processed_rows == 0
    assert second.error_message == "boom"
    assert second.failed_at_row == 101


def test_mark_terminal_requires_a_terminal_status(tracker):
    job = create_job(tracker)
    with pytest.raises(ValueError):
        tracker.mark_terminal(job.id, PROCESSING)


def test_cancel_pending_job_is_immediate(tracker):
    job = create_job(tracker)

    assert tracker.cancel(job.id, "user-1") is True

    stored = tracker.get_status(job.id)
    assert stored.status == CANCELLED
    assert stored.completed_at is not None
    assert tracker.mark_processing(job.id) is False


def test_cancel_processing_job_sets_the_flag(tracker):
    job = create_processing_job(tracker)

    tracker.cancel(job.id, "user-1")

    stored = tracker.get_status(job.id)
    assert stored.status == PROCESSING
    assert stored.cancel_requested is True
    assert tracker.is_cancel_requested(job.id) is True


def test_cancel_checks_owner_and_status(tracker):
    job = create_processing_job(tracker)
    tracker.update_progress(job.id, delta(4, failed=1))

    with pytest.raises(JobForbidden):
        tracker.cancel(job.id, "someone-else")
    stored = tracker.get_status(job.id)
    assert stored.status == PROCESSING
    assert stored.cancel_requested is False
    assert (stored.processed_rows, stored.failed_rows) == (4, 1)

    with pytest.raises(JobNotFound):
        tracker.cancel("missing", "user-1")

    tracker.mark_terminal(job.id, COMPLETED)
    with pytest.raises(JobConflict):
        tracker.cancel(job.id, "user-1")
    stored = tracker.get_status(job.id)
    assert stored.status == COMPLETED
    assert stored.cancel_requested is False
    assert (stored.processed_rows, stored.failed_rows) == (4, 1)
    assert tracker.is_cancel_requested(job.id) is False


def test_list_for_owner_filters_by_owner_and_status(tracker):
    first = create_job(tracker, owner_id="alice")
    second = create_job(tracker, owner_id="alice")
    create_job(tracker, owner_id="bob")
    tracker.cancel(second.id, "alice")

    assert {job.id for job in tracker.list_for_owner("alice")} == {first.id, second.id}
    assert [job.id for job in tracker.list_for_owner("alice", status=CANCELLED)] == [second.id]
    assert len(tracker.list_for_owner("alice", limit=1)) == 1


def test_cleanup_removes_only_old_terminal_jobs(tracker, session_factory):
    old = create_processing_job(tracker)
    tracker.mark_terminal(old.id, COMPLETED)
    recent = create_processing_job(tracker)
    tracker.mark_terminal(recent.id, COMPLETED)
    running = create_processing_job(tracker)

    with session_factory() as session:
        session.execute(
            update(ImportJob)
            .where(ImportJob.id == old.id)
            .values(completed_at=datetime.now(timezone.utc) - timedelta(hours=48))
        )
        session.commit()

    assert tracker.cleanup_old_jobs(24) == 1

    with pytest.raises(JobNotFound):
        tracker.get_status(old.id)
    assert tracker.get_status(recent.id).status == COMPLETED
    assert tracker.get_status(running.id).status == PROCESSING
