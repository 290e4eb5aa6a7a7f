"""Persisted import job state: creation, transitions, progress and cancellation."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from finance_importer.db.models.import_job import (
    CANCELLED,
    PENDING,
    PROCESSING,
    TERMINAL_STATUSES,
    ImportJob,
)
from finance_importer.services.errors import JobConflict, JobForbidden, JobNotFound

logger = logging.getLogger(__name__)


@dataclass
class ProgressDelta:
    """Counters accumulated by the orchestrator between two flushes."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def add(self, result: Any) -> None:
        self.processed += result.processed
        self.succeeded += result.succeeded
        self.failed += result.failed
        self.created += result.created
        self.updated += result.updated
        self.errors.extend(result.errors)

    def is_empty(self) -> bool:
        return self.processed == 0 and not self.errors


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _apply(job: ImportJob, delta: ProgressDelta) -> None:
    job.processed_rows = (job.processed_rows or 0) + delta.processed
    job.succeeded_rows = (job.succeeded_rows or 0) + delta.succeeded
    job.failed_rows = (job.failed_rows or 0) + delta.failed
    job.created_rows = (job.created_rows or 0) + delta.created
    job.updated_rows = (job.updated_rows or 0) + delta.updated
    if delta.errors:
        # Reassign so the JSON column is flagged dirty
        job.errors = list(job.errors or []) + list(delta.errors)


class JobTracker:
    """Owns every write to ImportJob rows.

    Each call uses its own short-lived session so job bookkeeping never shares
    a transaction with the batch being written.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _detach(session: Session, job: ImportJob) -> ImportJob:
        session.flush()
        session.refresh(job)
        session.expunge(job)
        return job

    def create(
        self,
        *,
        owner_id: str,
        total_rows: int,
        file_format: str,
        record_type: str,
        source_filename: str | None = None,
        mapping: dict[str, str] | None = None,
        options: dict[str, Any] | None = None,
        warnings: list[dict[str, Any]] | None = None,
    ) -> ImportJob:
        """Persist a pending job before any work starts."""
        with self._session() as session:
            job = ImportJob(
                owner_id=owner_id,
                record_type=record_type,
                format=file_format,
                source_filename=source_filename,
                status=PENDING,
                total_rows=total_rows,
                errors=[],
                warnings=warnings or [],
                mapping=mapping,
                options=options,
            )
            session.add(job)
            job = self._detach(session, job)
        logger.info(f"Created {record_type} import job {job.id} ({total_rows} rows) for {owner_id}")
        return job

    def get_status(self, job_id: str) -> ImportJob:
        with self._session() as session:
            job = session.get(ImportJob, job_id)
            if job is None:
                raise JobNotFound(job_id)
            return self._detach(session, job)

    def get_for_owner(self, job_id: str, requester_id: str) -> ImportJob:
        job = self.get_status(job_id)
        if job.owner_id != requester_id:
            raise JobForbidden(job_id)
        return job

    def list_for_owner(
        self, owner_id: str, limit: int = 20, status: str | None = None
    ) -> list[ImportJob]:
        with self._session() as session:
            query = select(ImportJob).where(ImportJob.owner_id == owner_id)
            if status:
                query = query.where(ImportJob.status == status)
            query = query.order_by(ImportJob.created_at.desc(), ImportJob.id).limit(limit)
            jobs = session.scalars(query).all()
            for job in jobs:
                session.expunge(job)
            return list(jobs)

    def mark_processing(self, job_id: str) -> bool:
        """pending -> processing. False when the job already left pending."""
        with self._session() as session:
            result = session.execute(
                update(ImportJob)
                .where(ImportJob.id == job_id, ImportJob.status == PENDING)
                .values(status=PROCESSING, started_at=_now())
            )
            return result.rowcount == 1

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._session() as session:
            row = session.execute(
                select(ImportJob.cancel_requested, ImportJob.status).where(ImportJob.id == job_id)
            ).first()
        if row is None:
            raise JobNotFound(job_id)
        return bool(row.cancel_requested) or row.status == CANCELLED

    def update_progress(self, job_id: str, delta: ProgressDelta) -> None:
        """Add counters accumulated since the last flush."""
        if delta.is_empty():
            return
        with self._session() as session:
            job = session.get(ImportJob, job_id, with_for_update=True)
            if job is None:
                raise JobNotFound(job_id)
            if job.status != PROCESSING:
                logger.warning(f"Ignoring progress for job {job_id} in status {job.status}")
                return
            _apply(job, delta)

    def mark_terminal(
        self,
        job_id: str,
        status: str,
        *,
        delta: ProgressDelta | None = None,
        error_message: str | None = None,
        failed_at_row: int | None = None,
    ) -> ImportJob:
        """Finalize the job. Already-terminal jobs are returned untouched."""
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status} is not a terminal status")
        with self._session() as session:
            job = session.get(ImportJob, job_id, with_for_update=True)
            if job is None:
                raise JobNotFound(job_id)
            if job.is_terminal:
                logger.warning(f"Job {job_id} already {job.status}; not moving to {status}")
                return self._detach(session, job)
            if delta is not None:
                _apply(job, delta)
            job.status = status
            job.completed_at = _now()
            if error_message is not None:
                job.error_message = error_message
            if failed_at_row is not None:
                job.failed_at_row = failed_at_row
            return self._detach(session, job)

    def cancel(self, job_id: str, requester_id: str) -> bool:
        """Request cancellation.

        Pending jobs are cancelled on the spot; processing jobs are flagged and
        stop at the next batch boundary.
        """
        with self._session() as session:
            job = session.get(ImportJob, job_id, with_for_update=True)
            if job is None:
                raise JobNotFound(job_id)
            if job.owner_id != requester_id:
                raise JobForbidden(job_id)
            if job.is_terminal:
                raise JobConflict(f"Job {job_id} is already {job.status}")

            job.cancel_requested = True
            if job.status == PENDING:
                job.status = CANCELLED
                job.completed_at = _now()
        logger.info(f"Cancellation requested for job {job_id} by {requester_id}")
        return True

    def cleanup_old_jobs(self, max_age_hours: int = 24) -> int:
        """Delete terminal jobs that finished before the retention window."""
        cutoff = _now() - timedelta(hours=max_age_hours)
        with self._session() as session:
            result = session.execute(
                delete(ImportJob).where(
                    ImportJob.status.in_(TERMINAL_STATUSES),
                    ImportJob.completed_at < cutoff,
                )
            )
            removed = result.rowcount or 0
        logger.info(f"Removed {removed} import jobs older than {max_age_hours}h")
        return removed
