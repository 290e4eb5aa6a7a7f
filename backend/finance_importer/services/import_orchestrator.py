"""Drive one import job from its row sequence to a terminal status."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable
from datetime import date

from sqlalchemy.orm import sessionmaker

from finance_importer.core.config import get_settings
from finance_importer.db.models.import_job import (
    CANCELLED,
    COMPLETED,
    FAILED,
    PROCESSING,
    ImportJob,
)
from finance_importer.db.session import get_session_factory
from finance_importer.services.batch_processor import BatchProcessor, ImportOptions
from finance_importer.services.errors import PersistenceError
from finance_importer.services.job_tracker import JobTracker, ProgressDelta
from finance_importer.services.progress_tracker import publish_progress
from finance_importer.services.reference_cache import ReferenceCache
from finance_importer.services.row_parser import ParsedRow, RowSource
from finance_importer.utils.batching import chunked

logger = logging.getLogger(__name__)


class ImportOrchestrator:
    """Sequential batch loop for a single job.

    The loop checks the cancellation flag before pulling each batch, persists
    counters on a throttled cadence and always leaves the job in a terminal
    status, whatever goes wrong.
    """

    def __init__(
        self,
        tracker: JobTracker,
        session_factory: sessionmaker,
        *,
        batch_size: int | None = None,
        flush_every: int | None = None,
        publish: Callable[..., None] = publish_progress,
        today: date | None = None,
    ) -> None:
        settings = get_settings()
        self.tracker = tracker
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.import_batch_size
        self.flush_every = flush_every or settings.import_progress_flush_every
        self.publish = publish
        self.today = today

    def should_flush(self, batch_number: int, total_batches: int) -> bool:
        """Flush on the first batch, every ``flush_every`` batches after it, and the last.

        The terminal write in ``run`` persists whatever is still pending, so a
        250-row job with the defaults is persisted three times: after batch 1,
        after batch 3 and at the terminal write.
        """
        return (batch_number - 1) % self.flush_every == 0 or batch_number == total_batches

    def run(self, job_id: str, rows: Iterable[ParsedRow]) -> ImportJob:
        job = self.tracker.get_status(job_id)
        if not self.tracker.mark_processing(job_id):
            current = self.tracker.get_status(job_id)
            if current.status == PROCESSING:
                # Redelivered after the previous worker died mid-run
                logger.warning(f"Job {job_id} was already processing; marking it failed")
                final = self.tracker.mark_terminal(
                    job_id, FAILED, error_message="Worker lost during import"
                )
                persisted = ProgressDelta(
                    processed=final.processed_rows,
                    succeeded=final.succeeded_rows,
                    failed=final.failed_rows,
                    created=final.created_rows,
                    updated=final.updated_rows,
                )
                self._publish(job_id, persisted, final.total_rows, FAILED, "Import failed")
                return final
            logger.info(f"Job {job_id} is {current.status}, not starting")
            return current

        total_batches = math.ceil(job.total_rows / self.batch_size) if job.total_rows else 0
        pending = ProgressDelta()
        totals = ProgressDelta()
        batch_number = 0
        current_row: int | None = None
        started = time.perf_counter()

        self._publish(job_id, totals, job.total_rows, PROCESSING, "Processing")
        logger.info(
            f"Starting job {job_id}: {job.total_rows} rows in {total_batches} batches "
            f"of {self.batch_size}"
        )

        session = self.session_factory()
        try:
            cache = ReferenceCache.load(session, job.owner_id, job.record_type)
            processor = BatchProcessor(
                session,
                owner_id=job.owner_id,
                record_type=job.record_type,
                mapping=job.mapping or {},
                cache=cache,
                options=ImportOptions.from_dict(job.options),
                job_id=job_id,
                today=self.today,
            )

            batches = chunked(rows, self.batch_size)
            while True:
                if self.tracker.is_cancel_requested(job_id):
                    logger.info(f"Job {job_id} cancelled after {batch_number} batches")
                    final = self.tracker.mark_terminal(job_id, CANCELLED, delta=pending)
                    self._publish(job_id, totals, job.total_rows, CANCELLED, "Import cancelled")
                    return final

                current_row = totals.processed + 1
                batch = next(batches, None)
                if batch is None:
                    break
                batch_number += 1

                result = processor.process(batch)
                pending.add(result)
                totals.add(result)
                self._publish(
                    job_id,
                    totals,
                    job.total_rows,
                    PROCESSING,
                    f"Processed {totals.processed}/{job.total_rows} rows",
                )

                if self.should_flush(batch_number, total_batches):
                    self.tracker.update_progress(job_id, pending)
                    pending = ProgressDelta()
                    logger.info(
                        f"Job {job_id} batch {batch_number}/{total_batches}: "
                        f"{totals.processed}/{job.total_rows} rows processed"
                    )

            final = self.tracker.mark_terminal(job_id, COMPLETED, delta=pending)
            elapsed = time.perf_counter() - started
            logger.info(
                f"Job {job_id} completed in {elapsed:.1f}s "
                f"({totals.succeeded} succeeded, {totals.failed} failed)"
            )
            self._publish(job_id, totals, job.total_rows, COMPLETED, "Import complete")
            return final
        except PersistenceError as exc:
            session.rollback()
            return self._fail(job_id, pending, totals, job.total_rows, str(exc), exc.first_row_index)
        except Exception as exc:
            logger.error(f"Unexpected error running import job {job_id}: {exc}", exc_info=True)
            session.rollback()
            return self._fail(
                job_id, pending, totals, job.total_rows, f"Import failed: {exc}", current_row
            )
        finally:
            session.close()

    def _fail(
        self,
        job_id: str,
        pending: ProgressDelta,
        totals: ProgressDelta,
        total_rows: int,
        message: str,
        failed_at_row: int | None,
    ) -> ImportJob:
        logger.error(f"Job {job_id} failed at row {failed_at_row}: {message}")
        final = self.tracker.mark_terminal(
            job_id,
            FAILED,
            delta=pending,
            error_message=message,
            failed_at_row=failed_at_row,
        )
        self._publish(job_id, totals, total_rows, FAILED, "Import failed")
        return final

    def _publish(
        self,
        job_id: str,
        totals: ProgressDelta,
        total_rows: int,
        status: str,
        message: str,
    ) -> None:
        self.publish(
            job_id,
            totals.processed / total_rows if total_rows else 0.0,
            message=message,
            status=status,
            meta={
                "processed": totals.processed,
                "total": total_rows,
                "succeeded": totals.succeeded,
                "failed": totals.failed,
                "created": totals.created,
                "updated": totals.updated,
            },
        )


def run_import_job(
    job_id: str,
    content: bytes,
    file_format: str,
    session_factory: sessionmaker | None = None,
) -> ImportJob:
    """Entry point shared by the Celery task and in-process background dispatch."""
    factory = session_factory or get_session_factory()
    orchestrator = ImportOrchestrator(JobTracker(factory), factory)
    return orchestrator.run(job_id, RowSource(content, file_format))
