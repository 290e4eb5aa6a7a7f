"""Celery task for long-running finance imports."""

from __future__ import annotations

import logging

from finance_importer.db.models.import_job import FAILED
from finance_importer.db.session import get_session_factory
from finance_importer.services.import_orchestrator import run_import_job
from finance_importer.services.job_tracker import JobTracker
from finance_importer.storage.file_storage import discard_staged, load_staged
from finance_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="finance_importer.workers.tasks.import_records")
def import_records_task(self, job_id: str, location: str, file_format: str) -> dict:
    """Load the staged upload and drive the job to a terminal status."""
    try:
        try:
            content = load_staged(location, job_id)
        except FileNotFoundError as exc:
            logger.error(f"Staged upload missing for job {job_id}: {exc}")
            JobTracker(get_session_factory()).mark_terminal(
                job_id, FAILED, error_message=str(exc)
            )
            raise

        job = run_import_job(job_id, content, file_format)
        logger.info(f"Import task for job {job_id} finished with status {job.status}")
        return {"job_id": job_id, "status": job.status, "processed_rows": job.processed_rows}
    finally:
        discard_staged(location, job_id)
