"""Periodic housekeeping for import jobs."""

from __future__ import annotations

from finance_importer.core.config import get_settings
from finance_importer.db.session import get_session_factory
from finance_importer.services.job_tracker import JobTracker
from finance_importer.workers.celery_app import celery_app


@celery_app.task(name="finance_importer.workers.tasks.cleanup_import_jobs")
def cleanup_import_jobs_task(max_age_hours: int | None = None) -> int:
    hours = max_age_hours or get_settings().job_retention_hours
    return JobTracker(get_session_factory()).cleanup_old_jobs(hours)
