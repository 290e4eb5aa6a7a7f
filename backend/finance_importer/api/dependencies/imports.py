"""Dependencies wiring the import pipeline into request handlers."""

from __future__ import annotations

import logging

from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import sessionmaker

from finance_importer.core.config import Settings, get_settings
from finance_importer.db.models.import_job import ImportJob
from finance_importer.db.session import get_session_factory
from finance_importer.services.import_orchestrator import run_import_job
from finance_importer.services.job_tracker import JobTracker
from finance_importer.storage.file_storage import discard_staged, stage_upload

logger = logging.getLogger(__name__)


def get_job_tracker(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> JobTracker:
    return JobTracker(session_factory)


class ImportDispatcher:
    """Hands an accepted job to whatever runs it: a Celery worker or this process."""

    def __init__(self, mode: str, session_factory: sessionmaker) -> None:
        self.mode = mode
        self.session_factory = session_factory

    def dispatch(self, job: ImportJob, content: bytes, background_tasks: BackgroundTasks) -> None:
        if self.mode == "background":
            background_tasks.add_task(
                run_import_job, job.id, content, job.format, self.session_factory
            )
            logger.info(f"Scheduled job {job.id} as an in-process background task")
            return

        from finance_importer.workers.tasks.import_records import import_records_task

        location = stage_upload(content, job.id, job.source_filename)
        try:
            import_records_task.apply_async(
                args=(job.id, location, job.format),
                queue="imports",
            )
        except Exception:
            discard_staged(location, job.id)
            raise
        logger.info(f"Enqueued job {job.id} on the imports queue")


def get_import_dispatcher(
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> ImportDispatcher:
    return ImportDispatcher(settings.import_dispatch, session_factory)
