"""Shared helpers for shaping job responses."""
from __future__ import annotations

from finance_importer.api.schemas.job import JobStatus
from finance_importer.db.models.import_job import ImportJob


def serialize_job(job: ImportJob, progress_payload: dict | None = None) -> JobStatus:
    """Combine DB state + live progress snapshot into a response schema.

    Persisted counters are authoritative; the Redis snapshot only refines the
    progress fraction and message of a job that is still running.
    """
    progress_payload = progress_payload or {}
    live = not job.is_terminal and progress_payload.get("status") in (None, job.status)

    calculated_progress = progress_payload.get("progress") if live else None
    if calculated_progress is None:
        if job.status == "completed":
            calculated_progress = 1.0
        elif job.total_rows:
            calculated_progress = job.processed_rows / job.total_rows
        else:
            calculated_progress = 0.0

    message = progress_payload.get("message") if live else None
    if not message:
        total_display = job.total_rows if job.total_rows else "?"
        message = f"Processed {job.processed_rows}/{total_display} rows"
        if job.error_message:
            message = job.error_message

    return JobStatus(
        id=job.id,
        type=f"{job.record_type}_import",
        record_type=job.record_type,
        format=job.format,
        source_filename=job.source_filename,
        status=job.status,
        progress=calculated_progress,
        message=message,
        total_rows=job.total_rows or 0,
        processed_rows=job.processed_rows or 0,
        succeeded_rows=job.succeeded_rows or 0,
        failed_rows=job.failed_rows or 0,
        created_rows=job.created_rows or 0,
        updated_rows=job.updated_rows or 0,
        errors=job.errors or [],
        warnings=job.warnings or [],
        cancel_requested=bool(job.cancel_requested),
        error_message=job.error_message,
        failed_at_row=job.failed_at_row,
        created_at=job.created_at,
        started_at=job.started_at,
        updated_at=job.updated_at,
        completed_at=job.completed_at,
        meta=(progress_payload.get("meta") if live else None) or {},
    )
