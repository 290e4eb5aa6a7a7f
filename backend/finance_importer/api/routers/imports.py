"""Endpoints for submitting finance imports and tracking their jobs."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from finance_importer.api.dependencies.auth import get_current_user_id
from finance_importer.api.dependencies.imports import (
    ImportDispatcher,
    get_import_dispatcher,
    get_job_tracker,
)
from finance_importer.api.routers.job_helpers import serialize_job
from finance_importer.api.schemas.imports import ValidationPreview
from finance_importer.api.schemas.job import CancelResponse, JobStatus
from finance_importer.core.config import Settings, get_settings
from finance_importer.db.models.import_job import ALL_STATUSES, FAILED, ImportJob
from finance_importer.services.batch_processor import ImportOptions
from finance_importer.services.error_report import build_error_report, build_template
from finance_importer.services.errors import (
    JobConflict,
    JobForbidden,
    JobNotFound,
    ParseError,
)
from finance_importer.services.job_tracker import JobTracker
from finance_importer.services.progress_tracker import fetch_progress
from finance_importer.services.row_parser import FORMATS, RowSource, detect_format
from finance_importer.utils.record_validator import (
    MappingError,
    check_record_type,
    preview,
    resolve_mapping,
)

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_STORED_WARNINGS = 1000
STREAM_POLL_SECONDS = 2
STREAM_MAX_IDLE_POLLS = 150


@dataclass
class PreparedUpload:
    content: bytes
    file_format: str
    record_type: str
    source: RowSource
    mapping: dict[str, str]
    report: dict


def _parse_mapping(raw: str | None) -> dict[str, str] | None:
    if raw is None or not raw.strip():
        return None
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MappingError(f"mapping must be a JSON object: {exc}") from exc
    if not isinstance(mapping, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in mapping.items()
    ):
        raise MappingError("mapping must be a JSON object of column name to field name")
    return mapping


async def _prepare_upload(
    file: UploadFile,
    record_type: str,
    declared_format: str | None,
    mapping_raw: str | None,
    settings: Settings,
) -> PreparedUpload:
    """Read, parse and validate the upload. Raises HTTPException on bad input."""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )

    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.max_upload_bytes} byte limit",
        )

    try:
        normalized_type = check_record_type(record_type)
        file_format = detect_format(file.filename, declared_format)
        source = RowSource(content, file_format)
        mapping = resolve_mapping(source.headers, _parse_mapping(mapping_raw), normalized_type)
        report = preview(source, mapping, normalized_type)
        if report["summary"]["total_rows"] == 0:
            raise ParseError("No data rows found in file")
    except (ParseError, MappingError) as exc:
        logger.info(f"Rejected upload {file.filename}: {exc}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return PreparedUpload(
        content=content,
        file_format=file_format,
        record_type=normalized_type,
        source=source,
        mapping=mapping,
        report=report,
    )


def _load_owned_job(tracker: JobTracker, job_id: str, owner_id: str) -> ImportJob:
    try:
        return tracker.get_for_owner(job_id, owner_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except JobForbidden as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Job belongs to another user",
        ) from exc


@router.post(
    "/",
    summary="Start a finance import job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobStatus,
)
async def submit_import(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    record_type: str = Form(..., description="income or expense"),
    file_format: str | None = Form(None, alias="format", description="csv or excel"),
    mapping: str | None = Form(None, description="JSON object: column name -> field"),
    update_existing: bool = Form(False),
    create_categories: bool = Form(True),
    create_vendors: bool = Form(True),
    skip_invalid_rows: bool = Form(True),
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
    dispatcher: ImportDispatcher = Depends(get_import_dispatcher),
    settings: Settings = Depends(get_settings),
) -> JobStatus:
    """Validate the upload, record a pending job and hand it to a worker.

    The response is sent as soon as the job exists; rows are written
    asynchronously and can be followed through the status endpoints.
    """
    prepared = await _prepare_upload(file, record_type, file_format, mapping, settings)
    report = prepared.report

    if not skip_invalid_rows and not report["is_valid"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Data validation failed", "errors": report["errors"]},
        )

    options = ImportOptions(
        update_existing=update_existing,
        create_categories=create_categories,
        create_vendors=create_vendors,
        skip_invalid_rows=skip_invalid_rows,
    )
    try:
        job = tracker.create(
            owner_id=owner_id,
            total_rows=report["summary"]["total_rows"],
            file_format=prepared.file_format,
            record_type=prepared.record_type,
            source_filename=file.filename,
            mapping=prepared.mapping,
            options=options.to_dict(),
            warnings=report["warnings"][:MAX_STORED_WARNINGS],
        )
    except SQLAlchemyError as exc:
        logger.error(f"Database error creating import job: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create import job",
        ) from exc

    try:
        dispatcher.dispatch(job, prepared.content, background_tasks)
    except Exception as exc:
        logger.error(f"Error dispatching import job {job.id}: {exc}", exc_info=True)
        tracker.mark_terminal(job.id, FAILED, error_message="Failed to start import process")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start import process",
        ) from exc

    logger.info(f"Accepted import job {job.id} for file {file.filename}")
    return serialize_job(job, progress_payload={"progress": 0.0, "status": job.status})


@router.post(
    "/validate",
    summary="Validate an upload without importing it",
    response_model=ValidationPreview,
)
async def validate_import(
    file: UploadFile = File(...),
    record_type: str = Form(...),
    file_format: str | None = Form(None, alias="format"),
    mapping: str | None = Form(None),
    owner_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
) -> ValidationPreview:
    """Report row errors, warnings and a sample of normalized rows."""
    prepared = await _prepare_upload(file, record_type, file_format, mapping, settings)
    return ValidationPreview(
        record_type=prepared.record_type,
        format=prepared.file_format,
        headers=prepared.source.headers,
        mapping=prepared.mapping,
        **prepared.report,
    )


@router.get(
    "/",
    summary="List the caller's import jobs",
    response_model=list[JobStatus],
)
async def list_imports(
    limit: int = Query(20, ge=1, le=200, description="Maximum number of jobs to return"),
    job_status: str | None = Query(None, alias="status", description="Filter by status"),
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
) -> list[JobStatus]:
    """Newest jobs first."""
    if job_status and job_status not in ALL_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"status must be one of: {', '.join(ALL_STATUSES)}",
        )
    jobs = tracker.list_for_owner(owner_id, limit=limit, status=job_status)
    return [serialize_job(job, fetch_progress(job.id)) for job in jobs]


@router.get(
    "/templates/{record_type}",
    summary="Download an empty import template",
)
async def download_template(
    record_type: str,
    file_format: str = Query("csv", alias="format", description="csv or excel"),
) -> Response:
    try:
        normalized_type = check_record_type(record_type)
    except MappingError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if file_format not in FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="format must be csv or excel",
        )
    content, media_type, filename = build_template(normalized_type, file_format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/{job_id}",
    summary="Fetch job status, counters and row errors",
    response_model=JobStatus,
)
async def get_import(
    job_id: str,
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
) -> JobStatus:
    """Expose job state for polling dashboards."""
    job = _load_owned_job(tracker, job_id, owner_id)
    return serialize_job(job, fetch_progress(job_id))


@router.head("/{job_id}", summary="Check job existence and status")
async def head_import(
    job_id: str,
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
) -> Response:
    job = _load_owned_job(tracker, job_id, owner_id)
    return Response(
        status_code=status.HTTP_200_OK,
        headers={
            "X-Job-Status": job.status,
            "X-Job-Processed-Rows": str(job.processed_rows or 0),
            "X-Job-Total-Rows": str(job.total_rows or 0),
        },
    )


@router.delete(
    "/{job_id}",
    summary="Cancel a pending or running import",
    response_model=CancelResponse,
)
async def cancel_import(
    job_id: str,
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
) -> CancelResponse:
    """Running jobs stop at the next batch boundary; committed rows stay."""
    try:
        cancelled = tracker.cancel(job_id, owner_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
    except JobForbidden as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Job belongs to another user",
        ) from exc
    except JobConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return CancelResponse(cancelled=cancelled, job=serialize_job(tracker.get_status(job_id)))


@router.get(
    "/{job_id}/errors",
    summary="Download row errors in the upload's format",
)
async def download_errors(
    job_id: str,
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
) -> Response:
    job = _load_owned_job(tracker, job_id, owner_id)
    content, media_type, filename = build_error_report(job)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/{job_id}/stream",
    summary="Server-Sent Events stream for real-time progress",
)
async def stream_import(
    job_id: str,
    owner_id: str = Depends(get_current_user_id),
    tracker: JobTracker = Depends(get_job_tracker),
) -> StreamingResponse:
    """Stream job snapshots as SSE 'data:' events until the job is terminal."""
    _load_owned_job(tracker, job_id, owner_id)

    async def event_generator() -> AsyncGenerator[str, None]:
        last_processed = -1
        idle_polls = 0
        while True:
            try:
                job = tracker.get_status(job_id)
            except JobNotFound:
                yield 'event: error\ndata: {"error": "Job not found"}\n\n'
                break

            snapshot = serialize_job(job, fetch_progress(job_id))
            processed = (snapshot.meta or {}).get("processed", snapshot.processed_rows)
            if processed != last_processed:
                last_processed = processed
                idle_polls = 0
            else:
                idle_polls += 1

            yield f"data: {snapshot.model_dump_json()}\n\n"

            if job.is_terminal:
                yield "event: close\ndata: {}\n\n"
                break
            if idle_polls > STREAM_MAX_IDLE_POLLS:
                yield "event: timeout\ndata: {}\n\n"
                break
            await asyncio.sleep(STREAM_POLL_SECONDS)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
