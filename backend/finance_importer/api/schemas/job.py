"""Import job status payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class RowIssue(BaseModel):
    row_index: int = Field(..., description="1-based data row number (header excluded)")
    field: str = "general"
    message: str


class JobStatus(BaseModel):
    id: str
    type: str = Field(..., description="income_import or expense_import")
    record_type: str
    format: str = Field(..., description="csv|excel")
    source_filename: str | None = None
    status: str = Field(..., description="pending|processing|completed|failed|cancelled")
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    total_rows: int = 0
    processed_rows: int = 0
    succeeded_rows: int = 0
    failed_rows: int = 0
    created_rows: int = 0
    updated_rows: int = 0
    errors: list[RowIssue] = Field(default_factory=list)
    warnings: list[RowIssue] = Field(default_factory=list)
    cancel_requested: bool = False
    error_message: str | None = None
    failed_at_row: int | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    meta: dict[str, Any] | None = None


class CancelResponse(BaseModel):
    cancelled: bool
    job: JobStatus
