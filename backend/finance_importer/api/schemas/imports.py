"""Submission-time validation preview payloads."""

from typing import Any

from pydantic import BaseModel

from finance_importer.api.schemas.job import RowIssue


class PreviewSummary(BaseModel):
    total_rows: int
    valid_rows: int
    invalid_rows: int
    warnings: int


class ValidationPreview(BaseModel):
    record_type: str
    format: str
    headers: list[str]
    mapping: dict[str, str]
    is_valid: bool
    errors: list[RowIssue]
    warnings: list[RowIssue]
    sample: list[dict[str, Any]]
    summary: PreviewSummary
