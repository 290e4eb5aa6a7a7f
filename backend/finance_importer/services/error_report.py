"""Downloadable files: per-job row error reports and blank import templates."""

from __future__ import annotations

import csv
import io
from typing import Any, Iterable

from openpyxl import Workbook

from finance_importer.db.models.import_job import ImportJob
from finance_importer.services.row_parser import CONTENT_TYPES, CSV, EXCEL
from finance_importer.utils.record_validator import EXPENSE, INCOME

ERROR_COLUMNS = ["Row", "Field", "Message"]

TEMPLATES: dict[str, tuple[list[str], list[list[str]]]] = {
    INCOME: (
        ["Date", "Description", "Amount", "Category", "Recurring"],
        [
            ["2024-01-15", "Consulting invoice #1042", "1250.00", "Services", "no"],
            ["2024-01-31", "Monthly retainer", "800.00", "Retainers", "yes"],
        ],
    ),
    EXPENSE: (
        ["Date", "Description", "Amount", "Category", "Vendor", "Recurring"],
        [
            ["2024-01-03", "Office rent", "2000.00", "Rent", "Acme Properties", "yes"],
            ["2024-01-09", "Printer paper", "45.90", "Supplies", "Paper Co", "no"],
        ],
    ),
}

EXTENSIONS = {CSV: "csv", EXCEL: "xlsx"}

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _escape_cell(value: Any) -> Any:
    """Keep spreadsheet apps from evaluating user-supplied text as a formula."""
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return f"'{value}"
    return value


def _render(headers: list[str], rows: Iterable[list[Any]], file_format: str) -> bytes:
    if file_format == EXCEL:
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(headers)
        for row in rows:
            sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def build_error_report(job: ImportJob) -> tuple[bytes, str, str]:
    """Render the job's row errors in the same format as the uploaded file.

    Returns (content, media type, filename).
    """
    rows = [
        [
            error.get("row_index"),
            _escape_cell(error.get("field", "general")),
            _escape_cell(error.get("message", "")),
        ]
        for error in job.errors or []
    ]
    content = _render(ERROR_COLUMNS, rows, job.format)
    filename = f"import-{job.id}-errors.{EXTENSIONS[job.format]}"
    return content, CONTENT_TYPES[job.format], filename


def build_template(record_type: str, file_format: str) -> tuple[bytes, str, str]:
    headers, samples = TEMPLATES[record_type]
    content = _render(headers, samples, file_format)
    filename = f"{record_type}-import-template.{EXTENSIONS[file_format]}"
    return content, CONTENT_TYPES[file_format], filename
