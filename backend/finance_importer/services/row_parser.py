"""Turn uploaded CSV/Excel bytes into an ordered, restartable row sequence."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Iterator

import openpyxl

from finance_importer.services.errors import ParseError

logger = logging.getLogger(__name__)

CSV = "csv"
EXCEL = "excel"
FORMATS = (CSV, EXCEL)

EXTENSIONS = {
    ".csv": CSV,
    ".xlsx": EXCEL,
    ".xlsm": EXCEL,
}

CONTENT_TYPES = {
    CSV: "text/csv",
    EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass(frozen=True)
class ParsedRow:
    index: int  # 1-based data row number (header excluded)
    values: dict[str, str]


def detect_format(filename: str | None, declared: str | None = None) -> str:
    """Resolve the file format from an explicit declaration or the file extension."""
    if declared:
        normalized = declared.strip().lower()
        if normalized in ("xlsx", "xlsm"):
            normalized = EXCEL
        if normalized not in FORMATS:
            raise ParseError(f"Unsupported file format '{declared}'. Use csv or excel.")
        return normalized

    suffix = Path(filename or "").suffix.lower()
    file_format = EXTENSIONS.get(suffix)
    if file_format is None:
        raise ParseError("Unsupported file format. Please use CSV or Excel (.xlsx) files.")
    return file_format


def _clean_headers(raw: list[str]) -> list[str]:
    headers: list[str] = []
    for position, value in enumerate(raw, start=1):
        key = " ".join(str(value).split()) or f"Column_{position}"
        base = key
        suffix = 0
        while key in headers:
            suffix += 1
            key = f"{base}_{suffix}"
        headers.append(key)
    return headers


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


class RowSource:
    """Lazy view over an uploaded file.

    Every iteration re-reads the bytes from the start, so the sequence can be
    counted at submission time and consumed again by the worker with the same
    result.
    """

    def __init__(self, content: bytes, file_format: str) -> None:
        if file_format not in FORMATS:
            raise ParseError(f"Unsupported file format '{file_format}'")
        self._content = content
        self.format = file_format
        self._headers: list[str] | None = None

    @property
    def headers(self) -> list[str]:
        if self._headers is None:
            rows = self._iter_raw()
            try:
                self._headers = next(rows)
            except StopIteration:
                raise ParseError("File contains no header row") from None
            finally:
                rows.close()
        return self._headers

    def __iter__(self) -> Iterator[ParsedRow]:
        rows = self._iter_raw()
        headers = next(rows, None)
        if headers is None:
            raise ParseError("File contains no header row")
        self._headers = headers
        index = 0
        for values in rows:
            index += 1
            yield ParsedRow(index=index, values=values)

    def count(self) -> int:
        """Walk the whole file; structural errors surface here."""
        total = sum(1 for _ in self)
        if total == 0:
            raise ParseError("No data rows found in file")
        return total

    def _iter_raw(self) -> Iterator[Any]:
        """Yield the header list first, then one dict per non-blank row."""
        if self.format == CSV:
            return self._iter_csv()
        return self._iter_excel()

    def _iter_csv(self) -> Iterator[Any]:
        try:
            text = self._content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"File encoding error: {e}") from e

        reader = csv.reader(io.StringIO(text, newline=""))
        try:
            header = next(reader, None)
            if not header or not any(cell.strip() for cell in header):
                raise ParseError("No headers found in CSV file")
            headers = _clean_headers(header)
            yield headers

            for cells in reader:
                if not any(cell.strip() for cell in cells):
                    continue
                if len(cells) != len(headers):
                    raise ParseError(
                        f"Line {reader.line_num}: expected {len(headers)} columns, "
                        f"found {len(cells)}"
                    )
                yield dict(zip(headers, (cell.strip() for cell in cells)))
        except csv.Error as e:
            raise ParseError(f"CSV parsing error: {e}") from e

    def _iter_excel(self) -> Iterator[Any]:
        try:
            workbook = openpyxl.load_workbook(
                io.BytesIO(self._content), read_only=True, data_only=True
            )
        except Exception as e:
            logger.warning(f"Unreadable spreadsheet upload: {e}")
            raise ParseError(f"Failed to parse Excel file: {e}") from e

        try:
            if not workbook.worksheets:
                raise ParseError("No worksheets found in Excel file")
            rows = workbook.worksheets[0].iter_rows(values_only=True)

            header = [_cell_to_str(value) for value in next(rows, ())]
            width = 0
            for position, value in enumerate(header, start=1):
                if value:
                    width = position
            if width == 0:
                raise ParseError("No headers found in Excel file")
            headers = _clean_headers(header[:width])
            yield headers

            for line, row in enumerate(rows, start=2):
                cells = [_cell_to_str(value) for value in row]
                if not any(cells):
                    continue
                if any(cells[width:]):
                    raise ParseError(
                        f"Row {line}: values found beyond the {width} header columns"
                    )
                cells = (cells + [""] * width)[:width]
                yield dict(zip(headers, cells))
        finally:
            workbook.close()
