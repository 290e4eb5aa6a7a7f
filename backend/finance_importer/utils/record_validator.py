"""Map spreadsheet columns to finance fields and validate individual rows."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from finance_importer.services.errors import RowValidationError

INCOME = "income"
EXPENSE = "expense"
RECORD_TYPES = (INCOME, EXPENSE)

SYSTEM_FIELDS = ("date", "description", "amount", "category", "vendor", "recurring")

# Header substrings tried in order; the first header containing a pattern wins.
COLUMN_PATTERNS: dict[str, tuple[str, ...]] = {
    "date": ("date", "transaction date", "transaction_date", "created_at", "datetime"),
    "description": ("description", "memo", "details", "note", "transaction description"),
    "amount": ("amount", "value", "price", "total", "sum", "cost"),
    "category": ("category", "type", "classification", "category_name"),
    "vendor": ("vendor", "supplier", "merchant", "payee", "company"),
    "recurring": ("recurring", "repeat", "is_recurring", "recurring_payment"),
}

REQUIRED_FIELDS = {
    INCOME: ("amount", "description", "date", "category"),
    EXPENSE: ("amount", "description"),
}

MAX_DESCRIPTION_LENGTH = 500
# Largest value a Numeric(12, 2) amount column holds
MAX_AMOUNT = Decimal("9999999999.99")
DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%d.%m.%Y", "%Y/%m/%d")
TRUE_VALUES = {"true", "yes", "1", "y", "on"}


class MappingError(ValueError):
    """Column mapping is unusable for the requested record type."""


def check_record_type(record_type: str) -> str:
    normalized = (record_type or "").strip().lower()
    if normalized not in RECORD_TYPES:
        raise MappingError("record_type must be 'income' or 'expense'")
    return normalized


def detect_columns(headers: list[str]) -> dict[str, str]:
    """Guess which header holds each system field (field -> header)."""
    lowered = [header.lower() for header in headers]
    detected: dict[str, str] = {}
    taken: set[int] = set()
    for field, patterns in COLUMN_PATTERNS.items():
        for pattern in patterns:
            match = next(
                (
                    position
                    for position, header in enumerate(lowered)
                    if pattern in header and position not in taken
                ),
                None,
            )
            if match is not None:
                detected[field] = headers[match]
                taken.add(match)
                break
    return detected


def resolve_mapping(
    headers: list[str],
    explicit: dict[str, str] | None,
    record_type: str,
) -> dict[str, str]:
    """Return the column -> field mapping used for the import."""
    if explicit:
        mapping: dict[str, str] = {}
        for column, field in explicit.items():
            if column not in headers:
                raise MappingError(f"Mapped column '{column}' is not in the file")
            if field not in SYSTEM_FIELDS:
                raise MappingError(f"Unknown field '{field}' in mapping")
            if field in mapping.values():
                raise MappingError(f"Field '{field}' is mapped more than once")
            mapping[column] = field
    else:
        mapping = {header: field for field, header in detect_columns(headers).items()}

    if record_type == INCOME:
        mapping = {column: field for column, field in mapping.items() if field != "vendor"}

    missing = [field for field in REQUIRED_FIELDS[record_type] if field not in mapping.values()]
    if missing:
        raise MappingError(f"Missing required field mappings: {', '.join(missing)}")
    return mapping


def parse_amount(value: Any) -> Decimal:
    if isinstance(value, (int, float)):
        raw = str(value)
    else:
        raw = "".join(str(value).replace("$", "").replace(",", "").split())
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise RowValidationError("Amount must be a positive number", "amount") from None
    if not amount.is_finite() or amount <= 0 or amount > MAX_AMOUNT:
        raise RowValidationError("Amount must be a positive number", "amount")
    try:
        amount = amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise RowValidationError("Amount must be a positive number", "amount") from None
    if amount <= 0:
        raise RowValidationError("Amount must be a positive number", "amount")
    return amount


def parse_date(value: str) -> date | None:
    text = value.strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in TRUE_VALUES


def normalize_row(
    values: dict[str, str],
    mapping: dict[str, str],
    record_type: str,
    today: date | None = None,
) -> dict[str, Any]:
    """Clean one row into record fields, raising RowValidationError on bad input."""
    today = today or date.today()
    fields = {field: (values.get(column) or "").strip() for column, field in mapping.items()}

    description = fields.get("description", "")
    if not description:
        raise RowValidationError("description is required", "description")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise RowValidationError(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters", "description"
        )

    if not fields.get("amount"):
        raise RowValidationError("amount is required", "amount")
    amount = parse_amount(fields["amount"])

    raw_date = fields.get("date", "")
    if raw_date:
        record_date = parse_date(raw_date)
        if record_date is None:
            raise RowValidationError("Invalid date format", "date")
    elif record_type == INCOME:
        raise RowValidationError("date is required", "date")
    else:
        record_date = today
    if record_date > today:
        raise RowValidationError("Date cannot be in the future", "date")

    category = fields.get("category") or None
    if record_type == INCOME and not category:
        raise RowValidationError("category is required", "category")

    return {
        "amount": amount,
        "description": description,
        "date": record_date,
        "category": category,
        "vendor": (fields.get("vendor") or None) if record_type == EXPENSE else None,
        "is_recurring": parse_bool(fields.get("recurring")),
    }


def preview(
    rows: Iterable[Any],
    mapping: dict[str, str],
    record_type: str,
    sample_size: int = 10,
) -> dict[str, Any]:
    """Validate every row up front without writing anything."""
    errors: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []
    sample: list[dict[str, Any]] = []
    total = 0

    for row in rows:
        total += 1
        try:
            normalized = normalize_row(row.values, mapping, record_type)
        except RowValidationError as exc:
            errors.append({"row_index": row.index, "field": exc.field, "message": exc.message})
            normalized = None

        if normalized and record_type == EXPENSE and not (
            normalized["category"] or normalized["vendor"]
        ):
            warnings.append(
                {
                    "row_index": row.index,
                    "field": "category",
                    "message": "Either category or vendor should be specified for expenses",
                }
            )

        if len(sample) < sample_size:
            entry: dict[str, Any] = {"row_index": row.index, "original": row.values}
            if normalized:
                entry.update(
                    amount=float(normalized["amount"]),
                    description=normalized["description"],
                    date=normalized["date"].isoformat(),
                    category=normalized["category"],
                    vendor=normalized["vendor"],
                    is_recurring=normalized["is_recurring"],
                )
            sample.append(entry)

    return {
        "is_valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "sample": sample,
        "summary": {
            "total_rows": total,
            "valid_rows": total - len(errors),
            "invalid_rows": len(errors),
            "warnings": len(warnings),
        },
    }
