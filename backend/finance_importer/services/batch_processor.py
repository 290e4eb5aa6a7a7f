"""Validate a batch of rows and bulk-write the valid ones in one transaction."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from finance_importer.db.models.category import FinanceCategory, Vendor
from finance_importer.db.models.record import RECORD_MODELS
from finance_importer.services.errors import (
    PersistenceError,
    ReferenceNotFound,
    RowValidationError,
)
from finance_importer.services.reference_cache import CATEGORY, VENDOR, ReferenceCache
from finance_importer.services.row_parser import ParsedRow
from finance_importer.utils.record_validator import EXPENSE, normalize_row

logger = logging.getLogger(__name__)

MAX_REFERENCE_NAME_LENGTH = {CATEGORY: 100, VENDOR: 200}


@dataclass
class ImportOptions:
    update_existing: bool = False
    create_categories: bool = True
    create_vendors: bool = True
    skip_invalid_rows: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ImportOptions":
        data = data or {}
        return cls(**{key: bool(data[key]) for key in cls.__dataclass_fields__ if key in data})

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass
class BatchResult:
    first_row_index: int
    succeeded: int = 0
    failed: int = 0
    created: int = 0
    updated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


def _record_key(record_date: date, amount: Any, description: str) -> tuple:
    return (record_date, Decimal(amount).quantize(Decimal("0.01")), description)


class BatchProcessor:
    """Process one import's batches against a dedicated work session."""

    def __init__(
        self,
        session: Session,
        *,
        owner_id: str,
        record_type: str,
        mapping: dict[str, str],
        cache: ReferenceCache,
        options: ImportOptions | None = None,
        job_id: str | None = None,
        today: date | None = None,
    ) -> None:
        self.session = session
        self.owner_id = owner_id
        self.record_type = record_type
        self.mapping = mapping
        self.cache = cache
        self.options = options or ImportOptions()
        self.job_id = job_id
        self.today = today
        self.model = RECORD_MODELS[record_type]

    def process(self, rows: list[ParsedRow]) -> BatchResult:
        """Validate every row, then write all valid rows with one bulk statement.

        Row problems are collected on the result. Database failures roll the
        whole batch back and raise PersistenceError.
        """
        result = BatchResult(first_row_index=rows[0].index if rows else 0)
        if not rows:
            return result

        started = time.perf_counter()
        try:
            records: list[dict[str, Any]] = []
            for row in rows:
                try:
                    records.append(self._build_record(row))
                except RowValidationError as exc:
                    result.failed += 1
                    result.errors.append(
                        {"row_index": row.index, "field": exc.field, "message": exc.message}
                    )

            created, updated = self._write(records)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                f"Database error writing batch starting at row {result.first_row_index}: {e}",
                exc_info=True,
            )
            raise PersistenceError(
                f"Database error while writing rows starting at {result.first_row_index}: {e}",
                first_row_index=result.first_row_index,
            ) from e

        result.succeeded = len(records)
        result.created = created
        result.updated = updated

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            f"Batch at row {result.first_row_index} done in {elapsed_ms:.0f}ms "
            f"({result.succeeded} ok, {result.failed} failed)"
        )
        return result

    def _build_record(self, row: ParsedRow) -> dict[str, Any]:
        normalized = normalize_row(row.values, self.mapping, self.record_type, self.today)
        record: dict[str, Any] = {
            "owner_id": self.owner_id,
            "amount": normalized["amount"],
            "description": normalized["description"],
            "date": normalized["date"],
            "is_recurring": normalized["is_recurring"],
            "import_job_id": self.job_id,
            "category_id": None,
        }
        if normalized["category"]:
            record["category_id"] = self._resolve_reference(normalized["category"], CATEGORY)
        if self.record_type == EXPENSE:
            record["vendor_id"] = (
                self._resolve_reference(normalized["vendor"], VENDOR)
                if normalized["vendor"]
                else None
            )
        return record

    def _resolve_reference(self, name: str, kind: str) -> int:
        ref_id = self.cache.resolve(name, kind)
        if ref_id is not None:
            return ref_id

        allowed = (
            self.options.create_categories if kind == CATEGORY else self.options.create_vendors
        )
        if not allowed:
            raise ReferenceNotFound(kind, name)
        if len(name) > MAX_REFERENCE_NAME_LENGTH[kind]:
            raise RowValidationError(
                f"{kind.capitalize()} name cannot exceed {MAX_REFERENCE_NAME_LENGTH[kind]} characters",
                kind,
            )

        if kind == CATEGORY:
            reference = FinanceCategory(
                owner_id=self.owner_id,
                kind=self.record_type,
                name=name,
                description="Auto-created during import",
                is_default=False,
            )
        else:
            reference = Vendor(owner_id=self.owner_id, name=name)
        self.session.add(reference)
        self.session.flush()

        self.cache.remember(name, kind, reference.id)
        logger.info(f"Created {kind} '{name}' for owner {self.owner_id} during import")
        return reference.id

    def _write(self, records: list[dict[str, Any]]) -> tuple[int, int]:
        """Insert new records; with update_existing, update matching ones in place."""
        if not records:
            return 0, 0

        updated = 0
        pending = records
        if self.options.update_existing:
            by_key: dict[tuple, list[dict[str, Any]]] = {}
            for record in records:
                key = _record_key(record["date"], record["amount"], record["description"])
                by_key.setdefault(key, []).append(record)

            existing = (
                self.session.execute(
                    select(self.model).where(
                        self.model.owner_id == self.owner_id,
                        self.model.date.in_(list({record["date"] for record in records})),
                        self.model.description.in_(
                            list({record["description"] for record in records})
                        ),
                    )
                )
                .scalars()
                .all()
            )
            for obj in existing:
                matches = by_key.get(_record_key(obj.date, obj.amount, obj.description))
                if not matches:
                    continue
                payload = matches.pop(0)
                obj.category_id = payload["category_id"]
                if self.record_type == EXPENSE:
                    obj.vendor_id = payload["vendor_id"]
                obj.is_recurring = payload["is_recurring"]
                obj.import_job_id = payload["import_job_id"]
                updated += 1
            pending = [record for group in by_key.values() for record in group]

        if pending:
            self.session.execute(insert(self.model), pending)
        return len(pending), updated
