import csv
import io
from datetime import date, timedelta

from openpyxl import Workbook

from finance_importer.db.models.import_job import PROCESSING
from finance_importer.services.row_parser import CSV, RowSource

INCOME_HEADERS = ["Date", "Description", "Amount", "Category"]
EXPENSE_HEADERS = ["Date", "Description", "Amount", "Category", "Vendor"]

START_DATE = date(2024, 1, 1)


def make_csv(headers, rows) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def make_xlsx(headers, rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def income_rows(count, category="Consulting", invalid_at=(), amounts=None):
    """Valid income rows; positions listed in invalid_at (1-based) get a bad amount.

    ``amounts`` maps a 1-based position to a literal amount cell.
    """
    amounts = amounts or {}
    rows = []
    for number in range(1, count + 1):
        amount = "not-a-number" if number in invalid_at else f"{number}.50"
        amount = amounts.get(number, amount)
        rows.append(
            [
                (START_DATE + timedelta(days=number % 300)).isoformat(),
                f"Invoice {number}",
                amount,
                category,
            ]
        )
    return rows


def income_csv(count, **kwargs) -> bytes:
    return make_csv(INCOME_HEADERS, income_rows(count, **kwargs))


def income_source(count, **kwargs) -> RowSource:
    return RowSource(income_csv(count, **kwargs), CSV)


def income_mapping():
    return {
        "Date": "date",
        "Description": "description",
        "Amount": "amount",
        "Category": "category",
    }


def create_job(tracker, owner_id="user-1", total_rows=10, record_type="income", **kwargs):
    kwargs.setdefault("mapping", income_mapping() if record_type == "income" else None)
    return tracker.create(
        owner_id=owner_id,
        total_rows=total_rows,
        file_format=CSV,
        record_type=record_type,
        source_filename="upload.csv",
        **kwargs,
    )


def create_processing_job(tracker, **kwargs):
    job = create_job(tracker, **kwargs)
    assert tracker.mark_processing(job.id)
    job = tracker.get_status(job.id)
    assert job.status == PROCESSING
    return job
