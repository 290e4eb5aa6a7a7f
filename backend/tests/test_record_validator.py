from datetime import date
from decimal import Decimal

import pytest

from finance_importer.services.errors import RowValidationError
from finance_importer.services.row_parser import ParsedRow
from finance_importer.utils.record_validator import (
    EXPENSE,
    INCOME,
    MappingError,
    check_record_type,
    detect_columns,
    normalize_row,
    parse_amount,
    parse_date,
    preview,
    resolve_mapping,
)

TODAY = date(2024, 6, 30)
EXPENSE_MAPPING = {
    "Date": "date",
    "Description": "description",
    "Amount": "amount",
    "Category": "category",
    "Vendor": "vendor",
}


def test_check_record_type():
    assert check_record_type(" Income ") == INCOME
    with pytest.raises(MappingError):
        check_record_type("loan")


def test_detect_columns_matches_common_header_names():
    headers = ["Transaction Date", "Memo", "Total", "Category", "Merchant"]
    assert detect_columns(headers) == {
        "date": "Transaction Date",
        "description": "Memo",
        "amount": "Total",
        "category": "Category",
        "vendor": "Merchant",
    }


def test_resolve_mapping_auto_detects_and_drops_vendor_for_income():
    mapping = resolve_mapping(["Date", "Description", "Amount", "Category", "Vendor"], None, INCOME)
    assert "Vendor" not in mapping
    assert set(mapping.values()) == {"date", "description", "amount", "category"}


@pytest.mark.parametrize(
    "explicit, message",
    [
        ({"Nope": "amount"}, "not in the file"),
        ({"Amount": "price"}, "Unknown field"),
        ({"Amount": "amount", "Description": "amount"}, "more than once"),
        ({"Amount": "amount"}, "Missing required"),
    ],
)
def test_resolve_mapping_rejects_bad_explicit_mappings(explicit, message):
    with pytest.raises(MappingError, match=message):
        resolve_mapping(["Amount", "Description"], explicit, EXPENSE)


def test_parse_amount():
    assert parse_amount("$1,234.5") == Decimal("1234.50")
    assert parse_amount(" 10 ") == Decimal("10.00")
    assert parse_amount("9999999999.99") == Decimal("9999999999.99")
    for bad in ("-5", "0", "0.001", "abc", "NaN", "Infinity", "1e30", "10000000000"):
        with pytest.raises(RowValidationError):
            parse_amount(bad)


@pytest.mark.parametrize(
    "text",
    ["2024-01-15", "01/15/2024", "15/01/2024", "15.01.2024", "2024/01/15", "2024-01-15T09:30:00"],
)
def test_parse_date_formats(text):
    assert parse_date(text) == date(2024, 1, 15)


def test_parse_date_unknown_format():
    assert parse_date("sometime in january") is None
    assert parse_date("") is None


def test_normalize_expense_defaults_date_to_today():
    record = normalize_row(
        {"Description": "Paper", "Amount": "4.20", "Date": "", "Category": "", "Vendor": "Paper Co"},
        EXPENSE_MAPPING,
        EXPENSE,
        today=TODAY,
    )
    assert record["date"] == TODAY
    assert record["category"] is None
    assert record["vendor"] == "Paper Co"
    assert record["is_recurring"] is False


def test_normalize_rejects_future_dates():
    with pytest.raises(RowValidationError) as excinfo:
        normalize_row(
            {"Description": "Later", "Amount": "1", "Date": "2024-07-01", "Category": "", "Vendor": ""},
            EXPENSE_MAPPING,
            EXPENSE,
            today=TODAY,
        )
    assert excinfo.value.field == "date"


def test_normalize_income_requires_category_and_date():
    mapping = {"Date": "date", "Description": "description", "Amount": "amount", "Category": "category"}
    with pytest.raises(RowValidationError) as excinfo:
        normalize_row(
            {"Date": "2024-01-01", "Description": "Fee", "Amount": "5", "Category": ""},
            mapping,
            INCOME,
            today=TODAY,
        )
    assert excinfo.value.field == "category"

    with pytest.raises(RowValidationError) as excinfo:
        normalize_row(
            {"Date": "", "Description": "Fee", "Amount": "5", "Category": "Fees"},
            mapping,
            INCOME,
            today=TODAY,
        )
    assert excinfo.value.field == "date"


def test_normalize_rejects_long_descriptions():
    with pytest.raises(RowValidationError, match="500"):
        normalize_row(
            {"Description": "x" * 501, "Amount": "1", "Date": "", "Category": "", "Vendor": ""},
            EXPENSE_MAPPING,
            EXPENSE,
            today=TODAY,
        )


def test_preview_reports_errors_warnings_and_sample():
    rows = [
        ParsedRow(1, {"Date": "2024-01-02", "Description": "Rent", "Amount": "900", "Category": "Rent", "Vendor": ""}),
        ParsedRow(2, {"Date": "2024-01-03", "Description": "Mystery", "Amount": "15", "Category": "", "Vendor": ""}),
        ParsedRow(3, {"Date": "2024-01-04", "Description": "Broken", "Amount": "free", "Category": "", "Vendor": ""}),
    ]

    report = preview(rows, EXPENSE_MAPPING, EXPENSE, sample_size=2)

    assert report["is_valid"] is False
    assert report["summary"] == {"total_rows": 3, "valid_rows": 2, "invalid_rows": 1, "warnings": 1}
    assert report["errors"] == [
        {"row_index": 3, "field": "amount", "message": "Amount must be a positive number"}
    ]
    assert report["warnings"][0]["row_index"] == 2
    assert len(report["sample"]) == 2
    assert report["sample"][0]["amount"] == 900.0
