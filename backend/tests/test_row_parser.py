from datetime import datetime

import pytest

from finance_importer.services.errors import ParseError
from finance_importer.services.row_parser import CSV, EXCEL, RowSource, detect_format
from tests.helpers import make_csv, make_xlsx


def test_detect_format_from_extension_and_declaration():
    assert detect_format("ledger.CSV") == CSV
    assert detect_format("ledger.xlsx") == EXCEL
    assert detect_format("ledger.bin", declared="excel") == EXCEL
    assert detect_format("ledger.csv", declared="xlsx") == EXCEL

    with pytest.raises(ParseError):
        detect_format("ledger.pdf")
    with pytest.raises(ParseError):
        detect_format("ledger.csv", declared="json")


def test_csv_rows_are_indexed_from_one_and_skip_blank_lines():
    content = b"Date,Description,Amount\n2024-01-02, Coffee ,3.50\n,,\n2024-01-03,Tea,2.00\n"
    source = RowSource(content, CSV)

    rows = list(source)

    assert source.headers == ["Date", "Description", "Amount"]
    assert [row.index for row in rows] == [1, 2]
    assert rows[0].values == {"Date": "2024-01-02", "Description": "Coffee", "Amount": "3.50"}
    assert source.count() == 2


def test_csv_source_can_be_iterated_again():
    source = RowSource(make_csv(["A", "B"], [["1", "2"], ["3", "4"]]), CSV)
    assert list(source) == list(source)


def test_csv_with_byte_order_mark():
    source = RowSource("\ufeffDate,Amount\n2024-01-02,5\n".encode("utf-8"), CSV)
    assert source.headers == ["Date", "Amount"]


def test_duplicate_and_blank_headers_are_made_unique():
    source = RowSource(b"Amount,Amount,\n1,2,3\n", CSV)
    assert source.headers == ["Amount", "Amount_1", "Column_3"]


def test_header_only_file_has_no_rows():
    source = RowSource(b"Date,Amount\n", CSV)
    with pytest.raises(ParseError, match="No data rows"):
        source.count()


def test_empty_file_is_rejected():
    with pytest.raises(ParseError):
        RowSource(b"", CSV).headers


def test_column_count_mismatch_is_structural():
    source = RowSource(b"Date,Amount\n2024-01-02,5\n2024-01-03,6,extra\n", CSV)
    with pytest.raises(ParseError, match="expected 2 columns"):
        list(source)


def test_non_utf8_csv_is_rejected():
    with pytest.raises(ParseError, match="encoding"):
        list(RowSource("Date,Montant\n2024-01-02,5é\n".encode("utf-16"), CSV))


def test_excel_cells_are_converted_to_text():
    content = make_xlsx(
        ["Date", "Description", "Amount"],
        [
            [datetime(2024, 1, 15), "Invoice", 100.0],
            [datetime(2024, 1, 16), "Refund", 12.5],
            [None, None, None],
        ],
    )
    rows = list(RowSource(content, EXCEL))

    assert len(rows) == 2
    assert rows[0].values == {"Date": "2024-01-15", "Description": "Invoice", "Amount": "100"}
    assert rows[1].values["Amount"] == "12.5"


def test_excel_values_beyond_header_columns_are_rejected():
    content = make_xlsx(["Date", "Amount"], [["2024-01-15", 5, "stray"]])
    with pytest.raises(ParseError, match="beyond"):
        list(RowSource(content, EXCEL))


def test_unreadable_excel_is_rejected():
    with pytest.raises(ParseError, match="Excel"):
        RowSource(b"definitely not a workbook", EXCEL).headers
