"""Tests for bookcatalog.sources.tabular module."""
from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from bookcatalog.sources.tabular import (
    CsvSource,
    ExcelSource,
    RowListSource,
    UnsupportedSourceError,
    cell_to_text,
    open_source,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, None),
        (1965.0, "1965"),
        (12.5, "12.5"),
        (42, "42"),
        (True, "true"),
        (date(2020, 5, 1), "2020-05-01"),
        ("Dune", "Dune"),
    ],
)
def test_cell_to_text(value, expected):
    assert cell_to_text(value) == expected


class TestExcelSource:
    """Test reading .xlsx workbooks."""

    def test_reads_first_sheet(self, tmp_path: Path, workbook_bytes):
        path = tmp_path / "vendor.xlsx"
        path.write_bytes(workbook_bytes(
            ["ISBN", "Title", None, "Price"],
            [["9780441013593", "Dune", "ignored", 12.5], [None, "Foundation", None, 9]],
            sheet_title="Stock",
        ))

        source = open_source(str(path))

        assert isinstance(source, ExcelSource)
        assert source.name == "vendor"
        assert source.sheet_title() == "Stock"
        assert source.headers() == ["ISBN", "Title", "Price"]
        rows = list(source.rows())
        assert rows[0] == {"ISBN": "9780441013593", "Title": "Dune", "Price": "12.5"}
        assert rows[1] == {"ISBN": None, "Title": "Foundation", "Price": "9"}
        assert source.count_rows() == 2

    def test_empty_workbook(self, tmp_path: Path, workbook_bytes):
        path = tmp_path / "empty.xlsx"
        path.write_bytes(workbook_bytes([], []))

        source = ExcelSource(str(path))

        assert source.headers() == []
        assert list(source.rows()) == []


class TestCsvSource:
    """Test reading CSV files."""

    def test_reads_rows(self, tmp_path: Path):
        path = tmp_path / "vendor.csv"
        path.write_text("\ufeffISBN,Title,Price\n123,Dune,10\n,Foundation,\n", encoding="utf-8")

        source = open_source(str(path))

        assert isinstance(source, CsvSource)
        assert source.headers() == ["ISBN", "Title", "Price"]
        assert list(source.rows()) == [
            {"ISBN": "123", "Title": "Dune", "Price": "10"},
            {"ISBN": None, "Title": "Foundation", "Price": None},
        ]


class TestRowListSource:
    """Test in-memory rows."""

    def test_headers_in_first_seen_order(self):
        source = RowListSource([{"Title": "Dune"}, {"ISBN": 1, "Title": "Foundation"}], name="api")

        assert source.headers() == ["Title", "ISBN"]
        assert list(source.rows())[1] == {"ISBN": "1", "Title": "Foundation"}
        assert source.name == "api"


def test_unsupported_file_type(tmp_path: Path):
    with pytest.raises(UnsupportedSourceError):
        open_source(str(tmp_path / "books.pdf"))
