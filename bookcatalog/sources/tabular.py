"""
Tabular sources: spreadsheets and row lists feeding the bulk importer.

Every source exposes the header labels and a single-pass iterator of rows,
each row a dict of header label to string value (None for blank cells).
"""

import csv
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import openpyxl

Row = Dict[str, Optional[str]]

EXCEL_SUFFIXES = (".xlsx", ".xlsm")
CSV_SUFFIXES = (".csv",)


class UnsupportedSourceError(ValueError):
    """The file type cannot be read as a table."""


def cell_to_text(value: Any) -> Optional[str]:
    """Render a cell as text; integral floats lose their trailing .0."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _header_labels(values: Sequence[Any]) -> List[str]:
    return [str(v).strip() if v is not None else "" for v in values]


def _zip_row(headers: List[str], values: Sequence[Any]) -> Row:
    row: Row = {}
    for index, header in enumerate(headers):
        if not header:
            continue
        value = values[index] if index < len(values) else None
        row[header] = cell_to_text(value)
    return row


class TabularSource(ABC):
    """Rows of header label to string value."""

    name: str = "import"

    @abstractmethod
    def headers(self) -> List[str]:
        """Header labels in column order; blank labels are dropped."""

    @abstractmethod
    def rows(self) -> Iterator[Row]:
        """Data rows, excluding the header row."""

    def count_rows(self) -> int:
        return sum(1 for _ in self.rows())


class ExcelSource(TabularSource):
    """
    First worksheet (or a named one) of an .xlsx workbook.

    Args:
        path: Workbook path
        sheet_name: Worksheet to read; defaults to the first
    """

    def __init__(self, path: str, sheet_name: Optional[str] = None):
        self.path = Path(path)
        self.sheet_name = sheet_name
        self.name = self.path.stem

    def _open(self):
        workbook = openpyxl.load_workbook(self.path, read_only=True, data_only=True)
        if self.sheet_name:
            return workbook, workbook[self.sheet_name]
        return workbook, workbook.worksheets[0]

    def sheet_title(self) -> str:
        workbook, sheet = self._open()
        try:
            return sheet.title
        finally:
            workbook.close()

    def headers(self) -> List[str]:
        workbook, sheet = self._open()
        try:
            first = next(sheet.iter_rows(values_only=True), None)
            return [h for h in _header_labels(first or ()) if h]
        finally:
            workbook.close()

    def rows(self) -> Iterator[Row]:
        workbook, sheet = self._open()
        try:
            values = sheet.iter_rows(values_only=True)
            header_values = next(values, None)
            if header_values is None:
                return
            headers = _header_labels(header_values)
            for row_values in values:
                yield _zip_row(headers, row_values)
        finally:
            workbook.close()


class CsvSource(TabularSource):
    """A CSV file whose first line holds the headers."""

    def __init__(self, path: str, encoding: str = "utf-8-sig"):
        self.path = Path(path)
        self.encoding = encoding
        self.name = self.path.stem

    def headers(self) -> List[str]:
        with open(self.path, newline="", encoding=self.encoding) as handle:
            first = next(csv.reader(handle), None)
        return [h for h in _header_labels(first or ()) if h]

    def rows(self) -> Iterator[Row]:
        with open(self.path, newline="", encoding=self.encoding) as handle:
            reader = csv.reader(handle)
            header_values = next(reader, None)
            if header_values is None:
                return
            headers = _header_labels(header_values)
            for row_values in reader:
                yield _zip_row(headers, [v if v != "" else None for v in row_values])


class RowListSource(TabularSource):
    """Rows already in memory, e.g. from a JSON request body."""

    def __init__(self, rows: List[Dict[str, Any]], headers: Optional[List[str]] = None, name: str = "import"):
        self._rows = rows
        self.name = name
        if headers is None:
            headers = []
            for row in rows:
                for key in row:
                    if key not in headers:
                        headers.append(key)
        self._headers = [str(h).strip() for h in headers if h is not None and str(h).strip()]

    def headers(self) -> List[str]:
        return list(self._headers)

    def rows(self) -> Iterator[Row]:
        for row in self._rows:
            yield {str(k).strip(): cell_to_text(v) for k, v in (row or {}).items()}


def open_source(path: str, sheet_name: Optional[str] = None) -> TabularSource:
    """Open a spreadsheet by file extension."""
    suffix = Path(path).suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        return ExcelSource(path, sheet_name=sheet_name)
    if suffix in CSV_SUFFIXES:
        return CsvSource(path)
    raise UnsupportedSourceError(f"Unsupported file type: {suffix or 'none'}")
