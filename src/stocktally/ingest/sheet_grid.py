"""Read raw cell grids from CSV and workbook files and locate the header row.

This is the thin collaborator that feeds column detection: it does not
validate file types or sizes, it only turns bytes into rows of primitive
cell values in their original order.
"""

from __future__ import annotations

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from stocktally.ingest.errors import NoHeadersError, SheetReadError
from stocktally.ingest.extractor import cell_text, is_blank
from stocktally.ingest.patterns import matching_fields

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv",)
WORKBOOK_EXTENSIONS = (".xlsx", ".xlsm")
HEADER_SCAN_ROWS = 20


@dataclass
class SheetGrid:
    """Rows of one sheet, trailing blank rows removed."""

    rows: List[List[Any]]
    sheet_name: Optional[str] = None
    sheet_names: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def is_blank_row(row: Sequence[Any]) -> bool:
    return all(is_blank(value) for value in row)


def _trim_trailing_blank_rows(rows: List[List[Any]]) -> List[List[Any]]:
    end = len(rows)
    while end and is_blank_row(rows[end - 1]):
        end -= 1
    return rows[:end]


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def read_csv_grid(content: bytes | str) -> SheetGrid:
    text = _decode(content) if isinstance(content, bytes) else content
    try:
        rows = [list(row) for row in csv.reader(io.StringIO(text))]
    except csv.Error as exc:
        raise SheetReadError(f"Failed to parse CSV: {exc}") from exc
    return SheetGrid(rows=_trim_trailing_blank_rows(rows))


def read_workbook_grid(content: bytes, sheet_name: Optional[str] = None) -> SheetGrid:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise SheetReadError(f"Failed to open workbook: {exc}") from exc

    try:
        names = list(wb.sheetnames)
        if sheet_name is not None:
            if sheet_name not in names:
                raise SheetReadError(
                    f"Sheet {sheet_name!r} not found. Available sheets: {', '.join(names)}"
                )
            sheet = wb[sheet_name]
        else:
            if not names:
                raise SheetReadError("Workbook contains no sheets")
            sheet = wb[names[0]]
        rows = [list(values) for values in sheet.iter_rows(values_only=True)]
        return SheetGrid(
            rows=_trim_trailing_blank_rows(rows),
            sheet_name=sheet.title,
            sheet_names=names,
        )
    finally:
        wb.close()


def read_grid(content: bytes, filename: str, sheet_name: Optional[str] = None) -> SheetGrid:
    """Read ``content`` as a grid, choosing the reader from ``filename``.

    Raises:
        SheetReadError: unsupported extension, unreadable content or an
            unknown ``sheet_name``.
    """

    lower_name = filename.lower()
    if lower_name.endswith(CSV_EXTENSIONS):
        grid = read_csv_grid(content)
    elif lower_name.endswith(WORKBOOK_EXTENSIONS):
        grid = read_workbook_grid(content, sheet_name)
    else:
        raise SheetReadError(
            f"Unsupported file format: {filename}. Supported formats: CSV, XLSX, XLSM"
        )
    logger.debug("Read %d rows from %s", grid.row_count, filename)
    return grid


def find_header_row(rows: Sequence[Sequence[Any]], max_scan: int = HEADER_SCAN_ROWS) -> int:
    """Return the index of the most header-like row among the first non-empty rows.

    A row scores the number of distinct fields its cells match; the best
    score wins, ties go to the earliest row. With no matches at all the first
    non-empty row is used.

    Raises:
        NoHeadersError: every row is blank.
    """

    first_non_empty: Optional[int] = None
    best_index: Optional[int] = None
    best_score = 0
    scanned = 0
    for index, row in enumerate(rows):
        if scanned >= max_scan:
            break
        if is_blank_row(row):
            continue
        scanned += 1
        if first_non_empty is None:
            first_non_empty = index
        fields = set()
        for value in row:
            fields.update(matching_fields(cell_text(value)))
        if len(fields) > best_score:
            best_index, best_score = index, len(fields)

    if first_non_empty is None:
        raise NoHeadersError("No non-empty rows found; cannot locate a header row")
    return best_index if best_index is not None else first_non_empty
