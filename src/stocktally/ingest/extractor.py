"""Apply a column mapping to raw spreadsheet rows.

``extract_row`` is the single validation gate between a raw sheet and the
aggregation engine: it either returns a fully populated :class:`ExtractedRow`
or raises :class:`RowExtractionError`. Never a partial record.

Quantity parsing is asymmetric: a blank quantity cell means
zero, while a non-blank cell without a leading number is an error.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time
from typing import Any, Optional, Sequence

from stocktally.ingest.errors import ColumnOutOfBoundsError, RowExtractionError
from stocktally.ingest.models import ColumnMapping, ExtractedRow

_LEADING_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def cell_text(value: Any) -> str:
    """Render a cell value as text; ``''`` for empty cells.

    Integral floats lose their ``.0`` so numeric ids read back the way they
    were typed (``1001.0`` -> ``"1001"``).
    """

    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer() and abs(value) < 1e15:
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def is_blank(value: Any) -> bool:
    return cell_text(value).strip() == ""


def _finite(number: float) -> Optional[float]:
    return number if math.isfinite(number) else None


def parse_leading_float(value: Any) -> Optional[float]:
    """Parse the leading number of a cell (``"10 szt"`` -> ``10.0``).

    Returns ``None`` when the text does not start with a number or the
    result is not finite.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite(float(value))
    match = _LEADING_NUMBER_RE.match(cell_text(value).strip())
    if not match:
        return None
    return _finite(float(match.group()))


def parse_number(value: Any) -> Optional[float]:
    """Parse a cell that must be a number in its entirety; ``None`` otherwise."""

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite(float(value))
    text = cell_text(value).strip()
    if not _LEADING_NUMBER_RE.fullmatch(text):
        return None
    return _finite(float(text))


def extract_row(row: Sequence[Any], mapping: ColumnMapping) -> ExtractedRow:
    """Extract one typed record from ``row`` using ``mapping``.

    Raises:
        ColumnOutOfBoundsError: the row is shorter than the highest mapped
            column. Checked before any field is read.
        RowExtractionError: name or unit is empty, or quantity is not a number.
    """

    max_index = mapping.max_index
    if max_index >= len(row):
        raise ColumnOutOfBoundsError(max_index, len(row))

    lp: Optional[int] = None
    if mapping.lp is not None:
        number = parse_number(row[mapping.lp])
        lp = int(number) if number is not None else None

    item_id: Optional[str] = None
    if mapping.item_id is not None:
        item_id = cell_text(row[mapping.item_id]).strip() or None

    name = cell_text(row[mapping.name]).strip()

    raw_quantity = row[mapping.quantity]
    quantity = 0.0 if is_blank(raw_quantity) else parse_leading_float(raw_quantity)

    unit = cell_text(row[mapping.unit]).strip().lower()

    if not name or quantity is None or not unit:
        quantity_text = cell_text(raw_quantity).strip()
        raise RowExtractionError(
            f'Invalid row data: name="{name}", quantity="{quantity_text}", unit="{unit}"',
            name=name,
            quantity=quantity_text,
            unit=unit,
        )

    return ExtractedRow(lp=lp, item_id=item_id, name=name, quantity=quantity, unit=unit)
