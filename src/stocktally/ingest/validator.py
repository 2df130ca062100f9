"""Structural checks for a column mapping, automatic or hand-edited."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Mapping, Tuple, Union

from stocktally.ingest.models import ColumnMapping, MappingValidation
from stocktally.ingest.patterns import FIELDS, REQUIRED_FIELDS, WIRE_NAMES

_FIELD_BY_NAME: Dict[str, str] = {
    **{field: field for field in FIELDS},
    **{wire: field for field, wire in WIRE_NAMES.items()},
}


def _normalise(mapping: Union[ColumnMapping, Mapping[str, Any]]) -> Tuple[Dict[str, Any], List[str]]:
    if isinstance(mapping, ColumnMapping):
        return dict(mapping.indices()), []

    values: Dict[str, Any] = {}
    errors: List[str] = []
    for raw_name, index in mapping.items():
        field = _FIELD_BY_NAME.get(raw_name)
        if field is None:
            errors.append(f"unknown field: {raw_name}")
            continue
        if index is None:
            continue
        values[field] = index
    return values, errors


def validate_mapping(
    mapping: Union[ColumnMapping, Mapping[str, Any]],
    header_count: int,
) -> MappingValidation:
    """Check ``mapping`` against a sheet with ``header_count`` columns.

    Every rule is checked independently and every problem is reported; the
    function never raises. Plain dicts may use either ``item_id`` or the wire
    name ``itemId``; ``None`` values count as absent.
    """

    values, errors = _normalise(mapping)

    for field in REQUIRED_FIELDS:
        if field not in values:
            errors.append(f"missing required field: {field}")

    for field in FIELDS:
        if field not in values:
            continue
        index = values[field]
        if isinstance(index, bool) or not isinstance(index, int):
            errors.append(f"invalid index for {field}: {index!r} is not an integer")
        elif index < 0:
            errors.append(f"invalid index for {field}: {index} is negative")
        elif index >= header_count:
            errors.append(
                f"index out of bounds for {field}: {index} (sheet has {header_count} columns)"
            )

    counts = Counter(
        index for index in values.values() if isinstance(index, int) and not isinstance(index, bool)
    )
    for index in sorted(index for index, seen in counts.items() if seen > 1):
        errors.append(f"duplicate column assignment: {index}")

    return MappingValidation(is_valid=not errors, errors=errors)
