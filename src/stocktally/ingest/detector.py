"""Column detection: pick the best column per field from the score matrix.

Selection is greedy per field. For each field the column with the strictly
highest positive score wins and equal scores go to the earliest column.
A column serves at most one field. Required fields claim columns before
optional ones; within each group the field with the higher top score claims
first (field order breaks ties) and a field whose best column is taken falls
back to its best unclaimed candidate. If that order leaves a required field
without a column while another claiming order of the required fields covers
all of them, the covering order is used. Ambiguity is surfaced through
``suggestions`` instead of being resolved automatically.
"""

from __future__ import annotations

import logging
from itertools import permutations
from typing import Any, Dict, List, Optional, Sequence, Tuple

from stocktally.ingest.errors import InsufficientColumnsError, NoHeadersError
from stocktally.ingest.extractor import cell_text
from stocktally.ingest.models import ColumnMapping, ColumnSuggestion, DetectionResult
from stocktally.ingest.patterns import FIELDS, OPTIONAL_FIELDS, REQUIRED_FIELDS, matching_fields
from stocktally.ingest.scorer import SAMPLE_ROWS, ColumnScores, score_columns

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3
MATCHED_TYPE_CONFIDENCE = 0.8
UNKNOWN_TYPE_CONFIDENCE = 0.3


def _by_top_score(matrix: ColumnScores, fields: Sequence[str]) -> List[str]:
    def top_score(field: str) -> float:
        candidates = matrix.candidates(field)
        return candidates[0][1] if candidates else 0.0

    return sorted(fields, key=lambda field: (-top_score(field), FIELDS.index(field)))


def _claim(
    matrix: ColumnScores,
    order: Sequence[str],
    claimed: Dict[int, str],
    winners: Dict[str, Optional[int]],
) -> None:
    for field in order:
        for index, _ in matrix.candidates(field):
            if index not in claimed:
                claimed[index] = field
                winners[field] = index
                break


def _assign_columns(matrix: ColumnScores) -> Dict[str, Optional[int]]:
    """Map every field to its winning column, one field per column."""

    preferred = _by_top_score(matrix, REQUIRED_FIELDS)
    orders = [tuple(preferred)] + [
        order for order in permutations(preferred) if list(order) != preferred
    ]

    best: Optional[Tuple[Dict[int, str], Dict[str, Optional[int]]]] = None
    for order in orders:
        claimed: Dict[int, str] = {}
        attempt: Dict[str, Optional[int]] = {field: None for field in FIELDS}
        _claim(matrix, order, claimed, attempt)
        if best is None:
            best = (claimed, attempt)
        if all(attempt[field] is not None for field in REQUIRED_FIELDS):
            best = (claimed, attempt)
            break

    claimed, winners = best
    _claim(matrix, _by_top_score(matrix, OPTIONAL_FIELDS), claimed, winners)
    return winners


def _runner_ups(matrix: ColumnScores, field: str, winner: Optional[int]) -> List[int]:
    return [index for index, _ in matrix.candidates(field) if index != winner][:MAX_SUGGESTIONS]


def detect_columns(
    headers: Sequence[Any],
    sample_rows: Sequence[Sequence[Any]] = (),
    *,
    sample_size: int = SAMPLE_ROWS,
) -> DetectionResult:
    """Infer a :class:`ColumnMapping` from a header row and sample data rows.

    Raises:
        NoHeadersError: ``headers`` is empty.
        InsufficientColumnsError: name, quantity and unit cannot each get a
            distinct positive-scoring column. A partial mapping is never
            returned.
    """

    if not headers:
        raise NoHeadersError()

    matrix = score_columns(headers, sample_rows, sample_size=sample_size)

    winners = _assign_columns(matrix)
    suggestions = {field: _runner_ups(matrix, field, winners[field]) for field in FIELDS}

    found = [field for field in REQUIRED_FIELDS if winners[field] is not None]
    missing = [field for field in REQUIRED_FIELDS if winners[field] is None]
    if missing:
        logger.info(
            "Column detection failed",
            extra={"payload": {"headers": list(matrix.headers), "found": found, "missing": missing}},
        )
        raise InsufficientColumnsError(found, missing)

    mapping = ColumnMapping(
        lp=winners["lp"],
        item_id=winners["item_id"],
        name=winners["name"],
        quantity=winners["quantity"],
        unit=winners["unit"],
    )
    confidence = len(found) / len(REQUIRED_FIELDS)
    logger.debug("Detected column mapping %s (confidence %.2f)", mapping.to_wire(), confidence)
    return DetectionResult(mapping=mapping, confidence=confidence, suggestions=suggestions)


def suggest_column_types(headers: Sequence[Any]) -> List[ColumnSuggestion]:
    """List the possible field roles of every column, for manual mapping."""

    suggestions: List[ColumnSuggestion] = []
    for index, raw in enumerate(headers):
        header = cell_text(raw).strip()
        fields = matching_fields(header)
        if fields:
            suggestions.append(
                ColumnSuggestion(
                    column=index,
                    header=header,
                    possible_types=fields,
                    confidence=MATCHED_TYPE_CONFIDENCE,
                )
            )
        else:
            suggestions.append(
                ColumnSuggestion(
                    column=index,
                    header=header,
                    possible_types=["unknown"],
                    confidence=UNKNOWN_TYPE_CONFIDENCE,
                )
            )
    return suggestions
