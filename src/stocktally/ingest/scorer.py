"""Score every spreadsheet column against every semantic field.

Header evidence: +1 per matching pattern from the pattern library, +0.5 when
the trimmed header equals the field's canonical name (case-insensitive).

Content evidence, computed from the first few sample rows:
  * ``quantity``: +0.3 when at least 80% of the column's non-blank sample
    values parse as numbers.
  * ``lp``: +0.4 when at least 50% of the column's non-blank sample values
    equal their 1-based position in the sample.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, List, Mapping, Sequence, Tuple

from stocktally.ingest.extractor import cell_text, is_blank, parse_leading_float, parse_number
from stocktally.ingest.patterns import CANONICAL_NAMES, FIELDS, matching_patterns

SAMPLE_ROWS = int(os.getenv("STOCKTALLY_SAMPLE_ROWS", "5"))

PATTERN_MATCH_SCORE = 1.0
EXACT_NAME_BONUS = 0.5
NUMERIC_DENSITY_BONUS = 0.3
NUMERIC_DENSITY_THRESHOLD = 0.8
SEQUENTIAL_BONUS = 0.4
SEQUENTIAL_THRESHOLD = 0.5


@dataclass(frozen=True)
class ColumnScores:
    """Dense, read-only score matrix: ``field -> score per column``."""

    headers: Tuple[str, ...]
    by_field: Mapping[str, Tuple[float, ...]]

    def for_field(self, field: str) -> Tuple[float, ...]:
        return self.by_field[field]

    def candidates(self, field: str) -> List[Tuple[int, float]]:
        """Positive-scoring ``(column, score)`` pairs, best first, ties by column."""

        scored = [(index, score) for index, score in enumerate(self.by_field[field]) if score > 0]
        return sorted(scored, key=lambda pair: (-pair[1], pair[0]))


def _column_values(sample_rows: Sequence[Sequence[Any]], index: int) -> List[Tuple[int, Any]]:
    """Non-blank ``(position, value)`` pairs of one column; positions are 1-based."""

    values: List[Tuple[int, Any]] = []
    for position, row in enumerate(sample_rows, start=1):
        if index < len(row) and not is_blank(row[index]):
            values.append((position, row[index]))
    return values


def _numeric_ratio(values: List[Tuple[int, Any]]) -> float:
    if not values:
        return 0.0
    numeric = sum(1 for _, value in values if parse_leading_float(value) is not None)
    return numeric / len(values)


def _sequential_ratio(values: List[Tuple[int, Any]]) -> float:
    if not values:
        return 0.0
    sequential = sum(1 for position, value in values if parse_number(value) == position)
    return sequential / len(values)


def _header_score(field: str, header: str) -> float:
    matches = matching_patterns(field, header)
    score = matches * PATTERN_MATCH_SCORE
    if header.strip().lower() == CANONICAL_NAMES[field]:
        score += EXACT_NAME_BONUS
    return score


def score_columns(
    headers: Sequence[Any],
    sample_rows: Sequence[Sequence[Any]] = (),
    *,
    sample_size: int = SAMPLE_ROWS,
) -> ColumnScores:
    """Score ``headers`` (and their sample content) against every field.

    Pure function of its inputs; only the first ``sample_size`` rows of
    ``sample_rows`` are inspected.
    """

    texts = tuple(cell_text(header).strip() for header in headers)
    sample = list(sample_rows)[: max(0, sample_size)]

    matrix = {field: [0.0] * len(texts) for field in FIELDS}
    for index, header in enumerate(texts):
        for field in FIELDS:
            matrix[field][index] += _header_score(field, header)

        if not sample:
            continue
        values = _column_values(sample, index)
        if _numeric_ratio(values) >= NUMERIC_DENSITY_THRESHOLD:
            matrix["quantity"][index] += NUMERIC_DENSITY_BONUS
        if _sequential_ratio(values) >= SEQUENTIAL_THRESHOLD:
            matrix["lp"][index] += SEQUENTIAL_BONUS

    frozen = {field: tuple(round(score, 6) for score in scores) for field, scores in matrix.items()}
    return ColumnScores(headers=texts, by_field=MappingProxyType(frozen))
