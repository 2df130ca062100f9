"""Per-file ingestion: grid -> mapping -> extracted rows -> aggregates.

Row-level extraction problems are recorded and skipped. Everything else
(detection failure, invalid manual mapping, storage failure, timeout) aborts
the file and propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any, List, Mapping, Optional, Sequence, Tuple, Union

from stocktally.ingest.aggregation import AggregationEngine
from stocktally.ingest.chunking import DEFAULT_CHUNK_SIZE, ChunkedRowProcessor
from stocktally.ingest.detector import detect_columns
from stocktally.ingest.errors import (
    IngestTimeoutError,
    InvalidMappingError,
    NoHeadersError,
    RowExtractionError,
)
from stocktally.ingest.extractor import cell_text, extract_row
from stocktally.ingest.models import ColumnMapping, IngestionResult, RejectedRow, SourceRow
from stocktally.ingest.scorer import SAMPLE_ROWS
from stocktally.ingest.sheet_grid import find_header_row, is_blank_row, read_grid
from stocktally.ingest.validator import validate_mapping
from stocktally.observability import (
    Stopwatch,
    bind_ingest_id,
    log_event,
    new_ingest_id,
    reset_ingest_id,
)

if TYPE_CHECKING:
    from stocktally.persistence import AggregateStore

logger = logging.getLogger(__name__)

INGEST_TIMEOUT_SECONDS = float(os.getenv("STOCKTALLY_INGEST_TIMEOUT", "30"))
LARGE_SHEET_ROWS = int(os.getenv("STOCKTALLY_LARGE_SHEET_ROWS", "5000"))

MappingInput = Union[ColumnMapping, Mapping[str, Any]]


def _resolve_mapping(
    headers: List[str],
    sample: List[List[Any]],
    mapping: Optional[MappingInput],
) -> Tuple[ColumnMapping, Optional[float]]:
    if mapping is None:
        detection = detect_columns(headers, sample)
        resolved: MappingInput = detection.mapping
        confidence: Optional[float] = detection.confidence
    else:
        resolved = mapping
        confidence = None

    validation = validate_mapping(resolved, len(headers))
    if not validation.is_valid:
        raise InvalidMappingError(validation)
    if not isinstance(resolved, ColumnMapping):
        resolved = ColumnMapping.model_validate(dict(resolved))
    return resolved, confidence


def _pad(row: Sequence[Any], width: int) -> List[Any]:
    values = list(row)
    if len(values) < width:
        values.extend([None] * (width - len(values)))
    return values


async def _ingest(
    rows: Sequence[Sequence[Any]],
    *,
    store: "AggregateStore",
    file_name: str,
    file_size: Optional[int],
    mapping: Optional[MappingInput],
    header_row: Optional[int],
    chunk_size: int,
    merge_within_chunk: bool,
) -> IngestionResult:
    stopwatch = Stopwatch()
    grid = [list(row) for row in rows]

    header_index = find_header_row(grid) if header_row is None else header_row
    if not 0 <= header_index < len(grid):
        raise NoHeadersError(f"Header row {header_index} is outside the sheet ({len(grid)} rows)")
    headers = [cell_text(value).strip() for value in grid[header_index]]
    data_rows = grid[header_index + 1 :]

    sample = [row for row in data_rows if not is_blank_row(row)][:SAMPLE_ROWS]
    column_mapping, confidence = _resolve_mapping(headers, sample, mapping)

    extracted: List[SourceRow] = []
    rejections: List[RejectedRow] = []
    blank_rows = 0
    for offset, raw in enumerate(data_rows):
        row_number = header_index + offset + 2
        if is_blank_row(raw):
            blank_rows += 1
            continue
        try:
            row = extract_row(_pad(raw, len(headers)), column_mapping)
        except RowExtractionError as exc:
            logger.debug("Rejected row %d of %s: %s", row_number, file_name, exc)
            rejections.append(
                RejectedRow(
                    row_number=row_number,
                    reason=str(exc),
                    values={"name": exc.name, "quantity": exc.quantity, "unit": exc.unit},
                )
            )
            continue
        extracted.append(SourceRow(row_number=row_number, row=row))
    stopwatch.checkpoint("rows_extracted")

    file_id = await store.register_file(
        file_name,
        file_size=file_size,
        row_count=len(extracted),
        column_mapping=column_mapping.to_wire(),
        headers=headers,
    )
    stopwatch.checkpoint("file_registered")

    if len(extracted) >= LARGE_SHEET_ROWS:
        log_event(
            "Processing large sheet in chunks",
            file_id=file_id,
            rows=len(extracted),
            chunk_size=chunk_size,
        )

    async def save_rows(batch: List[SourceRow]) -> List[SourceRow]:
        await store.add_rows(file_id, batch)
        return batch

    saver: ChunkedRowProcessor[SourceRow] = ChunkedRowProcessor(chunk_size)
    saver.add_rows(extracted)
    await saver.process_in_chunks(save_rows)
    stopwatch.checkpoint("rows_saved")

    engine = AggregationEngine(store, chunk_size=chunk_size, merge_within_chunk=merge_within_chunk)
    aggregates = await engine.aggregate(extracted, file_id)
    stopwatch.checkpoint("aggregated")

    result = IngestionResult(
        file_id=file_id,
        file_name=file_name,
        header_row=header_index,
        headers=headers,
        mapping=column_mapping,
        confidence=confidence,
        total_rows=len(data_rows),
        extracted_rows=len(extracted),
        rejected_rows=len(rejections),
        blank_rows=blank_rows,
        rejections=rejections,
        aggregates=aggregates,
        timings=stopwatch.as_dict(),
    )
    log_event(
        "File ingested",
        file_id=file_id,
        file_name=file_name,
        total_rows=result.total_rows,
        extracted_rows=result.extracted_rows,
        rejected_rows=result.rejected_rows,
        aggregates=len(aggregates),
    )
    return result


async def ingest_grid(
    rows: Sequence[Sequence[Any]],
    *,
    store: "AggregateStore",
    file_name: str,
    file_size: Optional[int] = None,
    mapping: Optional[MappingInput] = None,
    header_row: Optional[int] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    timeout: Optional[float] = INGEST_TIMEOUT_SECONDS,
    merge_within_chunk: bool = False,
) -> IngestionResult:
    """Ingest one sheet's rows into ``store`` and summarise the outcome.

    ``mapping`` skips automatic detection (it is still validated against the
    header width). ``header_row`` is a 0-based grid index; by default the
    most header-like row is used.

    Raises:
        NoHeadersError, InsufficientColumnsError: detection could not run or
            could not resolve the required fields.
        InvalidMappingError: the mapping failed validation.
        UpsertFailure: the store failed; committed upserts stay committed.
        IngestTimeoutError: the whole operation exceeded ``timeout`` seconds.
    """

    token = bind_ingest_id(new_ingest_id())
    try:
        return await asyncio.wait_for(
            _ingest(
                rows,
                store=store,
                file_name=file_name,
                file_size=file_size,
                mapping=mapping,
                header_row=header_row,
                chunk_size=chunk_size,
                merge_within_chunk=merge_within_chunk,
            ),
            timeout,
        )
    except asyncio.TimeoutError as exc:
        log_event("Ingestion timed out", file_name=file_name, timeout=timeout)
        raise IngestTimeoutError(file_name, timeout or 0.0) from exc
    finally:
        reset_ingest_id(token)


async def ingest_file(
    content: bytes,
    filename: str,
    *,
    store: "AggregateStore",
    sheet_name: Optional[str] = None,
    **options: Any,
) -> IngestionResult:
    """Read ``content`` with :func:`read_grid` and ingest it."""

    grid = read_grid(content, filename, sheet_name)
    return await ingest_grid(
        grid.rows,
        store=store,
        file_name=filename,
        file_size=len(content),
        **options,
    )
