"""Streaming aggregation of extracted rows into persisted running totals.

Every contribution goes through the store's atomic ``upsert``; nothing is
cached between rows, so concurrent uploads touching the same key are merged
by the storage layer and never lose an increment.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple, Union

from stocktally.ingest.chunking import DEFAULT_CHUNK_SIZE, ChunkedRowProcessor
from stocktally.ingest.errors import UpsertFailure
from stocktally.ingest.models import (
    AggregateKey,
    AggregateRecord,
    Contribution,
    ExtractedRow,
    SourceRow,
)

if TYPE_CHECKING:
    from stocktally.persistence import AggregateStore

logger = logging.getLogger(__name__)


def _merge_batch(
    rows: List[ExtractedRow], source_file: str
) -> List[Tuple[AggregateKey, Contribution]]:
    """Collapse rows with equal keys into one contribution each, first-seen order."""

    totals: Dict[AggregateKey, Tuple[float, int]] = {}
    for row in rows:
        quantity, count = totals.get(row.key, (0.0, 0))
        totals[row.key] = (quantity + row.quantity, count + 1)
    return [
        (key, Contribution(quantity=quantity, source_file=source_file, count=count))
        for key, (quantity, count) in totals.items()
    ]


class AggregationEngine:
    """Merge extracted rows into aggregate records through an ``AggregateStore``.

    Rows are processed in their original order, one bounded chunk at a time.
    With ``merge_within_chunk`` rows sharing a key inside one chunk are summed
    first and written with a single upsert; totals are the same either way.
    """

    def __init__(
        self,
        store: "AggregateStore",
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        merge_within_chunk: bool = False,
    ):
        self.store = store
        self.chunk_size = chunk_size
        self.merge_within_chunk = merge_within_chunk

    async def aggregate(
        self,
        rows: Iterable[Union[ExtractedRow, SourceRow]],
        source_file: str,
    ) -> List[AggregateRecord]:
        """Apply every row from ``source_file`` and return the touched records.

        Records are returned once each, in the order their keys were first
        touched, carrying the state after the last contribution.

        Raises:
            UpsertFailure: the store could not apply a contribution. Fatal for
                the whole file; upserts that already committed stay committed.
        """

        processor: ChunkedRowProcessor[ExtractedRow] = ChunkedRowProcessor(self.chunk_size)
        processor.add_rows(row.row if isinstance(row, SourceRow) else row for row in rows)

        touched: Dict[AggregateKey, AggregateRecord] = {}

        async def apply_batch(batch: List[ExtractedRow]) -> List[AggregateRecord]:
            # touched holds the results; nothing is kept per row
            if self.merge_within_chunk:
                contributions = _merge_batch(batch, source_file)
            else:
                contributions = [
                    (row.key, Contribution(quantity=row.quantity, source_file=source_file))
                    for row in batch
                ]
            for key, contribution in contributions:
                touched[key] = await self._upsert(key, contribution)
            return []

        await processor.process_in_chunks(apply_batch)
        logger.debug(
            "Aggregated %d rows from %s into %d records",
            processor.row_count,
            source_file,
            len(touched),
        )
        return list(touched.values())

    async def add_manual_entry(
        self, row: ExtractedRow, *, source_file: Optional[str] = None
    ) -> AggregateRecord:
        """Add one hand-entered item through the same atomic upsert as file rows.

        A new key starts at ``count == 1``; an existing one is incremented.
        Without ``source_file`` the record's source set is left as it is.
        """

        record = await self._upsert(
            row.key, Contribution(quantity=row.quantity, source_file=source_file)
        )
        logger.debug("Manual entry applied to %s (quantity %s)", row.key, row.quantity)
        return record

    async def _upsert(self, key: AggregateKey, contribution: Contribution) -> AggregateRecord:
        try:
            return await self.store.upsert(key, contribution)
        except Exception as exc:
            detail = exc.detail if isinstance(exc, UpsertFailure) else repr(exc)
            logger.exception(
                "Aggregate upsert failed",
                extra={
                    "payload": {
                        "key": key._asdict(),
                        "source_file": contribution.source_file,
                        "detail": detail,
                    }
                },
            )
            if isinstance(exc, UpsertFailure):
                raise
            raise UpsertFailure(key=key, source_file=contribution.source_file, detail=detail) from exc
