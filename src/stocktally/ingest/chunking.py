"""Bounded-size batching for large row streams."""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from typing import Any, Callable, Generic, Iterable, Iterator, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = int(os.getenv("STOCKTALLY_CHUNK_SIZE", "1000"))

T = TypeVar("T")


def iter_chunks(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield contiguous slices of ``items`` of at most ``size`` elements."""

    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class ChunkedRowProcessor(Generic[T]):
    """Buffer rows and hand them to a processor one bounded batch at a time.

    Batches run strictly in sequence, in buffer order. After every batch the
    processor yields to the event loop so one large sheet cannot starve other
    uploads. A failing batch aborts the remaining ones; effects of batches that
    already ran are kept.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError(f"chunk size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self._rows: List[T] = []

    def add_row(self, row: T) -> None:
        self._rows.append(row)

    def add_rows(self, rows: Iterable[T]) -> None:
        self._rows.extend(rows)

    @property
    def row_count(self) -> int:
        return len(self._rows)

    def clear(self) -> None:
        self._rows = []

    async def process_in_chunks(self, processor: Callable[[List[T]], Any]) -> List[Any]:
        """Run ``processor`` over every batch and return the concatenated results.

        ``processor`` may be a plain function or a coroutine function; it
        receives one batch (a list) and returns one result per item.
        """

        results: List[Any] = []
        total = len(self._rows)
        for number, batch in enumerate(iter_chunks(self._rows, self.chunk_size), start=1):
            outcome = processor(batch)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            results.extend(outcome)
            logger.debug(
                "Processed chunk %d (%d rows, %d/%d done)",
                number,
                len(batch),
                min(number * self.chunk_size, total),
                total,
            )
            await asyncio.sleep(0)
        return results
