"""Chunked row processor tests."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from stocktally.ingest.chunking import ChunkedRowProcessor, iter_chunks


def test_iter_chunks_preserves_order():
    assert list(iter_chunks([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(iter_chunks([], 3)) == []


def test_iter_chunks_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(iter_chunks([1], 0))


class TestChunkedRowProcessor:
    def test_buffering(self):
        processor = ChunkedRowProcessor(chunk_size=2)
        processor.add_row("a")
        processor.add_rows(["b", "c"])
        assert processor.row_count == 3

        processor.clear()
        assert processor.row_count == 0

    def test_rejects_non_positive_chunk_size(self):
        with pytest.raises(ValueError):
            ChunkedRowProcessor(chunk_size=0)

    def test_batches_are_bounded_and_ordered(self):
        processor = ChunkedRowProcessor(chunk_size=3)
        processor.add_rows(range(8))
        seen: List[List[int]] = []

        def handle(batch):
            seen.append(list(batch))
            return [value * 10 for value in batch]

        results = asyncio.run(processor.process_in_chunks(handle))

        assert seen == [[0, 1, 2], [3, 4, 5], [6, 7]]
        assert results == [value * 10 for value in range(8)]

    def test_async_processor(self):
        processor = ChunkedRowProcessor(chunk_size=2)
        processor.add_rows(["a", "b", "c"])

        async def handle(batch):
            await asyncio.sleep(0)
            return [value.upper() for value in batch]

        assert asyncio.run(processor.process_in_chunks(handle)) == ["A", "B", "C"]

    def test_empty_buffer_never_calls_processor(self):
        processor = ChunkedRowProcessor(chunk_size=2)
        calls = []

        results = asyncio.run(processor.process_in_chunks(lambda batch: calls.append(batch) or batch))

        assert results == []
        assert calls == []

    def test_batches_run_sequentially(self):
        processor = ChunkedRowProcessor(chunk_size=1)
        processor.add_rows([1, 2, 3])
        active = 0
        peak = 0

        async def handle(batch):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.001)
            active -= 1
            return batch

        asyncio.run(processor.process_in_chunks(handle))
        assert peak == 1

    def test_yields_to_other_tasks_between_batches(self):
        processor = ChunkedRowProcessor(chunk_size=1)
        processor.add_rows([1, 2, 3])
        events: List[str] = []

        def handle(batch):
            events.append(f"batch-{batch[0]}")
            return batch

        async def ticker():
            for _ in range(3):
                events.append("tick")
                await asyncio.sleep(0)

        async def main():
            await asyncio.gather(processor.process_in_chunks(handle), ticker())

        asyncio.run(main())

        # a synchronous processor never suspends, so any interleaving comes
        # from the yield after each batch
        assert events.index("tick") < events.index("batch-2")
        assert events[0] == "batch-1"

    def test_failure_aborts_remaining_batches(self):
        processor = ChunkedRowProcessor(chunk_size=2)
        processor.add_rows(range(6))
        processed: List[int] = []

        def handle(batch):
            if batch[0] == 2:
                raise RuntimeError("storage down")
            processed.extend(batch)
            return batch

        with pytest.raises(RuntimeError, match="storage down"):
            asyncio.run(processor.process_in_chunks(handle))

        # first batch's effects are kept, third never runs
        assert processed == [0, 1]
