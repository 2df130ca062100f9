"""Aggregation engine tests against the in-memory store."""

from __future__ import annotations

import asyncio
import logging
from typing import List

import hypothesis.strategies as st
import pytest
from hypothesis import given, settings

from stocktally.ingest.aggregation import AggregationEngine
from stocktally.ingest.chunking import ChunkedRowProcessor
from stocktally.ingest.errors import UpsertFailure
from stocktally.ingest.models import AggregateKey, ExtractedRow, SourceRow
from stocktally.persistence import MemoryAggregateStore


def _row(quantity: float, *, item_id="A001", name="X", unit="kg") -> ExtractedRow:
    return ExtractedRow(item_id=item_id, name=name, quantity=quantity, unit=unit)


class FailingStore(MemoryAggregateStore):
    """Memory store whose upsert breaks after ``fail_after`` successful calls."""

    def __init__(self, fail_after: int, error: Exception):
        super().__init__()
        self.fail_after = fail_after
        self.error = error
        self.calls = 0

    async def upsert(self, key, contribution):
        self.calls += 1
        if self.calls > self.fail_after:
            raise self.error
        return await super().upsert(key, contribution)


class TestAggregate:
    def test_same_key_across_files_merges(self):
        store = MemoryAggregateStore()
        engine = AggregationEngine(store)

        async def run():
            await engine.aggregate([_row(50)], "F1")
            await engine.aggregate([_row(25)], "F2")
            return await store.get(AggregateKey("A001", "X", "kg"))

        record = asyncio.run(run())

        assert record.quantity == 75
        assert record.count == 2
        assert set(record.source_files) == {"F1", "F2"}

    def test_same_file_twice_keeps_one_source_entry(self):
        store = MemoryAggregateStore()
        engine = AggregationEngine(store)

        async def run():
            await engine.aggregate([_row(1), _row(2)], "F1")
            return await engine.aggregate([_row(3)], "F1")

        records = asyncio.run(run())

        assert len(records) == 1
        assert records[0].quantity == 6
        assert records[0].count == 3
        assert records[0].source_files == ["F1"]

    def test_distinct_keys_stay_separate(self):
        store = MemoryAggregateStore()
        rows = [
            _row(1, unit="kg"),
            _row(2, unit="szt"),
            _row(3, item_id=None),
            _row(4, name="x"),
        ]

        records = asyncio.run(AggregationEngine(store).aggregate(rows, "F1"))

        assert [record.quantity for record in records] == [1, 2, 3, 4]
        assert [record.key for record in records] == [
            AggregateKey("A001", "X", "kg"),
            AggregateKey("A001", "X", "szt"),
            AggregateKey("", "X", "kg"),
            AggregateKey("A001", "x", "kg"),
        ]

    def test_returns_touched_records_in_first_touch_order_with_final_state(self):
        store = MemoryAggregateStore()
        rows = [_row(1, name="B"), _row(2, name="A"), _row(3, name="B")]

        records = asyncio.run(AggregationEngine(store, chunk_size=2).aggregate(rows, "F1"))

        assert [record.name for record in records] == ["B", "A"]
        assert records[0].quantity == 4
        assert records[0].count == 2

    def test_accepts_source_rows(self):
        store = MemoryAggregateStore()
        rows = [SourceRow(row_number=2, row=_row(5)), SourceRow(row_number=3, row=_row(6))]

        records = asyncio.run(AggregationEngine(store).aggregate(rows, "F1"))

        assert records[0].quantity == 11

    def test_empty_stream(self):
        records = asyncio.run(AggregationEngine(MemoryAggregateStore()).aggregate([], "F1"))
        assert records == []

    def test_concurrent_uploads_do_not_lose_updates(self):
        store = MemoryAggregateStore()

        async def run():
            engines = [AggregationEngine(store, chunk_size=3) for _ in range(5)]
            await asyncio.gather(
                *(engine.aggregate([_row(1)] * 20, f"F{index}") for index, engine in enumerate(engines))
            )
            return await store.get(AggregateKey("A001", "X", "kg"))

        record = asyncio.run(run())

        assert record.quantity == 100
        assert record.count == 100
        assert sorted(record.source_files) == ["F0", "F1", "F2", "F3", "F4"]


class TestMergeWithinChunk:
    def test_pre_merge_gives_identical_totals(self):
        rows = [_row(1), _row(2, name="Y"), _row(3), _row(4, name="Y"), _row(5)]

        async def run(merge):
            store = MemoryAggregateStore()
            engine = AggregationEngine(store, chunk_size=2, merge_within_chunk=merge)
            await engine.aggregate(rows, "F1")
            return sorted(
                (record.name, record.quantity, record.count, tuple(record.source_files))
                for record in await store.list_aggregates()
            )

        assert asyncio.run(run(True)) == asyncio.run(run(False))

    def test_pre_merge_uses_one_upsert_per_key_per_chunk(self):
        store = FailingStore(fail_after=1000, error=RuntimeError("unused"))
        engine = AggregationEngine(store, chunk_size=10, merge_within_chunk=True)

        asyncio.run(engine.aggregate([_row(1)] * 10, "F1"))

        assert store.calls == 1

    def test_batches_do_not_hold_per_row_records(self, monkeypatch):
        outcomes = []
        process_in_chunks = ChunkedRowProcessor.process_in_chunks

        async def recording(self, processor):
            outcome = await process_in_chunks(self, processor)
            outcomes.append(outcome)
            return outcome

        monkeypatch.setattr(ChunkedRowProcessor, "process_in_chunks", recording)
        engine = AggregationEngine(MemoryAggregateStore(), chunk_size=3)

        records = asyncio.run(engine.aggregate([_row(1)] * 10, "F1"))

        assert outcomes == [[]]
        assert records[0].quantity == 10


class TestManualEntry:
    def test_creates_record_without_sources(self):
        store = MemoryAggregateStore()
        engine = AggregationEngine(store)

        record = asyncio.run(engine.add_manual_entry(_row(7)))

        assert record.quantity == 7
        assert record.count == 1
        assert record.source_files == []

    def test_increments_existing_record_and_keeps_its_sources(self):
        store = MemoryAggregateStore()
        engine = AggregationEngine(store)

        async def run():
            await engine.aggregate([_row(10)], "F1")
            return await engine.add_manual_entry(_row(5))

        record = asyncio.run(run())

        assert record.quantity == 15
        assert record.count == 2
        assert record.source_files == ["F1"]

    def test_optional_source_file_joins_the_source_set(self):
        engine = AggregationEngine(MemoryAggregateStore())

        async def run():
            await engine.add_manual_entry(_row(1))
            return await engine.add_manual_entry(_row(2), source_file="manual-F9")

        record = asyncio.run(run())
        assert record.source_files == ["manual-F9"]
        assert record.count == 2

    def test_storage_error_is_wrapped(self):
        engine = AggregationEngine(FailingStore(fail_after=0, error=RuntimeError("disk full")))

        with pytest.raises(UpsertFailure) as excinfo:
            asyncio.run(engine.add_manual_entry(_row(1)))

        assert excinfo.value.source_file is None
        assert "disk full" in excinfo.value.detail


class TestUpsertFailure:
    def test_storage_error_is_wrapped_and_logged(self, caplog):
        store = FailingStore(fail_after=1, error=ConnectionError("db unreachable"))
        engine = AggregationEngine(store)

        with caplog.at_level(logging.ERROR, logger="stocktally.ingest.aggregation"):
            with pytest.raises(UpsertFailure) as excinfo:
                asyncio.run(engine.aggregate([_row(1), _row(2), _row(3)], "F1"))

        error = excinfo.value
        assert error.key == AggregateKey("A001", "X", "kg")
        assert error.source_file == "F1"
        assert "db unreachable" in error.detail
        assert "db unreachable" not in str(error)
        assert str(error) == UpsertFailure.user_message
        assert isinstance(error.__cause__, ConnectionError)
        assert any(record.getMessage() == "Aggregate upsert failed" for record in caplog.records)

    def test_upsert_failure_from_store_passes_through(self):
        original = UpsertFailure(detail="constraint violated")
        store = FailingStore(fail_after=0, error=original)

        with pytest.raises(UpsertFailure) as excinfo:
            asyncio.run(AggregationEngine(store).aggregate([_row(1)], "F1"))

        assert excinfo.value is original

    def test_failure_stops_the_file_but_keeps_committed_upserts(self):
        store = FailingStore(fail_after=2, error=RuntimeError("boom"))

        with pytest.raises(UpsertFailure):
            asyncio.run(AggregationEngine(store, chunk_size=2).aggregate([_row(1)] * 5, "F1"))

        record = asyncio.run(store.get(AggregateKey("A001", "X", "kg")))
        assert record.quantity == 2
        assert store.calls == 3


QUANTITIES = st.lists(
    st.floats(min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False),
    min_size=1,
    max_size=20,
)


class TestAggregationProperties:
    @settings(max_examples=50, deadline=None)
    @given(QUANTITIES, st.randoms(use_true_random=False))
    def test_total_is_order_independent(self, quantities: List[float], rng):
        shuffled = list(quantities)
        rng.shuffle(shuffled)

        async def total(values):
            store = MemoryAggregateStore()
            records = await AggregationEngine(store, chunk_size=3).aggregate(
                [_row(value) for value in values], "F1"
            )
            return records[0]

        forward = asyncio.run(total(quantities))
        reordered = asyncio.run(total(shuffled))

        assert forward.quantity == pytest.approx(sum(quantities), abs=1e-6)
        assert reordered.quantity == pytest.approx(forward.quantity, abs=1e-6)
        assert forward.count == reordered.count == len(quantities)

    @settings(max_examples=25, deadline=None)
    @given(st.lists(st.sampled_from(["F1", "F2", "F3"]), min_size=1, max_size=10))
    def test_source_files_are_unique(self, files):
        async def run():
            store = MemoryAggregateStore()
            engine = AggregationEngine(store)
            for file_id in files:
                await engine.aggregate([_row(1)], file_id)
            return await store.get(AggregateKey("A001", "X", "kg"))

        record = asyncio.run(run())

        assert sorted(record.source_files) == sorted(set(files))
        assert record.count == len(files)
