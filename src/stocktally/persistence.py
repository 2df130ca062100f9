"""Storage interface consumed by the aggregation engine, plus an in-memory store."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from stocktally.ingest.models import AggregateKey, AggregateRecord, Contribution, SourceRow


@runtime_checkable
class AggregateStore(Protocol):
    """Persistence primitives the ingestion core relies on.

    ``upsert`` must be atomic per call: creating the record or adding
    ``contribution`` to it (quantity, count and source file) happens as one
    step at the storage layer, never as a caller-side read-modify-write.
    """

    async def register_file(
        self,
        file_name: str,
        *,
        file_size: Optional[int] = None,
        row_count: int = 0,
        column_mapping: Optional[Dict[str, int]] = None,
        headers: Optional[List[str]] = None,
    ) -> str:
        ...

    async def add_rows(self, file_id: str, rows: Sequence[SourceRow]) -> None:
        ...

    async def upsert(self, key: AggregateKey, contribution: Contribution) -> AggregateRecord:
        ...

    async def get(self, key: AggregateKey) -> Optional[AggregateRecord]:
        ...

    async def list_aggregates(self) -> List[AggregateRecord]:
        ...

    async def list_rows(self, file_id: str) -> List[SourceRow]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredFile:
    file_id: str
    file_name: str
    file_size: Optional[int]
    row_count: int
    column_mapping: Dict[str, int]
    headers: List[str]
    rows: List[SourceRow] = field(default_factory=list)
    uploaded_at: datetime = field(default_factory=_utcnow)


class MemoryAggregateStore:
    """Process-local store; every mutation happens under one ``asyncio.Lock``.

    Mutations never suspend while the lock is held, so each ``upsert`` is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._files: Dict[str, StoredFile] = {}
        self._aggregates: Dict[AggregateKey, AggregateRecord] = {}

    async def register_file(
        self,
        file_name: str,
        *,
        file_size: Optional[int] = None,
        row_count: int = 0,
        column_mapping: Optional[Dict[str, int]] = None,
        headers: Optional[List[str]] = None,
    ) -> str:
        file_id = str(uuid.uuid4())
        async with self._lock:
            self._files[file_id] = StoredFile(
                file_id=file_id,
                file_name=file_name,
                file_size=file_size,
                row_count=row_count,
                column_mapping=dict(column_mapping or {}),
                headers=list(headers or []),
            )
        return file_id

    async def add_rows(self, file_id: str, rows: Sequence[SourceRow]) -> None:
        async with self._lock:
            if file_id not in self._files:
                raise KeyError(f"unknown file id: {file_id}")
            self._files[file_id].rows.extend(rows)

    async def upsert(self, key: AggregateKey, contribution: Contribution) -> AggregateRecord:
        async with self._lock:
            now = _utcnow()
            record = self._aggregates.get(key)
            if record is None:
                record = AggregateRecord(
                    id=str(uuid.uuid4()),
                    item_id=key.item_id,
                    name=key.name,
                    unit=key.unit,
                    quantity=contribution.quantity,
                    count=contribution.count,
                    source_files=[contribution.source_file] if contribution.source_file else [],
                    created_at=now,
                    updated_at=now,
                )
            else:
                sources = list(record.source_files)
                if contribution.source_file and contribution.source_file not in sources:
                    sources.append(contribution.source_file)
                record = record.model_copy(
                    update={
                        "quantity": record.quantity + contribution.quantity,
                        "count": record.count + contribution.count,
                        "source_files": sources,
                        "updated_at": now,
                    }
                )
            self._aggregates[key] = record
            return record.model_copy(deep=True)

    async def get(self, key: AggregateKey) -> Optional[AggregateRecord]:
        record = self._aggregates.get(key)
        return record.model_copy(deep=True) if record is not None else None

    async def list_aggregates(self) -> List[AggregateRecord]:
        return [record.model_copy(deep=True) for record in self._aggregates.values()]

    async def list_rows(self, file_id: str) -> List[SourceRow]:
        stored = self._files.get(file_id)
        return list(stored.rows) if stored is not None else []

    def get_file(self, file_id: str) -> Optional[StoredFile]:
        return self._files.get(file_id)
