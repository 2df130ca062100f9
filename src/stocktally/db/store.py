"""SQL implementation of the aggregate store.

``upsert`` runs as one transaction of two atomic statements:

    INSERT INTO aggregate_items ... ON CONFLICT (item_id, name, unit)
    DO UPDATE SET quantity = quantity + excluded.quantity,
                  count = count + excluded.count
    INSERT INTO aggregate_sources ... ON CONFLICT DO NOTHING

The second statement is skipped for manual entries, which have no source file.

The increments are evaluated by the database, so concurrent uploads of the
same item never overwrite each other's totals.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from stocktally.db.models import AggregateItem, AggregateSource, SheetRow, SourceFile
from stocktally.db.session import create_sessionmaker, session_scope
from stocktally.ingest.errors import UpsertFailure
from stocktally.ingest.models import (
    AggregateKey,
    AggregateRecord,
    Contribution,
    ExtractedRow,
    SourceRow,
)

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


def _key_clause(key: AggregateKey):
    return (
        (AggregateItem.item_id == key.item_id)
        & (AggregateItem.name == key.name)
        & (AggregateItem.unit == key.unit)
    )


def _to_record(item: AggregateItem, source_files: List[str]) -> AggregateRecord:
    return AggregateRecord(
        id=item.id,
        item_id=item.item_id,
        name=item.name,
        unit=item.unit,
        quantity=item.quantity,
        count=item.count,
        source_files=source_files,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


class SqlAggregateStore:
    """``AggregateStore`` backed by SQLite (aiosqlite) or PostgreSQL (asyncpg)."""

    def __init__(self, engine: AsyncEngine):
        dialect = engine.dialect.name
        if dialect not in _DIALECT_INSERTS:
            raise ValueError(f"Unsupported database dialect: {dialect}")
        self.engine = engine
        self._insert = _DIALECT_INSERTS[dialect]
        self._sessions = create_sessionmaker(engine)

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
        try:
            async with session_scope(self._sessions) as session:
                session.add(
                    SourceFile(
                        file_id=file_id,
                        file_name=file_name,
                        file_size=file_size,
                        row_count=row_count,
                        column_mapping=dict(column_mapping or {}),
                        headers=list(headers or []),
                    )
                )
        except SQLAlchemyError as exc:
            raise UpsertFailure(source_file=file_name, detail=f"register_file: {exc}") from exc
        logger.debug("Registered source file %s (%s)", file_id, file_name)
        return file_id

    async def add_rows(self, file_id: str, rows: Sequence[SourceRow]) -> None:
        if not rows:
            return
        values = [
            {
                "file_id": file_id,
                "row_number": source.row_number,
                "lp": source.row.lp,
                "item_id": source.row.item_id,
                "name": source.row.name,
                "quantity": source.row.quantity,
                "unit": source.row.unit,
            }
            for source in rows
        ]
        try:
            async with session_scope(self._sessions) as session:
                await session.execute(insert(SheetRow), values)
        except SQLAlchemyError as exc:
            raise UpsertFailure(source_file=file_id, detail=f"add_rows: {exc}") from exc

    async def upsert(self, key: AggregateKey, contribution: Contribution) -> AggregateRecord:
        table = AggregateItem.__table__
        stmt = self._insert(table).values(
            id=str(uuid.uuid4()),
            item_id=key.item_id,
            name=key.name,
            unit=key.unit,
            quantity=contribution.quantity,
            count=contribution.count,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.item_id, table.c.name, table.c.unit],
            set_={
                "quantity": table.c.quantity + stmt.excluded.quantity,
                "count": table.c["count"] + stmt.excluded["count"],
                "updated_at": func.now(),
            },
        )
        try:
            async with session_scope(self._sessions) as session:
                await session.execute(stmt)
                result = await session.execute(select(AggregateItem).where(_key_clause(key)))
                item = result.scalar_one()
                if contribution.source_file:
                    source_stmt = (
                        self._insert(AggregateSource.__table__)
                        .values(aggregate_id=item.id, file_id=contribution.source_file)
                        .on_conflict_do_nothing(index_elements=["aggregate_id", "file_id"])
                    )
                    await session.execute(source_stmt)
                sources = await self._source_files(session, [item.id])
                return _to_record(item, sources.get(item.id, []))
        except SQLAlchemyError as exc:
            raise UpsertFailure(
                key=key, source_file=contribution.source_file, detail=str(exc)
            ) from exc

    async def get(self, key: AggregateKey) -> Optional[AggregateRecord]:
        async with session_scope(self._sessions) as session:
            result = await session.execute(select(AggregateItem).where(_key_clause(key)))
            item = result.scalar_one_or_none()
            if item is None:
                return None
            sources = await self._source_files(session, [item.id])
            return _to_record(item, sources.get(item.id, []))

    async def list_aggregates(self) -> List[AggregateRecord]:
        async with session_scope(self._sessions) as session:
            result = await session.execute(
                select(AggregateItem).order_by(AggregateItem.created_at, AggregateItem.id)
            )
            items = result.scalars().all()
            sources = await self._source_files(session)
            return [_to_record(item, sources.get(item.id, [])) for item in items]

    async def list_rows(self, file_id: str) -> List[SourceRow]:
        """Return the stored rows of ``file_id`` in sheet order."""

        async with session_scope(self._sessions) as session:
            result = await session.execute(
                select(SheetRow).where(SheetRow.file_id == file_id).order_by(SheetRow.row_number)
            )
            rows = result.scalars().all()
            return [
                SourceRow(
                    row_number=row.row_number,
                    row=ExtractedRow(
                        lp=row.lp,
                        item_id=row.item_id,
                        name=row.name,
                        quantity=row.quantity,
                        unit=row.unit,
                    ),
                )
                for row in rows
            ]

    @staticmethod
    async def _source_files(
        session: AsyncSession, aggregate_ids: Optional[List[str]] = None
    ) -> Dict[str, List[str]]:
        """Group source file ids by aggregate; all aggregates when ids are omitted."""

        query = select(AggregateSource.aggregate_id, AggregateSource.file_id).order_by(
            AggregateSource.added_at, AggregateSource.file_id
        )
        if aggregate_ids is not None:
            query = query.where(AggregateSource.aggregate_id.in_(aggregate_ids))
        result = await session.execute(query)
        grouped: Dict[str, List[str]] = {}
        for aggregate_id, file_id in result.all():
            grouped.setdefault(aggregate_id, []).append(file_id)
        return grouped
