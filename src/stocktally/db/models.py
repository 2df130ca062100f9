"""SQLAlchemy models for the inventory store.

Tables:
- source_files: one row per ingested sheet (mapping and headers as JSON)
- sheet_rows: extracted rows of each file, keyed by sheet row number
- aggregate_items: running totals, unique per (item_id, name, unit)
- aggregate_sources: set of files that contributed to each aggregate
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and local runs)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SourceFile(Base):
    """An uploaded spreadsheet and the column mapping used to read it."""

    __tablename__ = "source_files"

    file_id = Column(String(36), primary_key=True)
    file_name = Column(String(512), nullable=False)
    file_size = Column(Integer, nullable=True)
    row_count = Column(Integer, nullable=False, default=0)
    column_mapping = Column(JSONType, nullable=False, default=dict)
    headers = Column(JSONType, nullable=False, default=list)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    rows = relationship("SheetRow", back_populates="source_file", cascade="all, delete-orphan")


class SheetRow(Base):
    """One extracted row, kept for traceability of aggregate totals."""

    __tablename__ = "sheet_rows"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(
        String(36),
        ForeignKey("source_files.file_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_number = Column(Integer, nullable=False)
    lp = Column(Integer, nullable=True)
    item_id = Column(String(255), nullable=True)
    name = Column(String(512), nullable=False)
    quantity = Column(Float, nullable=False)
    unit = Column(String(64), nullable=False)

    source_file = relationship("SourceFile", back_populates="rows")

    __table_args__ = (Index("idx_sheet_rows_file_row", "file_id", "row_number"),)


class AggregateItem(Base):
    """Running total for one aggregate key.

    ``item_id`` stores ``''`` when rows carry no identifier so the unique
    constraint also covers id-less items (NULLs never collide).
    """

    __tablename__ = "aggregate_items"

    id = Column(String(36), primary_key=True)
    item_id = Column(String(255), nullable=False, default="")
    name = Column(String(512), nullable=False)
    unit = Column(String(64), nullable=False)
    quantity = Column(Float, nullable=False, default=0.0)
    count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    sources = relationship("AggregateSource", back_populates="aggregate", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("item_id", "name", "unit", name="uq_aggregate_items_key"),
        Index("idx_aggregate_items_name", "name"),
    )


class AggregateSource(Base):
    """Membership of a source file in an aggregate's source set."""

    __tablename__ = "aggregate_sources"

    aggregate_id = Column(
        String(36),
        ForeignKey("aggregate_items.id", ondelete="CASCADE"),
        primary_key=True,
    )
    file_id = Column(String(36), primary_key=True)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    aggregate = relationship("AggregateItem", back_populates="sources")
