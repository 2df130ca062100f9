"""Database layer for the inventory store.

Provides SQLAlchemy models, async session management and the SQL-backed
aggregate store.
"""

from stocktally.db.models import (
    AggregateItem,
    AggregateSource,
    Base,
    SheetRow,
    SourceFile,
)
from stocktally.db.session import (
    DATABASE_URL,
    create_engine,
    create_sessionmaker,
    drop_all,
    init_db,
    session_scope,
)
from stocktally.db.store import SqlAggregateStore

__all__ = [
    # Models
    "Base",
    "SourceFile",
    "SheetRow",
    "AggregateItem",
    "AggregateSource",
    # Session management
    "DATABASE_URL",
    "create_engine",
    "create_sessionmaker",
    "session_scope",
    "init_db",
    "drop_all",
    # Store
    "SqlAggregateStore",
]
