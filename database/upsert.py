"""
Dialect-aware ``INSERT … ON CONFLICT`` construct.
"""

from __future__ import annotations

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(session: AsyncSession):
    """Return the ``insert`` function supporting ``on_conflict_do_update`` for the session's backend."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise NotImplementedError(f"No upsert support for dialect {dialect!r}")
