"""Dialect-aware INSERT constructs for ON CONFLICT statements."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, model: Any):
    """Return an insert supporting ``on_conflict_*`` for the session's backend.

    Production runs on PostgreSQL; the test-suite runs on SQLite. Both expose
    the same ``on_conflict_do_nothing`` / ``on_conflict_do_update`` API.
    """

    dialect_name = session.get_bind().dialect.name
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported for dialect {dialect_name}")


__all__ = ["dialect_insert"]
