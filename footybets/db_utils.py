"""Database utility functions for cross-database compatibility."""

import logging
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession, model):
    """Pick the dialect-specific INSERT construct that supports ON CONFLICT."""
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    if dialect == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


async def upsert(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
) -> int:
    """
    Database-agnostic upsert operation (PostgreSQL and SQLite).

    Both dialects support INSERT ... ON CONFLICT, so the statement is atomic
    and safe under concurrent writers hitting the same unique key.

    Args:
        session: AsyncSession instance
        model: SQLModel table class
        values: Dictionary of column values to insert/update
        conflict_columns: Columns that define uniqueness (for conflict detection)
        update_columns: Columns to update on conflict (defaults to all non-conflict
            columns). Pass an empty list for insert-if-absent.

    Returns:
        Number of rows inserted or updated (0 when an insert-if-absent hit an
        existing row).

    Example:
        await upsert(
            session,
            Bet,
            {"fid": 42, "match_id": "240300012", "gameweek": 3, "prediction": "X"},
            conflict_columns=["fid", "match_id"],
            update_columns=["prediction", "updated_at"],
        )
    """
    if update_columns is None:
        update_columns = [k for k in values.keys() if k not in conflict_columns]

    stmt = _insert_for(session, model).values(**values)

    if update_columns:
        update_dict = {col: getattr(stmt.excluded, col) for col in update_columns}
        stmt = stmt.on_conflict_do_update(
            index_elements=conflict_columns,
            set_=update_dict,
        )
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)

    result = await session.execute(stmt)
    return result.rowcount or 0


async def insert_if_absent(
    session: AsyncSession,
    model: type,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """Insert a row unless the unique key already exists. Returns True if inserted."""
    inserted = await upsert(session, model, values, conflict_columns, update_columns=[])
    if not inserted:
        logger.debug(f"Row already present in {model.__tablename__} for {conflict_columns}")
    return inserted > 0
