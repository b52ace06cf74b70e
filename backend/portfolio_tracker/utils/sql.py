# backend/portfolio_tracker/utils/sql.py
"""
SQL utility functions.

This module provides helpers for statement construction that must work on
both PostgreSQL (production) and SQLite (tests):
- upsert: INSERT ... ON CONFLICT (...) DO UPDATE for a batch of rows

Usage:
    from portfolio_tracker.utils.sql import upsert

    upsert(
        db, PriceHistory, records,
        index_elements=["asset_id", "date"],
        update_columns=["open", "high", "low", "close", "volume", "currency", "updated_at"],
    )
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

# Both dialects expose the same on_conflict_do_update() signature
_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert(
        db: Session,
        model: type,
        records: list[dict[str, Any]],
        index_elements: list[str],
        update_columns: list[str],
) -> int:
    """
    Insert rows, overwriting the given columns when the unique key exists.

    Writes are keyed by the unique constraint covering index_elements, so
    re-running the same batch never creates duplicate rows. Last writer wins.

    Args:
        db: Database session (the statement runs on its bound connection)
        model: Mapped ORM class
        records: Row dicts keyed by column name
        index_elements: Columns of the unique constraint to conflict on
        update_columns: Columns overwritten on conflict

    Returns:
        Number of rows written (inserted or updated)

    Raises:
        NotImplementedError: If the database dialect has no upsert support here
    """
    if not records:
        return 0

    dialect_name = db.get_bind().dialect.name
    insert_fn = _INSERT_BY_DIALECT.get(dialect_name)
    if insert_fn is None:
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'")

    stmt = insert_fn(model).values(records)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={column: stmt.excluded[column] for column in update_columns},
    )

    db.execute(stmt)
    return len(records)
