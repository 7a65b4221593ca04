"""
Atomic bulk writes.

`INSERT ... ON CONFLICT` replaces check-then-insert so two overlapping runs
for the same date cannot both insert the same row. PostgreSQL and SQLite
share the syntax; both dialect `insert` constructs expose `excluded`.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from mathflat_sync.db.models.base import Base

# Keeps a single statement's bound parameters well under driver limits.
DEFAULT_CHUNK_SIZE = 200


def chunked(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most `size` items."""
    step = max(size, 1)
    for start in range(0, len(rows), step):
        yield rows[start:start + step]


def _insert_for(session: Session, model: type[Base]):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT writes are not supported for dialect {dialect!r}")


def upsert_rows(
    session: Session,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
    keep_existing_when_null: Sequence[str] = (),
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Insert rows, refreshing `update_columns` of rows that already exist.

    Args:
        session: Open session (the caller commits)
        model: ORM model of the target table
        rows: Column dictionaries; every row must carry the conflict columns
        conflict_columns: Columns of the unique constraint
        update_columns: Columns overwritten on conflict
        keep_existing_when_null: Subset of `update_columns` that keeps the
            stored value when the incoming one is NULL

    Returns:
        Number of rows written (inserted or updated)
    """
    written = 0
    keep = set(keep_existing_when_null)
    table = model.__table__
    for chunk in chunked(rows, chunk_size):
        stmt = _insert_for(session, model).values(list(chunk))
        set_: dict[str, Any] = {}
        for column in update_columns:
            incoming = stmt.excluded[column]
            if column in keep:
                set_[column] = func.coalesce(incoming, table.c[column])
            else:
                set_[column] = incoming
        if "updated_at" in table.c and "updated_at" not in set_:
            set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)
        result = session.execute(stmt)
        written += result.rowcount if result.rowcount >= 0 else len(chunk)
    return written


def insert_ignore_rows(
    session: Session,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    conflict_columns: Sequence[str],
) -> int:
    """
    Insert rows, silently skipping any that collide on `conflict_columns`.

    Returns:
        Number of rows actually inserted
    """
    if not rows:
        return 0
    stmt = _insert_for(session, model).values(list(rows))
    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = session.execute(stmt)
    return max(result.rowcount or 0, 0)
