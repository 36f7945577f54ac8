"""
Idempotent upsert and relocation primitives.

Purpose
-------
The three write patterns every subsystem uses, expressed once per backend:

- `insert_ignore`: insert-if-absent keyed by a unique constraint; a duplicate
  is a no-op reported as `False`, never an error.
- `upsert_rows`: insert-or-refresh keyed by a unique constraint (bans).
- `relocate_rows`: copy matching rows into another table and delete them
  from the source within the caller's transaction (archive, quarantine and
  both restores).

All helpers run inside a session owned by the caller; they never commit.

Supported dialects: postgresql, sqlite, mysql/mariadb.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from sqlalchemy import ColumnElement, Table, delete, func, insert, literal, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from kzsync.core.logging.logger import get_logger

logger = get_logger(__name__)

TableLike = Union[Table, Any]


class RelocationMismatchError(RuntimeError):
    """Copied and deleted row counts differ; the transaction must roll back."""

    def __init__(self, source: str, target: str, copied: int, deleted: int) -> None:
        self.copied = copied
        self.deleted = deleted
        super().__init__(
            f"Relocation from {source} to {target} copied {copied} rows but deleted {deleted}"
        )


def as_table(model: TableLike) -> Table:
    """Accept either a SQLModel/ORM class or a Core Table."""
    return getattr(model, "__table__", model)


def _dialect_name(session: AsyncSession) -> str:
    return session.bind.dialect.name


# ============================================================================
# Insert-if-absent
# ============================================================================


async def insert_ignore(
    session: AsyncSession,
    model: TableLike,
    values: Mapping[str, Any],
    *,
    conflict_columns: Optional[Sequence[str]] = None,
) -> bool:
    """
    Insert one row unless a unique key already holds it.

    Returns
    -------
    bool
        True when a row was inserted, False when it already existed.
    """
    table = as_table(model)
    dialect = _dialect_name(session)

    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    elif dialect in ("mysql", "mariadb"):
        stmt = insert(table).values(**values).prefix_with("IGNORE")
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")

    result = await session.execute(stmt)
    return result.rowcount == 1


# ============================================================================
# Insert-or-refresh
# ============================================================================


async def upsert_rows(
    session: AsyncSession,
    model: TableLike,
    rows: Sequence[Mapping[str, Any]],
    *,
    conflict_columns: Sequence[str],
    update_columns: Optional[Iterable[str]] = None,
) -> int:
    """
    Insert rows, refreshing `update_columns` of rows whose key already exists.

    `update_columns` defaults to every supplied column outside the key.
    Returns the number of rows submitted.
    """
    if not rows:
        return 0

    table = as_table(model)
    dialect = _dialect_name(session)
    keys = set(conflict_columns)
    columns = list(update_columns) if update_columns is not None else [
        name for name in rows[0].keys() if name not in keys
    ]

    if dialect in ("postgresql", "sqlite"):
        builder = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = builder(table).values(list(rows))
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={name: stmt.excluded[name] for name in columns},
        )
    elif dialect in ("mysql", "mariadb"):
        stmt = mysql_insert(table).values(list(rows))
        stmt = stmt.on_duplicate_key_update({name: stmt.inserted[name] for name in columns})
    else:
        raise NotImplementedError(f"upsert_rows is not supported on {dialect}")

    await session.execute(stmt)
    return len(rows)


# ============================================================================
# Relocation
# ============================================================================


def column_mapping(
    source: TableLike,
    target: TableLike,
    *,
    rename: Optional[Mapping[str, str]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> dict[str, ColumnElement[Any]]:
    """
    Build the target-column -> source-expression map for `relocate_rows`.

    Target columns absent from the source (and not supplied through `extra`)
    are left out, so the database fills them.

    Parameters
    ----------
    rename:
        target column name -> source column name, for renamed keys.
    extra:
        target column name -> literal value, for provenance columns.
    """
    src = as_table(source)
    dst = as_table(target)
    rename = rename or {}
    extra = extra or {}

    mapping: dict[str, ColumnElement[Any]] = {}
    for column in dst.columns:
        if column.name in extra:
            mapping[column.name] = literal(extra[column.name], type_=column.type)
            continue
        source_name = rename.get(column.name, column.name)
        if source_name in src.c:
            mapping[column.name] = src.c[source_name]
    return mapping


async def count_rows(session: AsyncSession, model: TableLike, where: ColumnElement[bool]) -> int:
    table = as_table(model)
    result = await session.execute(select(func.count()).select_from(table).where(where))
    return int(result.scalar_one())


async def relocate_rows(
    session: AsyncSession,
    *,
    source: TableLike,
    target: TableLike,
    where: ColumnElement[bool],
    columns: Mapping[str, ColumnElement[Any]],
) -> int:
    """
    Move rows matching `where` from `source` to `target`.

    Copies with INSERT ... SELECT, then deletes with the same predicate.
    Must run inside the caller's transaction: a failure in either step, or a
    row-count mismatch between them, raises and the caller's rollback leaves
    both tables untouched.

    Returns
    -------
    int
        Number of rows relocated.
    """
    src = as_table(source)
    dst = as_table(target)

    select_stmt = select(*[expr.label(name) for name, expr in columns.items()]).where(where)
    copied = (await session.execute(insert(dst).from_select(list(columns.keys()), select_stmt))).rowcount
    deleted = (await session.execute(delete(src).where(where))).rowcount

    if copied != deleted:
        raise RelocationMismatchError(src.name, dst.name, copied, deleted)

    logger.debug(
        "Rows relocated",
        extra={"source": src.name, "target": dst.name, "rows": copied},
    )
    return copied
