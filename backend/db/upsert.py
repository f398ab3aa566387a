from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import insert as generic_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session


def _dialect_insert(dialect_name: str, model):
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        return None
    return dialect_insert(model)


def insert_ignoring_conflict(
    db: Session,
    model,
    values: dict[str, Any],
    conflict_columns: Sequence[str],
) -> bool:
    """``INSERT ... ON CONFLICT DO NOTHING`` against a unique key.

    Dialects without that clause get a savepoint; a duplicate-key error
    there rolls back only the savepoint. Callers read the surviving row
    afterwards, whichever writer created it. Returns whether this call
    inserted the row.
    """
    stmt = _dialect_insert(db.get_bind().dialect.name, model)
    if stmt is not None:
        result = db.execute(stmt.values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns)))
        return result.rowcount > 0
    try:
        with db.begin_nested():
            db.execute(generic_insert(model).values(**values))
    except IntegrityError:
        return False
    return True
