from __future__ import annotations

import re
from collections import Counter
from contextlib import contextmanager
from itertools import groupby
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ..errors import InternalQueryFailureError
from .models import Mutation, MutationOp
from .statement import bind_params_for

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that an identifier (table/column name) is safe for SQL interpolation.

    Table and column names come from mapper code, never from user input; this
    check only guards against programming mistakes.

    Raises:
        TypeError: If identifier is not a string
        ValueError: If identifier contains unsafe characters or is invalid
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    if len(name) > 128:
        raise ValueError(f"{identifier_type} {name!r} exceeds the 128-character limit")

    return name


def _where_clause(key_columns: Sequence[str]) -> str:
    return " AND ".join(f"{_validate_identifier(c, 'key column')} = :{c}" for c in key_columns)


def build_insert_sql(table: str, columns: Sequence[str]) -> str:
    table = _validate_identifier(table, "table")
    cols = [_validate_identifier(c, "column name") for c in columns]
    col_names = ", ".join(cols)
    placeholders = ", ".join(f":{c}" for c in cols)
    return f"INSERT INTO {table} ({col_names}) VALUES ({placeholders})"


def build_update_sql(table: str, columns: Sequence[str], key_columns: Sequence[str]) -> str | None:
    table = _validate_identifier(table, "table")
    set_cols = [_validate_identifier(c, "column name") for c in columns if c not in key_columns]
    if not set_cols:
        return None
    set_clause = ", ".join(f"{c} = :{c}" for c in set_cols)
    return f"UPDATE {table} SET {set_clause} WHERE {_where_clause(key_columns)}"


def build_delete_sql(table: str, key_columns: Sequence[str]) -> str:
    table = _validate_identifier(table, "table")
    return f"DELETE FROM {table} WHERE {_where_clause(key_columns)}"


def build_exists_sql(table: str, key_columns: Sequence[str]) -> str:
    table = _validate_identifier(table, "table")
    return f"SELECT 1 FROM {table} WHERE {_where_clause(key_columns)}"


def _typed(sql: str, rows: Sequence[Mapping[str, Any]]):
    """Attach bind types inferred from the first non-null value of each column."""
    sample: dict[str, Any] = {}
    for row in rows:
        for name, value in row.items():
            if value is not None and name not in sample:
                sample[name] = value
    clause = text(sql)
    binds = bind_params_for(sample)
    if binds:
        clause = clause.bindparams(*binds)
    return clause


def _require_key(m: Mutation) -> None:
    if not m.key_columns:
        raise ValueError(f"{m.op.value} mutation on {m.table} requires key columns")


def _apply_insert_or_update(conn: Connection, m: Mutation) -> None:
    _require_key(m)
    update_sql = build_update_sql(m.table, list(m.columns), m.key_columns)
    if update_sql is not None:
        result = conn.execute(_typed(update_sql, [m.columns]), dict(m.columns))
        if result.rowcount:
            return
    else:
        key = {c: m.columns[c] for c in m.key_columns}
        if conn.execute(_typed(build_exists_sql(m.table, m.key_columns), [key]), key).first():
            return
    conn.execute(_typed(build_insert_sql(m.table, list(m.columns)), [m.columns]), dict(m.columns))


def _apply_update(conn: Connection, m: Mutation) -> None:
    _require_key(m)
    update_sql = build_update_sql(m.table, list(m.columns), m.key_columns)
    key = {c: m.columns[c] for c in m.key_columns}
    if update_sql is None:
        found = conn.execute(_typed(build_exists_sql(m.table, m.key_columns), [key]), key).first()
        matched = 1 if found else 0
    else:
        matched = conn.execute(_typed(update_sql, [m.columns]), dict(m.columns)).rowcount
    if not matched:
        raise InternalQueryFailureError(f"update on {m.table} matched no row for key {key!r}")


def _group_key(m: Mutation) -> tuple:
    return (m.table, m.op, tuple(m.columns), tuple(m.key_columns))


def apply_mutations(conn: Connection, mutations: Iterable[Mutation]) -> Counter:
    """
    Apply mutations in order on an open connection.

    Consecutive inserts and deletes with the same shape are sent as a single
    executemany. Returns the number of applied mutations per (table, op).
    """
    applied: Counter = Counter()
    for (table, op, columns, key_columns), group in groupby(mutations, key=_group_key):
        batch = list(group)
        if op == MutationOp.INSERT:
            rows = [dict(m.columns) for m in batch]
            conn.execute(_typed(build_insert_sql(table, columns), rows), rows)
        elif op == MutationOp.DELETE:
            rows = [dict(m.columns) for m in batch]
            conn.execute(_typed(build_delete_sql(table, key_columns), rows), rows)
        elif op == MutationOp.INSERT_OR_UPDATE:
            for m in batch:
                _apply_insert_or_update(conn, m)
        elif op == MutationOp.UPDATE:
            for m in batch:
                _apply_update(conn, m)
        else:
            raise ValueError(f"Unsupported mutation type: {op}")
        applied[(table, op.value)] += len(batch)
    return applied


@contextmanager
def wrap_db_errors(action: str) -> Iterator[None]:
    """Re-raise SQLAlchemy failures as InternalQueryFailureError, keeping the cause."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise InternalQueryFailureError(f"{action} failed: {exc}") from exc
