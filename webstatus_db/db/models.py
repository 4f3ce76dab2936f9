from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence


class MutationOp(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    INSERT_OR_UPDATE = "insert_or_update"
    DELETE = "delete"


@dataclass(frozen=True)
class Mutation:
    """
    A single buffered change to one row.

    For DELETE, ``columns`` holds only the primary key columns.
    """
    table: str
    op: MutationOp
    columns: Mapping[str, Any]
    # primary key columns; UPDATE and INSERT_OR_UPDATE match rows on these
    key_columns: Sequence[str] = field(default_factory=tuple)

    def key(self) -> tuple:
        return tuple(self.columns[c] for c in self.key_columns)


def insert(table: str, row: Mapping[str, Any], key_columns: Sequence[str] = ()) -> Mutation:
    return Mutation(table, MutationOp.INSERT, dict(row), tuple(key_columns))


def update(table: str, row: Mapping[str, Any], key_columns: Sequence[str]) -> Mutation:
    return Mutation(table, MutationOp.UPDATE, dict(row), tuple(key_columns))


def insert_or_update(table: str, row: Mapping[str, Any], key_columns: Sequence[str]) -> Mutation:
    return Mutation(table, MutationOp.INSERT_OR_UPDATE, dict(row), tuple(key_columns))


def delete(table: str, key: Mapping[str, Any]) -> Mutation:
    return Mutation(table, MutationOp.DELETE, dict(key), tuple(key))


@dataclass
class ExtraMutationsGroup:
    """Mutations for one table that must be flushed as a unit of work."""
    table: str
    mutations: list[Mutation] = field(default_factory=list)
