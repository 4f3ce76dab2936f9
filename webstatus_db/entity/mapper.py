"""
Mapper contracts.

A mapper is a small per-entity strategy object. Each generic component only
relies on the capabilities it needs, so a mapper implements just the
methods of the components it is used with.

Vocabulary:
    external: what callers pass in (a request or a public dataclass)
    stored:   the column-shaped value persisted in the table
    key:      hashable business key identifying at most one stored row
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any, Generic, Hashable, Mapping, Protocol, Sequence, TypeVar

from ..db import models
from ..db.models import ExtraMutationsGroup, Mutation
from ..db.statement import Statement

if TYPE_CHECKING:
    from ..client import Client
    from ..db.session import DbSession

ExternalT = TypeVar("ExternalT")
StoredT = TypeVar("StoredT")
KeyT = TypeVar("KeyT", bound=Hashable)
RequestT = TypeVar("RequestT")


class TableMapper(Protocol):
    def table(self) -> str: ...


class RowMapper(Protocol[StoredT]):
    primary_key: Sequence[str]

    def to_row(self, stored: StoredT) -> dict[str, Any]: ...

    def from_row(self, row: Mapping[str, Any]) -> StoredT: ...


class SelectOneMapper(Protocol[KeyT]):
    def select_one(self, key: KeyT) -> Statement: ...


class SelectAllMapper(Protocol):
    def select_all(self) -> Statement: ...


class ExternalKeyMapper(Protocol[ExternalT, KeyT]):
    def get_key_from_external(self, external: ExternalT) -> KeyT: ...


class InternalKeyMapper(Protocol[StoredT, KeyT]):
    def get_key_from_internal(self, stored: StoredT) -> KeyT: ...


class MergeMapper(Protocol[ExternalT, StoredT]):
    def merge(self, external: ExternalT, existing: StoredT) -> StoredT: ...


class MergeAndCheckChangedMapper(Protocol[ExternalT, StoredT]):
    def merge_and_check_changed(self, external: ExternalT, existing: StoredT) -> tuple[StoredT, bool]: ...


class DeleteKeyMapper(Protocol[KeyT]):
    def delete_key(self, key: KeyT) -> dict[str, Any]: ...


class GetIDMapper(Protocol[KeyT, StoredT]):
    def get_id(self, key: KeyT) -> Statement: ...

    def get_id_from_internal(self, stored: StoredT) -> str: ...


class NewEntityMapper(Protocol[RequestT, StoredT]):
    def new_entity(self, id: str, request: RequestT) -> StoredT: ...


class ListMapper(Protocol[RequestT, StoredT]):
    def select_list(self, request: RequestT) -> Statement: ...

    def encode_page_token(self, item: StoredT) -> str: ...


class PostWriteHookMapper(Protocol[ExternalT]):
    def post_write_hook(self, txn: "DbSession", client: "Client", id: str, external: ExternalT) -> list[Mutation]: ...


class SyncableMapper(Protocol[ExternalT, StoredT, KeyT]):
    def delete_mutation(self, stored: StoredT) -> Mutation: ...

    def get_child_delete_key_mutations(
        self, client: "Client", parents: Sequence[StoredT]
    ) -> list[ExtraMutationsGroup]: ...

    def pre_delete_hook(self, client: "Client", to_delete: Sequence[StoredT]) -> list[ExtraMutationsGroup]: ...


class BaseMapper(Generic[ExternalT, StoredT, KeyT]):
    """
    Default plumbing shared by the concrete mappers.

    Subclasses set ``table_name``, ``stored_type`` and ``primary_key`` and
    override the capability methods they need. ``stored_type`` is a
    dataclass whose field names match the table's columns.
    """

    table_name: str = ""
    stored_type: type = dict
    primary_key: Sequence[str] = ()

    def table(self) -> str:
        return self.table_name

    def to_row(self, stored: StoredT) -> dict[str, Any]:
        return dataclasses.asdict(stored)

    def from_row(self, row: Mapping[str, Any]) -> StoredT:
        names = {f.name for f in dataclasses.fields(self.stored_type)}
        return self.stored_type(**{k: v for k, v in row.items() if k in names})

    def from_external(self, external: ExternalT) -> StoredT:
        """Stored value for a first insert. Identity unless overridden."""
        return external  # type: ignore[return-value]

    def insert_mutations(self, stored: StoredT) -> list[Mutation]:
        """Mutations written with a first insert: the row itself plus any companions."""
        return [models.insert(self.table(), self.to_row(stored), self.primary_key)]

    def delete_mutation(self, stored: StoredT) -> Mutation:
        row = self.to_row(stored)
        return models.delete(self.table(), {c: row[c] for c in self.primary_key})

    def get_child_delete_key_mutations(self, client: "Client", parents: Sequence[StoredT]) -> list[ExtraMutationsGroup]:
        return []

    def pre_delete_hook(self, client: "Client", to_delete: Sequence[StoredT]) -> list[ExtraMutationsGroup]:
        return []
