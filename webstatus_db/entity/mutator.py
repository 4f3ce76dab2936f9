from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar

from ..db.helpers import wrap_db_errors
from ..db.models import Mutation
from ..db.session import DbSession
from .reader import EntityReader

if TYPE_CHECKING:
    from ..client import Client

StoredT = TypeVar("StoredT")
KeyT = TypeVar("KeyT")

Inspector = Callable[[Optional[StoredT]], Optional[Mutation]]


class EntityMutator(Generic[StoredT, KeyT]):
    """
    Read a row (or None), let a callback decide the mutation, buffer it.

    The callback may return None to write nothing, or raise to abort and
    roll back the transaction.
    """

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper
        self._reader: EntityReader = EntityReader(client, mapper)

    def read_inspect_mutate(self, key: KeyT, fn: Inspector) -> None:
        with wrap_db_errors(f"mutating {self.mapper.table()}"):
            with self.client.read_write_transaction() as txn:
                self.read_inspect_mutate_with_transaction(key, fn, txn)

    def read_inspect_mutate_with_transaction(self, key: KeyT, fn: Inspector, txn: DbSession) -> None:
        existing = self._reader.find_row_by_key_with_transaction(key, txn)
        mutation = fn(existing)
        if mutation is not None:
            txn.buffer_write([mutation])
