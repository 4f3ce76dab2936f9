from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ..db import models
from ..db.helpers import wrap_db_errors
from ..db.session import DbSession
from .reader import EntityReader

if TYPE_CHECKING:
    from ..client import Client

ExternalT = TypeVar("ExternalT")


class EntityRemover(Generic[ExternalT]):
    """Deletes one existing row. A missing row is a QueryReturnedNoResultsError."""

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper
        self._reader: EntityReader = EntityReader(client, mapper)

    def remove(self, external: ExternalT) -> None:
        with wrap_db_errors(f"removing from {self.mapper.table()}"):
            with self.client.read_write_transaction() as txn:
                self.remove_with_transaction(external, txn)

    def remove_with_transaction(self, external: ExternalT, txn: DbSession) -> None:
        key = self.mapper.get_key_from_external(external)
        self._reader.read_row_by_key_with_transaction(key, txn)
        txn.buffer_write([models.delete(self.mapper.table(), self.mapper.delete_key(key))])
