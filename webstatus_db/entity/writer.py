from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ..db import models
from ..db.helpers import wrap_db_errors
from ..db.session import DbSession
from ..errors import QueryReturnedNoResultsError
from .reader import EntityReader

if TYPE_CHECKING:
    from ..client import Client

logger = logging.getLogger(__name__)

ExternalT = TypeVar("ExternalT")
StoredT = TypeVar("StoredT")


class EntityWriter(Generic[ExternalT, StoredT]):
    """
    Read-then-write upsert and update.

    The read and the write run in the same read-write transaction, so two
    concurrent upserts on one key are serialized by the database.
    """

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper
        self._reader: EntityReader = EntityReader(client, mapper)

    def upsert(self, external: ExternalT) -> StoredT:
        with wrap_db_errors(f"upserting into {self.mapper.table()}"):
            with self.client.read_write_transaction() as txn:
                stored, _ = self.upsert_with_transaction(external, txn)
        return stored

    def upsert_with_transaction(self, external: ExternalT, txn: DbSession) -> tuple[StoredT, bool]:
        """
        Buffer an insert (row absent) or a merged insert-or-update (row present).

        Returns the stored value that will be written and whether it is new.
        """
        key = self.mapper.get_key_from_external(external)
        existing = self._reader.find_row_by_key_with_transaction(key, txn)
        if existing is None:
            stored = self.mapper.from_external(external)
            txn.buffer_write(self.mapper.insert_mutations(stored))
            return stored, True

        merged = self.mapper.merge(external, existing)
        txn.buffer_write(
            [models.insert_or_update(self.mapper.table(), self.mapper.to_row(merged), self.mapper.primary_key)]
        )
        return merged, False

    def update(self, external: ExternalT) -> StoredT:
        with wrap_db_errors(f"updating {self.mapper.table()}"):
            with self.client.read_write_transaction() as txn:
                return self.update_with_transaction(external, txn)

    def update_with_transaction(self, external: ExternalT, txn: DbSession) -> StoredT:
        """
        Raises:
            QueryReturnedNoResultsError: If the row does not exist; nothing is inserted
        """
        key = self.mapper.get_key_from_external(external)
        existing = self._reader.find_row_by_key_with_transaction(key, txn)
        if existing is None:
            raise QueryReturnedNoResultsError(f"no {self.mapper.table()} row for key {key!r}")
        merged = self.mapper.merge(external, existing)
        txn.buffer_write([models.update(self.mapper.table(), self.mapper.to_row(merged), self.mapper.primary_key)])
        return merged


class EntityWriterWithIDRetrieval(EntityWriter[ExternalT, StoredT]):
    """Upsert that reports the generated id of the row and runs the mapper's post write hook."""

    def upsert_and_get_id(self, external: ExternalT) -> str:
        with wrap_db_errors(f"upserting into {self.mapper.table()}"):
            with self.client.read_write_transaction() as txn:
                return self.upsert_and_get_id_with_transaction(external, txn)

    def upsert_and_get_id_with_transaction(self, external: ExternalT, txn: DbSession) -> str:
        stored, _ = self.upsert_with_transaction(external, txn)
        id_ = self.mapper.get_id_from_internal(stored)
        hook = getattr(self.mapper, "post_write_hook", None)
        if hook is not None:
            extra = hook(txn, self.client, id_, external)
            if extra:
                txn.buffer_write(extra)
        return id_

    def get_id_by_key(self, key: Any) -> str:
        """
        Raises:
            QueryReturnedNoResultsError: If no row matches ``key``
        """
        with wrap_db_errors(f"reading id from {self.mapper.table()}"):
            with self.client.read_only_transaction() as txn:
                return self.get_id_by_key_with_transaction(key, txn)

    def get_id_by_key_with_transaction(self, key: Any, txn: DbSession) -> str:
        with wrap_db_errors(f"reading id from {self.mapper.table()}"):
            value = txn.execute_scalar(self.mapper.get_id(key))
        if value is None:
            raise QueryReturnedNoResultsError(f"no {self.mapper.table()} id for key {key!r}")
        return str(value)


class EntityUniqueWriter(Generic[ExternalT, StoredT]):
    """
    Upsert for rows whose key is their whole identity.

    An existing row is replaced with a delete of its primary key followed by
    an insert of the new row, both in the same transaction.
    """

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper
        self._reader: EntityReader = EntityReader(client, mapper)

    def upsert(self, external: ExternalT) -> StoredT:
        with wrap_db_errors(f"upserting into {self.mapper.table()}"):
            with self.client.read_write_transaction() as txn:
                return self.upsert_with_transaction(external, txn)

    def upsert_with_transaction(self, external: ExternalT, txn: DbSession) -> StoredT:
        key = self.mapper.get_key_from_external(external)
        existing = self._reader.find_row_by_key_with_transaction(key, txn)
        stored = self.mapper.from_external(external)
        mutations = []
        if existing is not None:
            mutations.append(self.mapper.delete_mutation(existing))
        mutations.append(models.insert(self.mapper.table(), self.mapper.to_row(stored), self.mapper.primary_key))
        txn.buffer_write(mutations)
        return stored
