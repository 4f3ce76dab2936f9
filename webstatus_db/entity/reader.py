from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from ..db.helpers import wrap_db_errors
from ..db.session import DbSession
from ..errors import QueryReturnedNoResultsError

if TYPE_CHECKING:
    from ..client import Client

StoredT = TypeVar("StoredT")
KeyT = TypeVar("KeyT")


class EntityReader(Generic[StoredT, KeyT]):
    """Reads one row by key using the mapper's ``select_one`` statement."""

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper

    def read_row_by_key(self, key: KeyT) -> StoredT:
        with self.client.read_only_transaction() as txn:
            return self.read_row_by_key_with_transaction(key, txn)

    def read_row_by_key_with_transaction(self, key: KeyT, txn: DbSession) -> StoredT:
        """
        Raises:
            QueryReturnedNoResultsError: If no row matches ``key``
            InternalQueryFailureError: On any database failure
        """
        row = self.find_row_by_key_with_transaction(key, txn)
        if row is None:
            raise QueryReturnedNoResultsError(f"no {self.mapper.table()} row for key {key!r}")
        return row

    def find_row_by_key_with_transaction(self, key: KeyT, txn: DbSession) -> Optional[StoredT]:
        """Like read_row_by_key_with_transaction but returns None when absent."""
        with wrap_db_errors(f"reading {self.mapper.table()}"):
            row = txn.query_one(self.mapper.select_one(key))
        if row is None:
            return None
        return self.mapper.from_row(row)


class AllEntityReader(Generic[StoredT]):
    """Materializes every row returned by the mapper's ``select_all`` statement."""

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper

    def read_all(self) -> list[StoredT]:
        with self.client.read_only_transaction() as txn:
            return self.read_all_with_transaction(txn)

    def read_all_with_transaction(self, txn: DbSession) -> list[StoredT]:
        with wrap_db_errors("reading all rows"):
            rows = txn.query(self.mapper.select_all())
        return [self.mapper.from_row(row) for row in rows]
