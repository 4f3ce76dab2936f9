from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from ..db.helpers import wrap_db_errors

if TYPE_CHECKING:
    from ..client import Client

RequestT = TypeVar("RequestT")
StoredT = TypeVar("StoredT")


class EntityLister(Generic[RequestT, StoredT]):
    """
    Runs one page of the mapper's ``select_list`` statement.

    ``request`` must expose ``page_size``. A next page token is returned
    only when the page came back full.
    """

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper

    def list(self, request: RequestT) -> tuple[list[StoredT], Optional[str]]:
        stmt = self.mapper.select_list(request)
        with wrap_db_errors(f"listing {self.mapper.table()}"):
            with self.client.read_only_transaction() as txn:
                rows = txn.query(stmt)
        items = [self.mapper.from_row(row) for row in rows]
        next_token = None
        if items and len(items) == request.page_size:
            next_token = self.mapper.encode_page_token(items[-1])
        return items, next_token
