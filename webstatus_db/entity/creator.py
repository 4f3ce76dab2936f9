from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from ..db import models
from ..db.helpers import wrap_db_errors
from ..db.session import DbSession

if TYPE_CHECKING:
    from ..client import Client

RequestT = TypeVar("RequestT")


class EntityCreator(Generic[RequestT]):
    """Inserts a new row under a freshly generated (or caller supplied) id."""

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper

    def create(self, request: RequestT, id: Optional[str] = None) -> str:
        with wrap_db_errors(f"creating {self.mapper.table()} row"):
            with self.client.read_write_transaction() as txn:
                return self.create_with_transaction(request, txn, id=id)

    def create_with_transaction(self, request: RequestT, txn: DbSession, id: Optional[str] = None) -> str:
        new_id = id or str(uuid.uuid4())
        stored = self.mapper.new_entity(new_id, request)
        txn.buffer_write([models.insert(self.mapper.table(), self.mapper.to_row(stored), self.mapper.primary_key)])
        return new_id
