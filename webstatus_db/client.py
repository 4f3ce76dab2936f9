from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import ClientConfig
from .db.helpers import apply_mutations, wrap_db_errors
from .db.metrics import count_mutations, observe_write
from .db.models import Mutation
from .db.session import DbSession
from .errors import InternalQueryFailureError

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Client:
    """
    Entry point for every query and mutation.

    The client is thread-safe as long as the engine is; it holds no state
    besides the engine, the configuration and the clock.
    """

    def __init__(
        self,
        engine: Engine,
        config: ClientConfig | None = None,
        time_now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.engine = engine
        self.config = config or ClientConfig()
        self.time_now = time_now

    def read_write_transaction(self) -> DbSession:
        return DbSession(self.engine, max_mutations=self.config.max_mutations_per_transaction)

    def read_only_transaction(self) -> DbSession:
        return DbSession(self.engine, read_only=True)

    def apply(self, mutations: Iterable[Mutation]) -> None:
        """Apply mutations atomically in a single transaction."""
        pending = list(mutations)
        with wrap_db_errors(f"applying {len(pending)} mutations"):
            with self.read_write_transaction() as txn:
                txn.buffer_write(pending)

    def batch_write(self, mutations: Iterable[Mutation], table: str | None = None) -> None:
        """
        Commit one batch in its own transaction.

        Each call is independent of every other call; there is no ordering
        or atomicity across batches. SQLAlchemy failures are wrapped in
        InternalQueryFailureError.
        """
        pending = list(mutations)
        if not pending:
            return
        limit = self.config.max_mutations_per_transaction
        if limit is not None and len(pending) > limit:
            raise InternalQueryFailureError(
                f"batch of {len(pending)} mutations exceeds the per-transaction limit of {limit}"
            )
        counts = count_mutations(pending)
        start = time.monotonic()
        try:
            with self.engine.begin() as conn:
                apply_mutations(conn, pending)
        except SQLAlchemyError as exc:
            observe_write(counts, "error", time.monotonic() - start, table=table)
            raise InternalQueryFailureError(f"batch write failed: {exc}") from exc
        observe_write(counts, "success", time.monotonic() - start, table=table)
        logger.debug("committed batch of %d mutations for %s", len(pending), table or "<mixed>")
