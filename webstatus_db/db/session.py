from __future__ import annotations

import time
from typing import Any, Iterable

from sqlalchemy.engine import Connection, Engine

from ..errors import MutationLimitExceededError
from .helpers import apply_mutations
from .metrics import count_mutations, observe_write
from .models import Mutation
from .statement import Statement


class DbSession:
    """
    Transactional wrapper around a SQLAlchemy Engine connection.

    Writes are buffered with ``buffer_write`` and applied, in order, right
    before the commit. Reads inside the session never observe buffered
    mutations. A read-only session is a snapshot: it refuses writes and is
    always rolled back.

    Use as:
        with DbSession(engine) as session:
            row = session.query_one(stmt)
            session.buffer_write([mutation])
    """

    def __init__(
        self,
        engine: Engine,
        *,
        read_only: bool = False,
        max_mutations: int | None = None,
    ) -> None:
        self.engine = engine
        self.read_only = read_only
        self.max_mutations = max_mutations
        self._conn: Connection | None = None
        self._tx = None
        self._buffer: list[Mutation] = []

    def __enter__(self) -> "DbSession":
        if self._conn is not None:
            raise RuntimeError("DbSession is already active; nested sessions are not allowed")
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        self._buffer = []
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._tx is not None:
                if exc_type or self.read_only:
                    self._tx.rollback()
                else:
                    self._flush_and_commit()
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None
            self._buffer = []

        # propagate exceptions (if any)
        return False

    def _flush_and_commit(self) -> None:
        start = time.monotonic()
        counts = count_mutations(self._buffer)
        try:
            apply_mutations(self._connection(), self._buffer)
            self._tx.commit()
        except Exception:
            self._tx.rollback()
            if counts:
                observe_write(counts, "error", time.monotonic() - start)
            raise
        if counts:
            observe_write(counts, "success", time.monotonic() - start)

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbSession is not active; use within a context manager")
        return self._conn

    @property
    def buffered(self) -> list[Mutation]:
        return list(self._buffer)

    def buffer_write(self, mutations: Iterable[Mutation]) -> None:
        """
        Buffer mutations to be applied when the session commits.

        Raises:
            RuntimeError: If the session is read-only or not active
            MutationLimitExceededError: If the buffer would exceed max_mutations
        """
        self._connection()
        if self.read_only:
            raise RuntimeError("cannot buffer writes in a read-only session")
        pending = list(mutations)
        if self.max_mutations is not None and len(self._buffer) + len(pending) > self.max_mutations:
            raise MutationLimitExceededError(
                f"transaction would contain {len(self._buffer) + len(pending)} mutations; "
                f"the limit is {self.max_mutations}"
            )
        self._buffer.extend(pending)

    def execute_scalar(self, stmt: Statement) -> Any:
        """Run a typed statement expected to return a single scalar value, or None."""
        result = self._connection().execute(stmt.to_clause(), stmt.execution_params())
        return result.scalar_one_or_none()

    def query(self, stmt: Statement) -> list[dict[str, Any]]:
        """Run a typed statement and return every row."""
        result = self._connection().execute(stmt.to_clause(), stmt.execution_params())
        return [dict(row) for row in result.mappings()]

    def query_one(self, stmt: Statement) -> dict[str, Any] | None:
        """Run a typed statement and return its first row, or None."""
        result = self._connection().execute(stmt.to_clause(), stmt.execution_params())
        row = result.mappings().first()
        if row is None:
            return None
        return dict(row)
