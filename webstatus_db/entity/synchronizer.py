from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Hashable, Iterable, Optional, TypeVar

from ..db import models
from ..db.metrics import observe_sync
from ..db.models import ExtraMutationsGroup, Mutation
from ..errors import (
    BatchWriteError,
    DeadlineExceededError,
    OperationCancelledError,
    SyncAtomicWriteFailedError,
    SyncBatchWriteFailedError,
    SyncError,
    SyncFailedToGetChildMutationsError,
    SyncMutationCreationFailedError,
    SyncReadFailedError,
)
from .batch import run_concurrent_batch
from .reader import AllEntityReader

if TYPE_CHECKING:
    from ..client import Client

logger = logging.getLogger(__name__)

ExternalT = TypeVar("ExternalT")
StoredT = TypeVar("StoredT")


@dataclass(frozen=True)
class SyncResult:
    inserts: int = 0
    updates: int = 0
    unchanged: int = 0
    deletes: int = 0


def _identity(m: Mutation) -> Mutation:
    return m


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


def _check_cancelled(
    table: str, phase: str, cancel_event: Optional[threading.Event], deadline: Optional[float]
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(f"sync of {table} was cancelled before the {phase} phase")
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceededError(f"sync of {table} exceeded its deadline before the {phase} phase")


class EntitySynchronizer(Generic[ExternalT, StoredT]):
    """
    Reconcile a whole table with a desired-state list.

    Phases run in order and a failing phase stops the run:

    1. read every stored row from a read-only snapshot
    2. diff the desired list against it (insert, update or leave alone)
    3. delete stored rows missing from the desired list, after the
       mapper's pre-delete hook groups and child delete groups
    4. write the upserts, in one transaction below the batch write
       threshold and through the concurrent batch writer otherwise

    Deletes and batched upserts commit independently. A run that fails or
    is cancelled after the delete phase started leaves what it committed
    in place; running the sync again converges.

    ``cancel_event`` and ``timeout`` cover the whole run: both are checked
    before every phase and each batch run gets the time left, not a fresh
    ``timeout``.
    """

    def __init__(self, client: "Client", mapper: Any) -> None:
        self.client = client
        self.mapper = mapper
        self._reader: AllEntityReader = AllEntityReader(client, mapper)

    def sync(
        self,
        desired: Iterable[ExternalT],
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        table = self.mapper.table()
        deadline = time.monotonic() + timeout if timeout is not None else None
        try:
            result = self._sync(table, desired, cancel_event, deadline)
        except (OperationCancelledError, DeadlineExceededError):
            observe_sync(table, "cancelled")
            raise
        except SyncError:
            observe_sync(table, "error")
            raise
        observe_sync(table, "success")
        logger.info(
            "synced %s: %d inserts, %d updates, %d unchanged, %d deletes",
            table,
            result.inserts,
            result.updates,
            result.unchanged,
            result.deletes,
        )
        return result

    def _sync(
        self,
        table: str,
        desired: Iterable[ExternalT],
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> SyncResult:
        # Read phase
        _check_cancelled(table, "read", cancel_event, deadline)
        try:
            stored_rows = self._reader.read_all()
        except Exception as exc:
            raise SyncReadFailedError(f"failed to read existing rows of {table}: {exc}") from exc
        existing: dict[Hashable, StoredT] = {}
        for row in stored_rows:
            existing[self.mapper.get_key_from_internal(row)] = row

        # Diff phase. Duplicate keys in the desired list: the last one wins.
        wanted: dict[Hashable, ExternalT] = {}
        try:
            for entity in desired:
                wanted[self.mapper.get_key_from_external(entity)] = entity
        except Exception as exc:
            raise SyncMutationCreationFailedError(f"failed to compute keys for {table}: {exc}") from exc

        upserts: list[Mutation] = []
        inserts = updates = unchanged = 0
        try:
            for key, entity in wanted.items():
                current = existing.get(key)
                if current is None:
                    upserts.extend(self.mapper.insert_mutations(self.mapper.from_external(entity)))
                    inserts += 1
                    continue
                merged, changed = self.mapper.merge_and_check_changed(entity, current)
                if not changed:
                    unchanged += 1
                    continue
                upserts.append(
                    models.insert_or_update(table, self.mapper.to_row(merged), self.mapper.primary_key)
                )
                updates += 1
        except Exception as exc:
            raise SyncMutationCreationFailedError(f"failed to create mutations for {table}: {exc}") from exc

        to_delete = [row for key, row in existing.items() if key not in wanted]
        logger.debug(
            "sync plan for %s: %d inserts, %d updates, %d unchanged, %d deletes",
            table,
            inserts,
            updates,
            unchanged,
            len(to_delete),
        )

        # Delete phase
        if to_delete:
            _check_cancelled(table, "delete", cancel_event, deadline)
            self._delete(table, to_delete, cancel_event, deadline)

        # Upsert phase
        if upserts:
            _check_cancelled(table, "upsert", cancel_event, deadline)
            self._upsert(table, upserts, cancel_event, deadline)

        return SyncResult(inserts=inserts, updates=updates, unchanged=unchanged, deletes=len(to_delete))

    def _delete(
        self,
        table: str,
        to_delete: list[StoredT],
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        # Hook groups are committed before the child deletes are computed, so
        # children moved by the hook are no longer found under the deleted rows.
        try:
            hook_groups = self.mapper.pre_delete_hook(self.client, to_delete)
        except Exception as exc:
            raise SyncFailedToGetChildMutationsError(f"pre-delete hook for {table} failed: {exc}") from exc
        self._flush_groups(table, hook_groups, cancel_event, deadline)

        try:
            child_groups = self.mapper.get_child_delete_key_mutations(self.client, to_delete)
        except Exception as exc:
            raise SyncFailedToGetChildMutationsError(
                f"failed to get child delete mutations for {table}: {exc}"
            ) from exc
        self._flush_groups(table, child_groups, cancel_event, deadline)

        try:
            deletes = [self.mapper.delete_mutation(row) for row in to_delete]
        except Exception as exc:
            raise SyncMutationCreationFailedError(f"failed to create delete mutations for {table}: {exc}") from exc
        self._flush_batched(table, deletes, cancel_event, deadline)

    def _flush_groups(
        self,
        table: str,
        groups: list[ExtraMutationsGroup],
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        for group in groups or []:
            if not group.mutations:
                continue
            logger.debug("flushing %d mutations for %s ahead of %s deletes", len(group.mutations), group.table, table)
            self._flush_batched(group.table, group.mutations, cancel_event, deadline)

    def _upsert(
        self,
        table: str,
        upserts: list[Mutation],
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        threshold = self.client.config.batch.batch_write_threshold
        if len(upserts) < threshold:
            try:
                self.client.apply(upserts)
            except Exception as exc:
                raise SyncAtomicWriteFailedError(f"atomic write of {len(upserts)} mutations to {table} failed: {exc}") from exc
            return
        logger.info("writing %d mutations to %s through the batch writer", len(upserts), table)
        # one table at a time, in first-seen order, so companion rows never land before their parents
        by_table: dict[str, list[Mutation]] = {}
        for m in upserts:
            by_table.setdefault(m.table, []).append(m)
        for group_table, group in by_table.items():
            self._flush_batched(group_table, group, cancel_event, deadline)

    def _flush_batched(
        self,
        table: str,
        mutations: list[Mutation],
        cancel_event: Optional[threading.Event],
        deadline: Optional[float],
    ) -> None:
        try:
            run_concurrent_batch(
                self.client,
                mutations,
                table,
                _identity,
                cancel_event=cancel_event,
                timeout=_remaining(deadline),
            )
        except BatchWriteError as exc:
            raise SyncBatchWriteFailedError(f"batch write to {table} failed: {exc}") from exc
