"""
Per saved search, per snapshot type worker state.

A row holds the blob path of the last known search result and an
expiring worker lock, so only one worker processes a given saved search
and snapshot type at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .db import models
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import BaseMapper, EntityMutator, EntityReader
from .errors import AlreadyLockedError, LockNotOwnedError, QueryReturnedNoResultsError

if TYPE_CHECKING:
    from .client import Client

SAVED_SEARCH_STATE_TABLE = "saved_search_state"


class SavedSearchSnapshotType(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    UNKNOWN = "UNKNOWN"


@dataclass
class SavedSearchState:
    saved_search_id: str
    snapshot_type: str
    last_known_state_blob_path: Optional[str] = None
    worker_lock_id: Optional[str] = None
    worker_lock_expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class SavedSearchStateKey:
    saved_search_id: str
    snapshot_type: str


class SavedSearchStateMapper(BaseMapper[SavedSearchState, SavedSearchState, SavedSearchStateKey]):
    table_name = SAVED_SEARCH_STATE_TABLE
    stored_type = SavedSearchState
    primary_key = ("saved_search_id", "snapshot_type")

    def select_one(self, key: SavedSearchStateKey) -> Statement:
        return Statement(
            """
            SELECT saved_search_id, snapshot_type, last_known_state_blob_path,
                worker_lock_id, worker_lock_expires_at
            FROM saved_search_state
            WHERE saved_search_id = :saved_search_id AND snapshot_type = :snapshot_type
            """,
            {"saved_search_id": key.saved_search_id, "snapshot_type": key.snapshot_type},
            {"worker_lock_expires_at": UTCDateTime()},
        )


def _key(saved_search_id: str, snapshot_type: str) -> SavedSearchStateKey:
    return SavedSearchStateKey(saved_search_id=saved_search_id, snapshot_type=snapshot_type)


def try_acquire_saved_search_state_worker_lock(
    client: "Client",
    saved_search_id: str,
    snapshot_type: str,
    worker_id: str,
    ttl: timedelta,
) -> bool:
    """
    Take (or extend) the worker lock for ``ttl``.

    A worker that already holds the lock may re-acquire it to push out the
    expiry. The stored blob path is kept.

    Raises:
        AlreadyLockedError: If another worker holds an unexpired lock
    """
    mapper = SavedSearchStateMapper()
    now = client.time_now()

    def inspect(existing: Optional[SavedSearchState]) -> models.Mutation:
        if existing is not None:
            held_by_other = existing.worker_lock_id is not None and existing.worker_lock_id != worker_id
            active = existing.worker_lock_expires_at is not None and existing.worker_lock_expires_at > now
            if held_by_other and active:
                raise AlreadyLockedError(
                    f"{saved_search_id}/{snapshot_type} is locked by {existing.worker_lock_id}"
                )
        state = SavedSearchState(
            saved_search_id=saved_search_id,
            snapshot_type=snapshot_type,
            last_known_state_blob_path=existing.last_known_state_blob_path if existing else None,
            worker_lock_id=worker_id,
            worker_lock_expires_at=now + ttl,
        )
        return models.insert_or_update(mapper.table(), mapper.to_row(state), mapper.primary_key)

    EntityMutator(client, mapper).read_inspect_mutate(_key(saved_search_id, snapshot_type), inspect)
    return True


def release_saved_search_state_worker_lock(
    client: "Client",
    saved_search_id: str,
    snapshot_type: str,
    worker_id: str,
) -> None:
    """
    Release a lock held by ``worker_id``. A missing row is a no-op.

    Raises:
        LockNotOwnedError: If the lock is free or held by another worker
    """
    mapper = SavedSearchStateMapper()

    def inspect(existing: Optional[SavedSearchState]) -> Optional[models.Mutation]:
        if existing is None:
            return None
        if existing.worker_lock_id is None or existing.worker_lock_id != worker_id:
            raise LockNotOwnedError(f"{worker_id} does not hold the lock on {saved_search_id}/{snapshot_type}")
        released = replace(existing, worker_lock_id=None, worker_lock_expires_at=None)
        return models.insert_or_update(mapper.table(), mapper.to_row(released), mapper.primary_key)

    EntityMutator(client, mapper).read_inspect_mutate(_key(saved_search_id, snapshot_type), inspect)


def get_saved_search_state(client: "Client", saved_search_id: str, snapshot_type: str) -> SavedSearchState:
    return EntityReader(client, SavedSearchStateMapper()).read_row_by_key(_key(saved_search_id, snapshot_type))


def update_saved_search_state_last_known_state_blob_path(
    client: "Client",
    saved_search_id: str,
    snapshot_type: str,
    blob_path: str,
) -> None:
    """The row must exist; otherwise QueryReturnedNoResultsError is raised."""
    mapper = SavedSearchStateMapper()

    def inspect(existing: Optional[SavedSearchState]) -> models.Mutation:
        if existing is None:
            raise QueryReturnedNoResultsError(f"no state for {saved_search_id}/{snapshot_type}")
        updated = replace(existing, last_known_state_blob_path=blob_path)
        return models.update(mapper.table(), mapper.to_row(updated), mapper.primary_key)

    EntityMutator(client, mapper).read_inspect_mutate(_key(saved_search_id, snapshot_type), inspect)
