"""
System-managed saved searches.

Every web feature owns one saved search with scope SYSTEM_MANAGED. The link
lives in system_managed_saved_searches, keyed by the feature id.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Sequence

from .db import models
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import AllEntityReader, BaseMapper, EntityReader
from .saved_searches import (
    SAVED_SEARCHES_TABLE,
    SYSTEM_AUTHOR_ID,
    SavedSearch,
    SavedSearchMapper,
    SavedSearchScope,
    saved_search_delete_mutations,
)

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

SYSTEM_MANAGED_SAVED_SEARCHES_TABLE = "system_managed_saved_searches"

# keeps IN lists well below dialect parameter limits
_FEATURE_ID_CHUNK_SIZE = 1000


@dataclass
class SystemManagedSavedSearch:
    feature_id: str
    saved_search_id: str
    created_at: datetime
    updated_at: datetime


def system_saved_search_name(feature_key: str) -> str:
    return f"Feature {feature_key}"


def system_saved_search_query(feature_key: str) -> str:
    return f'id:"{feature_key}"'


_RESULT_TYPES = {"created_at": UTCDateTime(), "updated_at": UTCDateTime()}
_SELECT = "SELECT feature_id, saved_search_id, created_at, updated_at FROM system_managed_saved_searches"


class SystemManagedSavedSearchMapper(BaseMapper[SystemManagedSavedSearch, SystemManagedSavedSearch, str]):
    table_name = SYSTEM_MANAGED_SAVED_SEARCHES_TABLE
    stored_type = SystemManagedSavedSearch
    primary_key = ("feature_id",)

    def select_all(self) -> Statement:
        return Statement(_SELECT, {}, _RESULT_TYPES)

    def select_one(self, key: str) -> Statement:
        return Statement(f"{_SELECT} WHERE feature_id = :feature_id LIMIT 1", {"feature_id": key}, _RESULT_TYPES)

    def select_all_by_keys(self, feature_ids: Sequence[str]) -> Statement:
        return Statement(
            f"{_SELECT} WHERE feature_id IN :feature_ids ORDER BY feature_id",
            {"feature_ids": list(feature_ids)},
            _RESULT_TYPES,
        )

    def get_key_from_external(self, external: SystemManagedSavedSearch) -> str:
        return external.feature_id

    def get_key_from_internal(self, stored: SystemManagedSavedSearch) -> str:
        return stored.feature_id

    def merge(self, external: SystemManagedSavedSearch, existing: SystemManagedSavedSearch) -> SystemManagedSavedSearch:
        return replace(existing, saved_search_id=external.saved_search_id, updated_at=external.updated_at)

    def delete_key(self, key: str) -> dict[str, str]:
        return {"feature_id": key}


def system_managed_saved_search_mutations(
    feature_id: str,
    feature_key: str,
    feature_name: str,
    now: datetime,
) -> list[models.Mutation]:
    """
    Mutations creating a feature's saved search and linking it to the feature.

    The link is written with insert-or-update so a link pointing at a
    missing search is repaired in place.
    """
    search = SavedSearch(
        id=str(uuid.uuid4()),
        name=system_saved_search_name(feature_key),
        query=system_saved_search_query(feature_key),
        scope=SavedSearchScope.SYSTEM_MANAGED.value,
        author_id=SYSTEM_AUTHOR_ID,
        created_at=now,
        updated_at=now,
        description=f"A system-managed saved search for the feature {feature_name}",
    )
    search_mapper = SavedSearchMapper()
    link_mapper = SystemManagedSavedSearchMapper()
    link = SystemManagedSavedSearch(feature_id=feature_id, saved_search_id=search.id, created_at=now, updated_at=now)
    return [
        models.insert(SAVED_SEARCHES_TABLE, search_mapper.to_row(search), search_mapper.primary_key),
        models.insert_or_update(link_mapper.table(), link_mapper.to_row(link), link_mapper.primary_key),
    ]


def list_all_system_managed_saved_searches(client: "Client") -> list[SystemManagedSavedSearch]:
    return AllEntityReader(client, SystemManagedSavedSearchMapper()).read_all()


def get_system_managed_saved_search_by_feature_id(client: "Client", feature_id: str) -> SystemManagedSavedSearch:
    return EntityReader(client, SystemManagedSavedSearchMapper()).read_row_by_key(feature_id)


def find_system_managed_saved_search_with_transaction(
    txn: DbSession, feature_id: str
) -> SystemManagedSavedSearch | None:
    mapper = SystemManagedSavedSearchMapper()
    with wrap_db_errors("reading system-managed saved search"):
        row = txn.query_one(mapper.select_one(feature_id))
    return mapper.from_row(row) if row is not None else None


def list_system_managed_saved_searches_by_feature_ids(
    client: "Client", feature_ids: Sequence[str]
) -> list[SystemManagedSavedSearch]:
    """Links for the given features; unknown ids are skipped."""
    mapper = SystemManagedSavedSearchMapper()
    ids = list(dict.fromkeys(feature_ids))
    results: list[SystemManagedSavedSearch] = []
    with wrap_db_errors("listing system-managed saved searches"):
        with client.read_only_transaction() as txn:
            for start in range(0, len(ids), _FEATURE_ID_CHUNK_SIZE):
                chunk = ids[start:start + _FEATURE_ID_CHUNK_SIZE]
                results.extend(mapper.from_row(row) for row in txn.query(mapper.select_all_by_keys(chunk)))
    return results


def upsert_system_managed_saved_search(client: "Client", link: SystemManagedSavedSearch) -> None:
    mapper = SystemManagedSavedSearchMapper()
    client.apply([models.insert_or_update(mapper.table(), mapper.to_row(link), mapper.primary_key)])


def delete_system_managed_saved_search(client: "Client", feature_id: str) -> None:
    """Remove the link only; the saved search itself is left for sync_system_managed_saved_queries."""
    client.apply([models.delete(SYSTEM_MANAGED_SAVED_SEARCHES_TABLE, {"feature_id": feature_id})])


def sync_system_managed_saved_queries(client: "Client") -> int:
    """
    Make every web feature own an up to date system-managed saved search.

    Features without a link, or whose link points at a missing search, get a
    new search. Searches whose name or query no longer match the feature key
    are rewritten. Links of deleted features and SYSTEM_MANAGED searches no
    feature links to are deleted with their dependent rows.
    Everything is applied in one transaction. Returns the mutation count.
    """
    now = client.time_now()
    link_mapper = SystemManagedSavedSearchMapper()
    search_mapper = SavedSearchMapper()
    mutations: list[models.Mutation] = []
    with wrap_db_errors("syncing system-managed saved searches"):
        with client.read_write_transaction() as txn:
            features = txn.query(Statement("SELECT id, feature_key, name FROM web_features ORDER BY feature_key"))
            links = {
                link.feature_id: link
                for link in (link_mapper.from_row(row) for row in txn.query(link_mapper.select_all()))
            }
            for feature in features:
                link = links.get(feature["id"])
                search = None
                if link is not None:
                    row = txn.query_one(search_mapper.select_one(link.saved_search_id))
                    search = search_mapper.from_row(row) if row is not None else None
                if search is None:
                    mutations.extend(
                        system_managed_saved_search_mutations(feature["id"], feature["feature_key"], feature["name"], now)
                    )
                    continue
                name = system_saved_search_name(feature["feature_key"])
                query = system_saved_search_query(feature["feature_key"])
                if search.name != name or search.query != query:
                    updated = replace(search, name=name, query=query, updated_at=now)
                    mutations.append(
                        models.update(SAVED_SEARCHES_TABLE, search_mapper.to_row(updated), search_mapper.primary_key)
                    )

            # links left behind by features deleted outside the synchronizer
            feature_ids = {feature["id"] for feature in features}
            for link in links.values():
                if link.feature_id not in feature_ids:
                    mutations.append(models.delete(link_mapper.table(), link_mapper.delete_key(link.feature_id)))
                    mutations.extend(saved_search_delete_mutations(txn, link.saved_search_id))

            orphans = txn.query(
                Statement(
                    """
                    SELECT s.id
                    FROM saved_searches s
                    LEFT JOIN system_managed_saved_searches m ON s.id = m.saved_search_id
                    WHERE s.scope = :scope AND m.saved_search_id IS NULL
                    """,
                    {"scope": SavedSearchScope.SYSTEM_MANAGED.value},
                )
            )
            for row in orphans:
                mutations.extend(saved_search_delete_mutations(txn, row["id"]))
            txn.buffer_write(mutations)
    logger.info(
        "synced system-managed saved searches: %d features, %d orphans, %d mutations",
        len(features),
        len(orphans),
        len(mutations),
    )
    return len(mutations)
