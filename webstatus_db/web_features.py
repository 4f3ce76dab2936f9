"""
Web features, the root entity most other tables hang off.

``sync_web_features`` reconciles the whole table with the upstream feature
list. Rows of removed features are deleted with everything that references
them; a removed feature may name a redirect target whose data (developer
signals, histogram links, latest metrics and its system-managed saved
search) is moved over before the delete.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence

from sqlalchemy.types import Date

from .db import models
from .db.helpers import wrap_db_errors
from .db.models import ExtraMutationsGroup, Mutation
from .db.session import DbSession
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import AllEntityReader, BaseMapper, EntitySynchronizer, EntityWriterWithIDRetrieval, SyncResult
from .errors import QueryReturnedNoResultsError
from .saved_searches import SAVED_SEARCHES_TABLE, SAVED_SEARCH_USER_ROLES_TABLE, USER_SAVED_SEARCH_BOOKMARKS_TABLE
from .system_managed_saved_searches import (
    SYSTEM_MANAGED_SAVED_SEARCHES_TABLE,
    find_system_managed_saved_search_with_transaction,
    system_managed_saved_search_mutations,
    system_saved_search_name,
    system_saved_search_query,
)

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

WEB_FEATURES_TABLE = "web_features"

_CHUNK_SIZE = 1000


@dataclass
class WebFeature:
    feature_key: str
    name: str
    description: str = ""
    description_html: str = ""


@dataclass
class StoredWebFeature:
    id: str
    feature: WebFeature

    @property
    def feature_key(self) -> str:
        return self.feature.feature_key


_SELECT = "SELECT id, feature_key, name, description, description_html FROM web_features"


class WebFeatureMapper(BaseMapper[WebFeature, StoredWebFeature, str]):
    """
    Mapper for single feature writes.

    A feature that has no system-managed saved search gets one from the post
    write hook, whether it was just inserted or already existed.
    """

    table_name = WEB_FEATURES_TABLE
    stored_type = StoredWebFeature
    primary_key = ("id",)

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now

    def to_row(self, stored: StoredWebFeature) -> dict[str, Any]:
        return {"id": stored.id, **asdict(stored.feature)}

    def from_row(self, row: Mapping[str, Any]) -> StoredWebFeature:
        return StoredWebFeature(
            id=row["id"],
            feature=WebFeature(
                feature_key=row["feature_key"],
                name=row["name"],
                description=row["description"] or "",
                description_html=row["description_html"] or "",
            ),
        )

    def from_external(self, external: WebFeature) -> StoredWebFeature:
        return StoredWebFeature(id=str(uuid.uuid4()), feature=replace(external))

    def select_all(self) -> Statement:
        return Statement(_SELECT)

    def select_one(self, key: str) -> Statement:
        return Statement(f"{_SELECT} WHERE feature_key = :feature_key LIMIT 1", {"feature_key": key})

    def get_key_from_external(self, external: WebFeature) -> str:
        return external.feature_key

    def get_key_from_internal(self, stored: StoredWebFeature) -> str:
        return stored.feature.feature_key

    def get_id(self, key: str) -> Statement:
        return Statement("SELECT id FROM web_features WHERE feature_key = :feature_key LIMIT 1", {"feature_key": key})

    def get_id_from_internal(self, stored: StoredWebFeature) -> str:
        return stored.id

    def merge_and_check_changed(self, external: WebFeature, existing: StoredWebFeature) -> tuple[StoredWebFeature, bool]:
        # empty input values keep the stored value
        current = existing.feature
        merged = WebFeature(
            feature_key=current.feature_key,
            name=external.name or current.name,
            description=external.description or current.description,
            description_html=external.description_html or current.description_html,
        )
        return StoredWebFeature(id=existing.id, feature=merged), merged != current

    def merge(self, external: WebFeature, existing: StoredWebFeature) -> StoredWebFeature:
        merged, _ = self.merge_and_check_changed(external, existing)
        return merged

    def delete_mutation(self, stored: StoredWebFeature) -> Mutation:
        return models.delete(self.table(), {"id": stored.id})

    def post_write_hook(self, txn: DbSession, client: "Client", id: str, external: WebFeature) -> list[Mutation]:
        if find_system_managed_saved_search_with_transaction(txn, id) is not None:
            return []
        return system_managed_saved_search_mutations(id, external.feature_key, external.name, self.now)


def _select_keys(
    txn: DbSession,
    table: str,
    key_columns: Sequence[str],
    where_column: str,
    values: Sequence[str],
    result_types: Optional[Mapping[str, Any]] = None,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for start in range(0, len(values), _CHUNK_SIZE):
        stmt = Statement(
            f"SELECT {', '.join(key_columns)} FROM {table} WHERE {where_column} IN :values",
            {"values": list(values[start:start + _CHUNK_SIZE])},
            result_types or {},
        )
        rows.extend(txn.query(stmt))
    return rows


def _delete_group(table: str, rows: Sequence[Mapping[str, Any]], key_columns: Sequence[str]) -> ExtraMutationsGroup:
    return ExtraMutationsGroup(table, [models.delete(table, {c: row[c] for c in key_columns}) for row in rows])


# (table, key columns, column holding the feature id, result types); children first
_FEATURE_CHILDREN: list[tuple[str, tuple[str, ...], str, Mapping[str, Any]]] = [
    ("browser_feature_availabilities", ("web_feature_id", "browser_name"), "web_feature_id", {}),
    (
        "browser_feature_support_events",
        ("target_browser_name", "event_browser_name", "event_release_date", "web_feature_id"),
        "web_feature_id",
        {"event_release_date": UTCDateTime()},
    ),
    ("latest_feature_developer_signals", ("web_feature_id",), "web_feature_id", {}),
    ("feature_discouraged_details", ("web_feature_id",), "web_feature_id", {}),
    ("web_feature_chromium_histogram_enum_values", ("web_feature_id",), "web_feature_id", {}),
    (
        "latest_daily_chromium_histogram_metrics",
        ("web_feature_id", "chromium_histogram_enum_value_id"),
        "web_feature_id",
        {},
    ),
]

# rows hanging off a saved search
_SAVED_SEARCH_CHILDREN: list[tuple[str, tuple[str, ...]]] = [
    ("saved_search_subscriptions", ("id",)),
    ("saved_search_state", ("saved_search_id", "snapshot_type")),
    (USER_SAVED_SEARCH_BOOKMARKS_TABLE, ("user_id", "saved_search_id")),
    (SAVED_SEARCH_USER_ROLES_TABLE, ("saved_search_id", "user_id")),
]


class WebFeatureSyncMapper(WebFeatureMapper):
    """
    Mapper for full table syncs.

    Inserts carry the new feature's system-managed saved search. Deletes
    remove every row referencing the feature first, since the database
    does not cascade them.
    """

    def __init__(self, now: datetime, redirect_targets: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(now)
        self.redirect_targets = dict(redirect_targets or {})

    def insert_mutations(self, stored: StoredWebFeature) -> list[Mutation]:
        mutations = super().insert_mutations(stored)
        mutations.extend(
            system_managed_saved_search_mutations(stored.id, stored.feature_key, stored.feature.name, self.now)
        )
        return mutations

    def get_child_delete_key_mutations(
        self, client: "Client", parents: Sequence[StoredWebFeature]
    ) -> list[ExtraMutationsGroup]:
        ids = [parent.id for parent in parents]
        groups: list[ExtraMutationsGroup] = []
        with wrap_db_errors("reading web feature children"):
            with client.read_only_transaction() as txn:
                for table, key_columns, where_column, result_types in _FEATURE_CHILDREN:
                    rows = _select_keys(txn, table, key_columns, where_column, ids, result_types)
                    groups.append(_delete_group(table, rows, key_columns))

                links = _select_keys(
                    txn, SYSTEM_MANAGED_SAVED_SEARCHES_TABLE, ("feature_id", "saved_search_id"), "feature_id", ids
                )
                search_ids = [link["saved_search_id"] for link in links]
                for table, key_columns in _SAVED_SEARCH_CHILDREN:
                    rows = _select_keys(txn, table, key_columns, "saved_search_id", search_ids)
                    groups.append(_delete_group(table, rows, key_columns))
        groups.append(_delete_group(SYSTEM_MANAGED_SAVED_SEARCHES_TABLE, links, ("feature_id",)))
        groups.append(
            ExtraMutationsGroup(SAVED_SEARCHES_TABLE, [models.delete(SAVED_SEARCHES_TABLE, {"id": i}) for i in search_ids])
        )
        return groups

    def pre_delete_hook(self, client: "Client", to_delete: Sequence[StoredWebFeature]) -> list[ExtraMutationsGroup]:
        """
        Move data of redirected features to their targets.

        Raises:
            QueryReturnedNoResultsError: If a redirect target does not exist
        """
        if not self.redirect_targets:
            return []
        deleting = {stored.feature_key: stored for stored in to_delete}
        for source_key in self.redirect_targets:
            if source_key not in deleting:
                logger.warning("redirect source %s is not being deleted; skipping", source_key)

        signals = ExtraMutationsGroup("latest_feature_developer_signals")
        links = ExtraMutationsGroup("web_feature_chromium_histogram_enum_values")
        metrics = ExtraMutationsGroup("latest_daily_chromium_histogram_metrics")
        searches = ExtraMutationsGroup(SAVED_SEARCHES_TABLE)
        search_links = ExtraMutationsGroup(SYSTEM_MANAGED_SAVED_SEARCHES_TABLE)
        with wrap_db_errors("reading redirect data"):
            with client.read_only_transaction() as txn:
                for source_key, target_key in self.redirect_targets.items():
                    source = deleting.get(source_key)
                    if source is None:
                        continue
                    target_id = txn.execute_scalar(WebFeatureMapper().get_id(target_key))
                    if target_id is None:
                        raise QueryReturnedNoResultsError(
                            f"redirect target {target_key} of {source_key} does not exist"
                        )
                    self._move_rows(txn, source.id, target_id, signals, links, metrics)
                    self._move_system_search(txn, source.id, target_id, target_key, searches, search_links)
        return [signals, links, metrics, searches, search_links]

    def _move_rows(
        self,
        txn: DbSession,
        source_id: str,
        target_id: str,
        signals: ExtraMutationsGroup,
        links: ExtraMutationsGroup,
        metrics: ExtraMutationsGroup,
    ) -> None:
        params = {"id": source_id}
        for row in txn.query(
            Statement("SELECT votes, link FROM latest_feature_developer_signals WHERE web_feature_id = :id", params)
        ):
            signals.mutations.append(
                models.insert_or_update(
                    signals.table, {"web_feature_id": target_id, **row}, ("web_feature_id",)
                )
            )
        for row in txn.query(
            Statement(
                "SELECT chromium_histogram_enum_value_id FROM web_feature_chromium_histogram_enum_values "
                "WHERE web_feature_id = :id",
                params,
            )
        ):
            links.mutations.append(
                models.insert_or_update(links.table, {"web_feature_id": target_id, **row}, ("web_feature_id",))
            )
        for row in txn.query(
            Statement(
                "SELECT chromium_histogram_enum_value_id, day FROM latest_daily_chromium_histogram_metrics "
                "WHERE web_feature_id = :id",
                params,
                {"day": Date()},
            )
        ):
            metrics.mutations.append(
                models.insert_or_update(
                    metrics.table,
                    {"web_feature_id": target_id, **row},
                    ("web_feature_id", "chromium_histogram_enum_value_id"),
                )
            )

    def _move_system_search(
        self,
        txn: DbSession,
        source_id: str,
        target_id: str,
        target_key: str,
        searches: ExtraMutationsGroup,
        search_links: ExtraMutationsGroup,
    ) -> None:
        source_link = find_system_managed_saved_search_with_transaction(txn, source_id)
        if source_link is None:
            return
        if find_system_managed_saved_search_with_transaction(txn, target_id) is not None:
            # the source search is deleted with the source feature
            return
        searches.mutations.append(
            models.update(
                SAVED_SEARCHES_TABLE,
                {
                    "id": source_link.saved_search_id,
                    "name": system_saved_search_name(target_key),
                    "query": system_saved_search_query(target_key),
                    "updated_at": self.now,
                },
                ("id",),
            )
        )
        search_links.mutations.append(models.delete(SYSTEM_MANAGED_SAVED_SEARCHES_TABLE, {"feature_id": source_id}))
        search_links.mutations.append(
            models.insert(
                SYSTEM_MANAGED_SAVED_SEARCHES_TABLE,
                {
                    "feature_id": target_id,
                    "saved_search_id": source_link.saved_search_id,
                    "created_at": source_link.created_at,
                    "updated_at": self.now,
                },
                ("feature_id",),
            )
        )


def sync_web_features(
    client: "Client",
    features: Sequence[WebFeature],
    redirect_targets: Optional[Mapping[str, str]] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> SyncResult:
    """
    Reconcile web_features with ``features``.

    ``redirect_targets`` maps the key of a feature being removed to the key
    of an existing feature that takes over its data.
    """
    mapper = WebFeatureSyncMapper(client.time_now(), redirect_targets)
    return EntitySynchronizer(client, mapper).sync(features, cancel_event=cancel_event, timeout=timeout)


def upsert_web_feature(client: "Client", feature: WebFeature) -> str:
    """Insert or merge one feature and return its id."""
    return EntityWriterWithIDRetrieval(client, WebFeatureMapper(client.time_now())).upsert_and_get_id(feature)


def get_id_from_feature_key(client: "Client", feature_key: str) -> str:
    """
    Raises:
        QueryReturnedNoResultsError: If no feature has ``feature_key``
    """
    return EntityWriterWithIDRetrieval(client, WebFeatureMapper()).get_id_by_key(feature_key)


def get_web_feature_by_id(client: "Client", feature_id: str) -> StoredWebFeature:
    mapper = WebFeatureMapper()
    with wrap_db_errors("reading web feature"):
        with client.read_only_transaction() as txn:
            row = txn.query_one(Statement(f"{_SELECT} WHERE id = :id LIMIT 1", {"id": feature_id}))
    if row is None:
        raise QueryReturnedNoResultsError(f"no web feature with id {feature_id}")
    return mapper.from_row(row)


def fetch_all_feature_keys(client: "Client") -> list[str]:
    features = AllEntityReader(client, WebFeatureMapper()).read_all()
    return sorted(stored.feature_key for stored in features)
