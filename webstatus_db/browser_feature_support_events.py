"""
Precomputed support matrix.

For every target browser, every browser release (the event) and every
feature, a row records whether the target browser supported the feature
on the event's release date. The aggregate reports read these rows instead
of recomputing availability per query.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional

from .browser_availabilities import BrowserFeatureAvailabilityMapper, StoredBrowserFeatureAvailability
from .browser_releases import BrowserRelease, BrowserReleaseMapper
from .db import models
from .db.helpers import wrap_db_errors
from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import AllEntityReader, BaseMapper, run_concurrent_batch

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

BROWSER_FEATURE_SUPPORT_EVENTS_TABLE = "browser_feature_support_events"


class BrowserFeatureSupportStatus(str, Enum):
    UNSUPPORTED = "unsupported"
    SUPPORTED = "supported"


@dataclass
class BrowserFeatureSupportEvent:
    target_browser_name: str
    event_browser_name: str
    event_release_date: datetime
    web_feature_id: str
    support_status: str


class BrowserFeatureSupportEventMapper(BaseMapper[BrowserFeatureSupportEvent, BrowserFeatureSupportEvent, tuple]):
    table_name = BROWSER_FEATURE_SUPPORT_EVENTS_TABLE
    stored_type = BrowserFeatureSupportEvent
    primary_key = ("target_browser_name", "event_browser_name", "event_release_date", "web_feature_id")

    def select_all(self) -> Statement:
        return Statement(
            """
            SELECT target_browser_name, event_browser_name, event_release_date, web_feature_id, support_status
            FROM browser_feature_support_events
            ORDER BY target_browser_name, event_release_date, event_browser_name, web_feature_id
            """,
            {},
            {"event_release_date": UTCDateTime()},
        )


def build_availability_map(
    releases: Iterable[BrowserRelease],
    availabilities: Iterable[StoredBrowserFeatureAvailability],
) -> dict[str, dict[str, datetime]]:
    """browser name -> feature id -> release date of the first version with the feature."""
    release_dates: dict[tuple[str, str], datetime] = {
        (release.browser_name, release.browser_version): release.release_date for release in releases
    }
    availability_map: dict[str, dict[str, datetime]] = {}
    for availability in availabilities:
        release_date = release_dates.get((availability.browser_name, availability.browser_version))
        if release_date is None:
            # availability for a version with no known release
            continue
        availability_map.setdefault(availability.browser_name, {})[availability.web_feature_id] = release_date
    return availability_map


def calculate_browser_support_events(
    availability_map: dict[str, dict[str, datetime]],
    releases: Iterable[BrowserRelease],
    feature_ids: Iterable[str],
) -> list[BrowserFeatureSupportEvent]:
    releases = list(releases)
    feature_ids = list(feature_ids)
    target_browsers = sorted({release.browser_name for release in releases})
    events: dict[tuple, BrowserFeatureSupportEvent] = {}
    for target in target_browsers:
        supported_since = availability_map.get(target, {})
        for event in releases:
            for feature_id in feature_ids:
                since = supported_since.get(feature_id)
                status = BrowserFeatureSupportStatus.UNSUPPORTED
                if since is not None and since <= event.release_date:
                    status = BrowserFeatureSupportStatus.SUPPORTED
                key = (target, event.browser_name, event.release_date, feature_id)
                events[key] = BrowserFeatureSupportEvent(
                    target_browser_name=target,
                    event_browser_name=event.browser_name,
                    event_release_date=event.release_date,
                    web_feature_id=feature_id,
                    support_status=status.value,
                )
    return list(events.values())


def precalculate_browser_feature_support_events(
    client: "Client",
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> int:
    """
    Recompute the support matrix and write it with insert-or-update.

    Below the batch write threshold the rows are written in one
    transaction, otherwise through the concurrent batch writer. Returns the
    number of rows written.
    """
    with wrap_db_errors("reading support inputs"):
        with client.read_only_transaction() as txn:
            releases = AllEntityReader(client, BrowserReleaseMapper()).read_all_with_transaction(txn)
            availabilities = AllEntityReader(client, BrowserFeatureAvailabilityMapper()).read_all_with_transaction(
                txn
            )
            feature_ids = [row["id"] for row in txn.query(Statement("SELECT id FROM web_features ORDER BY id"))]

    events = calculate_browser_support_events(build_availability_map(releases, availabilities), releases, feature_ids)
    mapper = BrowserFeatureSupportEventMapper()

    def to_mutation(event: BrowserFeatureSupportEvent) -> models.Mutation:
        return models.insert_or_update(mapper.table(), mapper.to_row(event), mapper.primary_key)

    if len(events) < client.config.batch.batch_write_threshold:
        client.apply(to_mutation(event) for event in events)
    else:
        run_concurrent_batch(
            client, events, mapper.table(), to_mutation, cancel_event=cancel_event, timeout=timeout
        )
    logger.info("wrote %d browser feature support events", len(events))
    return len(events)


def fetch_all_browser_feature_support_events(client: "Client") -> list[BrowserFeatureSupportEvent]:
    return AllEntityReader(client, BrowserFeatureSupportEventMapper()).read_all()
