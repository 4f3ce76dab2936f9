from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional, Sequence

from .db.statement import Statement
from .entity import AllEntityReader, BaseMapper, EntitySynchronizer, SyncResult
from .web_features import get_id_from_feature_key

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

LATEST_FEATURE_DEVELOPER_SIGNALS_TABLE = "latest_feature_developer_signals"


@dataclass
class FeatureDeveloperSignal:
    web_feature_key: str
    votes: int
    link: str = ""


@dataclass
class StoredFeatureDeveloperSignal:
    web_feature_id: str
    votes: int
    link: str = ""


class LatestFeatureDeveloperSignalsMapper(
    BaseMapper[StoredFeatureDeveloperSignal, StoredFeatureDeveloperSignal, str]
):
    table_name = LATEST_FEATURE_DEVELOPER_SIGNALS_TABLE
    stored_type = StoredFeatureDeveloperSignal
    primary_key = ("web_feature_id",)

    def select_all(self) -> Statement:
        return Statement("SELECT web_feature_id, votes, link FROM latest_feature_developer_signals")

    def get_key_from_external(self, external: StoredFeatureDeveloperSignal) -> str:
        return external.web_feature_id

    def get_key_from_internal(self, stored: StoredFeatureDeveloperSignal) -> str:
        return stored.web_feature_id

    def merge_and_check_changed(
        self, external: StoredFeatureDeveloperSignal, existing: StoredFeatureDeveloperSignal
    ) -> tuple[StoredFeatureDeveloperSignal, bool]:
        merged = replace(existing, votes=external.votes, link=external.link)
        return merged, merged != existing


class FeatureDeveloperSignalReadMapper:
    """Reads the signals back keyed by feature key."""

    def table(self) -> str:
        return LATEST_FEATURE_DEVELOPER_SIGNALS_TABLE

    def select_all(self) -> Statement:
        return Statement(
            """
            SELECT wf.feature_key AS web_feature_key, lfd.votes, lfd.link
            FROM latest_feature_developer_signals lfd
            JOIN web_features wf ON lfd.web_feature_id = wf.id
            ORDER BY wf.feature_key
            """
        )

    def from_row(self, row) -> FeatureDeveloperSignal:
        return FeatureDeveloperSignal(web_feature_key=row["web_feature_key"], votes=row["votes"], link=row["link"] or "")


def sync_latest_feature_developer_signals(
    client: "Client",
    signals: Sequence[FeatureDeveloperSignal],
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> SyncResult:
    """
    Replace the latest developer signals with ``signals``.

    Raises:
        QueryReturnedNoResultsError: If a signal names an unknown feature
    """
    logger.info("syncing %d latest feature developer signals", len(signals))
    stored = [
        StoredFeatureDeveloperSignal(
            web_feature_id=get_id_from_feature_key(client, signal.web_feature_key),
            votes=signal.votes,
            link=signal.link,
        )
        for signal in signals
    ]
    return EntitySynchronizer(client, LatestFeatureDeveloperSignalsMapper()).sync(
        stored, cancel_event=cancel_event, timeout=timeout
    )


def get_all_latest_feature_developer_signals(client: "Client") -> list[FeatureDeveloperSignal]:
    return AllEntityReader(client, FeatureDeveloperSignalReadMapper()).read_all()
