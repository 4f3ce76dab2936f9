from __future__ import annotations

import pytest

from webstatus_db.errors import QueryReturnedNoResultsError
from webstatus_db.feature_developer_signals import (
    FeatureDeveloperSignal,
    get_all_latest_feature_developer_signals,
    sync_latest_feature_developer_signals,
)
from webstatus_db.web_features import WebFeature, upsert_web_feature


@pytest.fixture
def features(client):
    for key in ("grid", "has", "subgrid"):
        upsert_web_feature(client, WebFeature(feature_key=key, name=key.title()))
    return client


def test_initial_sync(features) -> None:
    result = sync_latest_feature_developer_signals(
        features,
        [FeatureDeveloperSignal("subgrid", 3, "https://example.com/s"), FeatureDeveloperSignal("grid", 10)],
    )

    assert (result.inserts, result.updates, result.deletes) == (2, 0, 0)
    assert get_all_latest_feature_developer_signals(features) == [
        FeatureDeveloperSignal("grid", 10, ""),
        FeatureDeveloperSignal("subgrid", 3, "https://example.com/s"),
    ]


def test_resync_updates_inserts_and_removes(features) -> None:
    sync_latest_feature_developer_signals(
        features, [FeatureDeveloperSignal("grid", 10), FeatureDeveloperSignal("subgrid", 3)]
    )

    result = sync_latest_feature_developer_signals(
        features, [FeatureDeveloperSignal("grid", 12), FeatureDeveloperSignal("has", 1)]
    )

    assert (result.inserts, result.updates, result.unchanged, result.deletes) == (1, 1, 0, 1)
    assert [(s.web_feature_key, s.votes) for s in get_all_latest_feature_developer_signals(features)] == [
        ("grid", 12),
        ("has", 1),
    ]


def test_unchanged_signals_are_left_alone(features) -> None:
    signals = [FeatureDeveloperSignal("grid", 10, "https://example.com/g")]
    sync_latest_feature_developer_signals(features, signals)

    result = sync_latest_feature_developer_signals(features, signals)
    assert (result.inserts, result.updates, result.unchanged, result.deletes) == (0, 0, 1, 0)


def test_unknown_feature(features, count_rows) -> None:
    with pytest.raises(QueryReturnedNoResultsError):
        sync_latest_feature_developer_signals(features, [FeatureDeveloperSignal("missing", 1)])
    assert count_rows("latest_feature_developer_signals") == 0
