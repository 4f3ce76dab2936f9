from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from webstatus_db.browser_availabilities import BrowserFeatureAvailability, insert_browser_feature_availability
from webstatus_db.browser_feature_support_events import precalculate_browser_feature_support_events
from webstatus_db.browser_releases import BrowserRelease, upsert_browser_release
from webstatus_db.chromium_histograms import (
    ChromiumHistogramEnum,
    ChromiumHistogramEnumValue,
    DailyChromiumHistogramMetric,
    WebFeatureChromiumHistogramEnumValue,
    upsert_chromium_histogram_enum,
    upsert_chromium_histogram_enum_value,
    upsert_daily_chromium_histogram_metric,
    upsert_web_feature_chromium_histogram_enum_value,
)
from webstatus_db.entity import SyncResult
from webstatus_db.errors import QueryReturnedNoResultsError, SyncFailedToGetChildMutationsError
from webstatus_db.feature_discouraged_details import FeatureDiscouragedDetails, upsert_feature_discouraged_details
from webstatus_db.feature_developer_signals import FeatureDeveloperSignal, sync_latest_feature_developer_signals
from webstatus_db.notification_channels import CreateNotificationChannelRequest, create_notification_channel
from webstatus_db.saved_search_state import try_acquire_saved_search_state_worker_lock
from webstatus_db.saved_search_subscriptions import (
    CreateSavedSearchSubscriptionRequest,
    create_saved_search_subscription,
)
from webstatus_db.saved_searches import SavedSearchScope, get_saved_search
from webstatus_db.system_managed_saved_searches import (
    delete_system_managed_saved_search,
    get_system_managed_saved_search_by_feature_id,
    list_all_system_managed_saved_searches,
)
from webstatus_db.web_features import (
    WebFeature,
    fetch_all_feature_keys,
    get_id_from_feature_key,
    get_web_feature_by_id,
    sync_web_features,
    upsert_web_feature,
)

HISTOGRAM = "WebDXFeatureObserver"


def _feature(key: str, name: str | None = None) -> WebFeature:
    return WebFeature(feature_key=key, name=name or key.title(), description=f"about {key}")


class TestUpsert:
    def test_insert_creates_system_managed_search(self, client) -> None:
        feature_id = upsert_web_feature(client, _feature("css-grid", "CSS Grid"))

        link = get_system_managed_saved_search_by_feature_id(client, feature_id)
        search = get_saved_search(client, link.saved_search_id)
        assert search.name == "Feature css-grid"
        assert search.query == 'id:"css-grid"'
        assert search.scope == SavedSearchScope.SYSTEM_MANAGED.value
        assert search.author_id == "system"
        assert search.description == "A system-managed saved search for the feature CSS Grid"

    def test_second_upsert_merges_and_keeps_id(self, client, count_rows) -> None:
        feature_id = upsert_web_feature(client, _feature("css-grid", "CSS Grid"))
        again = upsert_web_feature(client, WebFeature(feature_key="css-grid", name="Grid"))

        assert again == feature_id
        stored = get_web_feature_by_id(client, feature_id)
        assert stored.feature.name == "Grid"
        # empty values keep what is stored
        assert stored.feature.description == "about css-grid"
        assert count_rows("system_managed_saved_searches") == 1
        assert count_rows("saved_searches") == 1

    def test_upsert_repairs_missing_system_search_link(self, client, count_rows) -> None:
        feature_id = upsert_web_feature(client, _feature("css-grid"))
        delete_system_managed_saved_search(client, feature_id)

        upsert_web_feature(client, _feature("css-grid"))
        assert get_system_managed_saved_search_by_feature_id(client, feature_id).feature_id == feature_id

    def test_lookups(self, client) -> None:
        grid_id = upsert_web_feature(client, _feature("grid"))
        upsert_web_feature(client, _feature("anchor-positioning"))

        assert get_id_from_feature_key(client, "grid") == grid_id
        assert get_web_feature_by_id(client, grid_id).feature_key == "grid"
        assert fetch_all_feature_keys(client) == ["anchor-positioning", "grid"]
        with pytest.raises(QueryReturnedNoResultsError):
            get_id_from_feature_key(client, "nope")
        with pytest.raises(QueryReturnedNoResultsError):
            get_web_feature_by_id(client, "nope")


class TestSync:
    def test_inserts_features_with_their_searches(self, client, count_rows) -> None:
        result = sync_web_features(client, [_feature("a"), _feature("b")])

        assert result == SyncResult(inserts=2)
        assert fetch_all_feature_keys(client) == ["a", "b"]
        assert count_rows("saved_searches") == 2
        links = list_all_system_managed_saved_searches(client)
        assert sorted(link.feature_id for link in links) == sorted(
            [get_id_from_feature_key(client, "a"), get_id_from_feature_key(client, "b")]
        )

    def test_changed_features_are_updated_and_ids_kept(self, client) -> None:
        sync_web_features(client, [_feature("a"), _feature("b")])
        a_id = get_id_from_feature_key(client, "a")

        result = sync_web_features(client, [_feature("a", "Renamed"), _feature("b")])

        assert result == SyncResult(updates=1, unchanged=1)
        assert get_id_from_feature_key(client, "a") == a_id
        assert get_web_feature_by_id(client, a_id).feature.name == "Renamed"


def _seed_feature_data(client, key: str) -> str:
    """Attach one row of every dependent kind to the feature."""
    feature_id = get_id_from_feature_key(client, key)
    insert_browser_feature_availability(client, key, BrowserFeatureAvailability("chrome", "100"))

    enum_id = upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))
    value_id = upsert_chromium_histogram_enum_value(
        client, ChromiumHistogramEnumValue(enum_id, bucket_id=len(key) * 10, label=key)
    )
    upsert_web_feature_chromium_histogram_enum_value(client, WebFeatureChromiumHistogramEnumValue(feature_id, value_id))
    upsert_daily_chromium_histogram_metric(
        client, HISTOGRAM, len(key) * 10, DailyChromiumHistogramMetric(day=date(2024, 1, 1), rate=0.5)
    )

    search_id = get_system_managed_saved_search_by_feature_id(client, feature_id).saved_search_id
    channel_id = create_notification_channel(client, CreateNotificationChannelRequest(user_id="alice", name=key))
    create_saved_search_subscription(
        client,
        CreateSavedSearchSubscriptionRequest(
            user_id="alice", channel_id=channel_id, saved_search_id=search_id, triggers=[], frequency="IMMEDIATE"
        ),
    )
    try_acquire_saved_search_state_worker_lock(client, search_id, "IMMEDIATE", "worker", timedelta(minutes=5))
    return feature_id


class TestRemoval:
    @pytest.fixture
    def seeded(self, client) -> dict:
        upsert_browser_release(client, BrowserRelease("chrome", "100", datetime(2024, 1, 1, tzinfo=timezone.utc)))
        sync_web_features(client, [_feature("a"), _feature("bb")])
        ids = {"a": _seed_feature_data(client, "a"), "bb": _seed_feature_data(client, "bb")}
        sync_latest_feature_developer_signals(client, [FeatureDeveloperSignal("a", votes=10, link="https://a")])
        upsert_feature_discouraged_details(client, "a", FeatureDiscouragedDetails(according_to=["https://a"]))
        precalculate_browser_feature_support_events(client)
        return ids

    def test_removed_feature_takes_its_rows_along(self, client, seeded, fetch_rows) -> None:
        result = sync_web_features(client, [_feature("bb")])
        assert result.deletes == 1

        a_id = seeded["a"]
        for table, column in [
            ("browser_feature_availabilities", "web_feature_id"),
            ("browser_feature_support_events", "web_feature_id"),
            ("latest_feature_developer_signals", "web_feature_id"),
            ("feature_discouraged_details", "web_feature_id"),
            ("web_feature_chromium_histogram_enum_values", "web_feature_id"),
            ("latest_daily_chromium_histogram_metrics", "web_feature_id"),
            ("system_managed_saved_searches", "feature_id"),
        ]:
            assert fetch_rows(f"SELECT * FROM {table} WHERE {column} = :id", {"id": a_id}) == [], table

        # bb keeps everything, a's search and its subscription and state are gone
        assert len(fetch_rows("SELECT id FROM saved_searches")) == 1
        assert len(fetch_rows("SELECT id FROM saved_search_subscriptions")) == 1
        assert len(fetch_rows("SELECT saved_search_id FROM saved_search_state")) == 1
        assert fetch_all_feature_keys(client) == ["bb"]

    def test_redirect_moves_data_to_target(self, client, seeded, fetch_rows) -> None:
        bb_id = seeded["bb"]
        bb_search = get_system_managed_saved_search_by_feature_id(client, bb_id).saved_search_id

        sync_web_features(client, [_feature("bb")], redirect_targets={"a": "bb"})

        assert fetch_rows("SELECT web_feature_id, votes FROM latest_feature_developer_signals") == [
            {"web_feature_id": bb_id, "votes": 10}
        ]
        latest = fetch_rows("SELECT web_feature_id FROM latest_daily_chromium_histogram_metrics")
        assert {row["web_feature_id"] for row in latest} == {bb_id}
        # the target already had a system search, so it is kept
        assert get_system_managed_saved_search_by_feature_id(client, bb_id).saved_search_id == bb_search
        assert len(fetch_rows("SELECT id FROM saved_searches")) == 1

    def test_redirect_hands_over_system_search(self, client, seeded) -> None:
        a_search = get_system_managed_saved_search_by_feature_id(client, seeded["a"]).saved_search_id
        delete_system_managed_saved_search(client, seeded["bb"])

        sync_web_features(client, [_feature("bb")], redirect_targets={"a": "bb"})

        link = get_system_managed_saved_search_by_feature_id(client, seeded["bb"])
        assert link.saved_search_id == a_search
        search = get_saved_search(client, a_search)
        assert search.name == "Feature bb"
        assert search.query == 'id:"bb"'

    def test_missing_redirect_target_aborts(self, client, seeded) -> None:
        with pytest.raises(SyncFailedToGetChildMutationsError):
            sync_web_features(client, [_feature("bb")], redirect_targets={"a": "gone"})
        assert fetch_all_feature_keys(client) == ["a", "bb"]

    def test_redirect_of_kept_feature_is_ignored(self, client, seeded, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="webstatus_db.web_features"):
            result = sync_web_features(client, [_feature("bb")], redirect_targets={"a": "bb", "bb": "a"})
        assert result.deletes == 1
        assert "redirect source bb is not being deleted" in caplog.text
        assert fetch_all_feature_keys(client) == ["bb"]
