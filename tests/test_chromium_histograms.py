from __future__ import annotations

import logging
from datetime import date, datetime, timezone

import pytest

from webstatus_db.chromium_histograms import (
    ChromiumHistogramEnum,
    ChromiumHistogramEnumValue,
    DailyChromiumHistogramEnumCapstone,
    DailyChromiumHistogramMetric,
    WebFeatureChromiumHistogramEnumValue,
    get_id_from_chromium_histogram_enum_value_key,
    get_id_from_chromium_histogram_key,
    has_daily_chromium_histogram_capstone,
    list_chrome_daily_usage_stats_for_feature,
    upsert_chromium_histogram_enum,
    upsert_chromium_histogram_enum_value,
    upsert_daily_chromium_histogram_capstone,
    upsert_daily_chromium_histogram_metric,
    upsert_web_feature_chromium_histogram_enum_value,
)
from webstatus_db.errors import InvalidCursorFormatError, QueryReturnedNoResultsError
from webstatus_db.web_features import WebFeature, upsert_web_feature

HISTOGRAM = "WebDXFeatureObserver"


class TestEnumsAndValues:
    def test_enum_upsert_keeps_id(self, client) -> None:
        first = upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))
        second = upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))

        assert first == second
        assert get_id_from_chromium_histogram_key(client, HISTOGRAM) == first

    def test_unknown_enum(self, client) -> None:
        with pytest.raises(QueryReturnedNoResultsError):
            get_id_from_chromium_histogram_key(client, "missing")

    def test_value_upsert_updates_label(self, client, fetch_rows) -> None:
        enum_id = upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))
        value_id = upsert_chromium_histogram_enum_value(client, ChromiumHistogramEnumValue(enum_id, 7, "Old"))
        again = upsert_chromium_histogram_enum_value(client, ChromiumHistogramEnumValue(enum_id, 7, "New"))

        assert again == value_id
        assert get_id_from_chromium_histogram_enum_value_key(client, enum_id, 7) == value_id
        assert fetch_rows("SELECT label FROM chromium_histogram_enum_values") == [{"label": "New"}]

    def test_feature_link_is_replaced(self, client, fetch_rows) -> None:
        feature_id = upsert_web_feature(client, WebFeature(feature_key="grid", name="Grid"))
        enum_id = upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))
        v1 = upsert_chromium_histogram_enum_value(client, ChromiumHistogramEnumValue(enum_id, 1, "Grid"))
        v2 = upsert_chromium_histogram_enum_value(client, ChromiumHistogramEnumValue(enum_id, 2, "Grid2"))

        upsert_web_feature_chromium_histogram_enum_value(client, WebFeatureChromiumHistogramEnumValue(feature_id, v1))
        upsert_web_feature_chromium_histogram_enum_value(client, WebFeatureChromiumHistogramEnumValue(feature_id, v2))

        rows = fetch_rows("SELECT web_feature_id, chromium_histogram_enum_value_id FROM web_feature_chromium_histogram_enum_values")
        assert rows == [{"web_feature_id": feature_id, "chromium_histogram_enum_value_id": v2}]


@pytest.fixture
def linked(client):
    """A feature linked to bucket 1; bucket 2 has a value but no feature."""
    feature_id = upsert_web_feature(client, WebFeature(feature_key="grid", name="Grid"))
    enum_id = upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))
    value_id = upsert_chromium_histogram_enum_value(client, ChromiumHistogramEnumValue(enum_id, 1, "Grid"))
    upsert_chromium_histogram_enum_value(client, ChromiumHistogramEnumValue(enum_id, 2, "Unlinked"))
    upsert_web_feature_chromium_histogram_enum_value(client, WebFeatureChromiumHistogramEnumValue(feature_id, value_id))
    return feature_id, value_id


def _latest(fetch_rows) -> list[tuple[str, str]]:
    rows = fetch_rows("SELECT web_feature_id, day FROM latest_daily_chromium_histogram_metrics")
    return [(row["web_feature_id"], str(row["day"])) for row in rows]


class TestDailyMetrics:
    def test_latest_pointer_moves_forward_only(self, client, linked, fetch_rows) -> None:
        feature_id, _ = linked

        upsert_daily_chromium_histogram_metric(client, HISTOGRAM, 1, DailyChromiumHistogramMetric(date(2024, 1, 5), 0.1))
        assert _latest(fetch_rows) == [(feature_id, "2024-01-05")]

        upsert_daily_chromium_histogram_metric(client, HISTOGRAM, 1, DailyChromiumHistogramMetric(date(2024, 1, 3), 0.2))
        assert _latest(fetch_rows) == [(feature_id, "2024-01-05")]

        upsert_daily_chromium_histogram_metric(client, HISTOGRAM, 1, DailyChromiumHistogramMetric(date(2024, 1, 9), 0.3))
        assert _latest(fetch_rows) == [(feature_id, "2024-01-09")]

    def test_rate_is_overwritten(self, client, linked, fetch_rows) -> None:
        upsert_daily_chromium_histogram_metric(client, HISTOGRAM, 1, DailyChromiumHistogramMetric(date(2024, 1, 5), 0.1))
        upsert_daily_chromium_histogram_metric(client, HISTOGRAM, 1, DailyChromiumHistogramMetric(date(2024, 1, 5), 0.7))

        assert [row["rate"] for row in fetch_rows("SELECT rate FROM daily_chromium_histogram_metrics")] == [0.7]

    def test_unlinked_value_stores_metric_without_pointer(self, client, linked, count_rows) -> None:
        upsert_daily_chromium_histogram_metric(client, HISTOGRAM, 2, DailyChromiumHistogramMetric(date(2024, 1, 5), 0.1))

        assert count_rows("daily_chromium_histogram_metrics") == 1
        assert count_rows("latest_daily_chromium_histogram_metrics") == 0

    def test_unknown_bucket_is_skipped(self, client, linked, count_rows, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="webstatus_db.chromium_histograms"):
            upsert_daily_chromium_histogram_metric(
                client, HISTOGRAM, 99, DailyChromiumHistogramMetric(date(2024, 1, 5), 0.1)
            )

        assert "bucket 99" in caplog.text
        assert count_rows("daily_chromium_histogram_metrics") == 0

    def test_unknown_histogram(self, client) -> None:
        with pytest.raises(QueryReturnedNoResultsError):
            upsert_daily_chromium_histogram_metric(
                client, "missing", 1, DailyChromiumHistogramMetric(date(2024, 1, 5), 0.1)
            )


class TestCapstones:
    def test_has_and_upsert(self, client) -> None:
        upsert_chromium_histogram_enum(client, ChromiumHistogramEnum(HISTOGRAM))
        capstone = DailyChromiumHistogramEnumCapstone(day=date(2024, 1, 5), histogram_name=HISTOGRAM)

        assert has_daily_chromium_histogram_capstone(client, capstone) is False
        upsert_daily_chromium_histogram_capstone(client, capstone)
        upsert_daily_chromium_histogram_capstone(client, capstone)
        assert has_daily_chromium_histogram_capstone(client, capstone) is True
        assert has_daily_chromium_histogram_capstone(
            client, DailyChromiumHistogramEnumCapstone(day=date(2024, 1, 6), histogram_name=HISTOGRAM)
        ) is False

    def test_unknown_histogram(self, client) -> None:
        with pytest.raises(QueryReturnedNoResultsError):
            upsert_daily_chromium_histogram_capstone(
                client, DailyChromiumHistogramEnumCapstone(day=date(2024, 1, 5), histogram_name="missing")
            )


class TestUsageStats:
    @pytest.fixture
    def with_metrics(self, client, linked):
        for day in range(1, 6):
            upsert_daily_chromium_histogram_metric(
                client, HISTOGRAM, 1, DailyChromiumHistogramMetric(date(2024, 1, day), day / 10)
            )
        return client

    def test_newest_first_with_exclusive_end(self, with_metrics) -> None:
        stats, token = list_chrome_daily_usage_stats_for_feature(
            with_metrics,
            "grid",
            datetime(2024, 1, 2, tzinfo=timezone.utc),
            datetime(2024, 1, 5, tzinfo=timezone.utc),
            page_size=10,
        )

        assert [s.date for s in stats] == [date(2024, 1, 4), date(2024, 1, 3), date(2024, 1, 2)]
        assert stats[0].usage == pytest.approx(0.4)
        assert token is None

    def test_start_mid_day_rounds_up(self, with_metrics) -> None:
        stats, _ = list_chrome_daily_usage_stats_for_feature(
            with_metrics,
            "grid",
            datetime(2024, 1, 3, 6, 0, tzinfo=timezone.utc),
            datetime(2024, 2, 1, tzinfo=timezone.utc),
            page_size=10,
        )
        assert [s.date for s in stats] == [date(2024, 1, 5), date(2024, 1, 4)]

    def test_pagination(self, with_metrics) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 2, 1, tzinfo=timezone.utc)
        first, token = list_chrome_daily_usage_stats_for_feature(with_metrics, "grid", start, end, page_size=3)
        second, last_token = list_chrome_daily_usage_stats_for_feature(
            with_metrics, "grid", start, end, page_size=3, page_token=token
        )

        assert [s.date.day for s in first] == [5, 4, 3]
        assert [s.date.day for s in second] == [2, 1]
        assert last_token is None

    def test_unknown_feature_is_empty(self, with_metrics) -> None:
        stats, token = list_chrome_daily_usage_stats_for_feature(
            with_metrics,
            "missing",
            datetime(2024, 1, 1, tzinfo=timezone.utc),
            datetime(2024, 2, 1, tzinfo=timezone.utc),
            page_size=10,
        )
        assert stats == [] and token is None

    def test_bad_token(self, with_metrics) -> None:
        with pytest.raises(InvalidCursorFormatError):
            list_chrome_daily_usage_stats_for_feature(
                with_metrics,
                "grid",
                datetime(2024, 1, 1, tzinfo=timezone.utc),
                datetime(2024, 2, 1, tzinfo=timezone.utc),
                page_size=3,
                page_token="!!",
            )
