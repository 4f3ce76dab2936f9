"""
Chromium use counter histograms.

A histogram enum (by name) has enum values (one per bucket). A web feature
links to at most one enum value; daily metrics hold the usage rate of an
enum value per day, and a per-feature "latest" pointer tracks the newest
day seen. Capstones mark the days whose metrics for a histogram were fully
imported.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.types import Date

from .cursor import ChromeDailyUsageCursor, decode_cursor, encode_cursor
from .db import models
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .entity import BaseMapper, EntityReader, EntityWriter, EntityWriterWithIDRetrieval
from .errors import QueryReturnedNoResultsError

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

CHROMIUM_HISTOGRAM_ENUMS_TABLE = "chromium_histogram_enums"
CHROMIUM_HISTOGRAM_ENUM_VALUES_TABLE = "chromium_histogram_enum_values"
WEB_FEATURE_CHROMIUM_HISTOGRAM_ENUM_VALUES_TABLE = "web_feature_chromium_histogram_enum_values"
DAILY_CHROMIUM_HISTOGRAM_METRICS_TABLE = "daily_chromium_histogram_metrics"
LATEST_DAILY_CHROMIUM_HISTOGRAM_METRICS_TABLE = "latest_daily_chromium_histogram_metrics"
DAILY_CHROMIUM_HISTOGRAM_ENUM_CAPSTONES_TABLE = "daily_chromium_histogram_enum_capstones"


# ---------------------------------------------------------------------------
# enums
# ---------------------------------------------------------------------------


@dataclass
class ChromiumHistogramEnum:
    histogram_name: str


@dataclass
class StoredChromiumHistogramEnum:
    id: str
    histogram_name: str


class ChromiumHistogramEnumMapper(BaseMapper[ChromiumHistogramEnum, StoredChromiumHistogramEnum, str]):
    table_name = CHROMIUM_HISTOGRAM_ENUMS_TABLE
    stored_type = StoredChromiumHistogramEnum
    primary_key = ("id",)

    def select_one(self, key: str) -> Statement:
        return Statement(
            "SELECT id, histogram_name FROM chromium_histogram_enums WHERE histogram_name = :name LIMIT 1",
            {"name": key},
        )

    def get_key_from_external(self, external: ChromiumHistogramEnum) -> str:
        return external.histogram_name

    def from_external(self, external: ChromiumHistogramEnum) -> StoredChromiumHistogramEnum:
        return StoredChromiumHistogramEnum(id=str(uuid.uuid4()), histogram_name=external.histogram_name)

    # the name is the whole identity; nothing to merge
    def merge(self, external: ChromiumHistogramEnum, existing: StoredChromiumHistogramEnum) -> StoredChromiumHistogramEnum:
        return existing

    def get_id(self, key: str) -> Statement:
        return Statement(
            "SELECT id FROM chromium_histogram_enums WHERE histogram_name = :name LIMIT 1", {"name": key}
        )

    def get_id_from_internal(self, stored: StoredChromiumHistogramEnum) -> str:
        return stored.id


def upsert_chromium_histogram_enum(client: "Client", histogram: ChromiumHistogramEnum) -> str:
    return EntityWriterWithIDRetrieval(client, ChromiumHistogramEnumMapper()).upsert_and_get_id(histogram)


def get_id_from_chromium_histogram_key(client: "Client", histogram_name: str) -> str:
    return EntityWriterWithIDRetrieval(client, ChromiumHistogramEnumMapper()).get_id_by_key(histogram_name)


# ---------------------------------------------------------------------------
# enum values
# ---------------------------------------------------------------------------


@dataclass
class ChromiumHistogramEnumValue:
    chromium_histogram_enum_id: str
    bucket_id: int
    label: str


@dataclass
class StoredChromiumHistogramEnumValue:
    id: str
    chromium_histogram_enum_id: str
    bucket_id: int
    label: str


class ChromiumHistogramEnumValueMapper(
    BaseMapper[ChromiumHistogramEnumValue, StoredChromiumHistogramEnumValue, tuple[str, int]]
):
    table_name = CHROMIUM_HISTOGRAM_ENUM_VALUES_TABLE
    stored_type = StoredChromiumHistogramEnumValue
    primary_key = ("id",)

    _WHERE = "WHERE chromium_histogram_enum_id = :enum_id AND bucket_id = :bucket_id LIMIT 1"

    def select_one(self, key: tuple[str, int]) -> Statement:
        enum_id, bucket_id = key
        return Statement(
            f"SELECT id, chromium_histogram_enum_id, bucket_id, label FROM chromium_histogram_enum_values {self._WHERE}",
            {"enum_id": enum_id, "bucket_id": bucket_id},
        )

    def get_key_from_external(self, external: ChromiumHistogramEnumValue) -> tuple[str, int]:
        return (external.chromium_histogram_enum_id, external.bucket_id)

    def from_external(self, external: ChromiumHistogramEnumValue) -> StoredChromiumHistogramEnumValue:
        return StoredChromiumHistogramEnumValue(
            id=str(uuid.uuid4()),
            chromium_histogram_enum_id=external.chromium_histogram_enum_id,
            bucket_id=external.bucket_id,
            label=external.label,
        )

    def merge(
        self, external: ChromiumHistogramEnumValue, existing: StoredChromiumHistogramEnumValue
    ) -> StoredChromiumHistogramEnumValue:
        return replace(existing, label=external.label)

    def get_id(self, key: tuple[str, int]) -> Statement:
        enum_id, bucket_id = key
        return Statement(
            f"SELECT id FROM chromium_histogram_enum_values {self._WHERE}",
            {"enum_id": enum_id, "bucket_id": bucket_id},
        )

    def get_id_from_internal(self, stored: StoredChromiumHistogramEnumValue) -> str:
        return stored.id


def upsert_chromium_histogram_enum_value(client: "Client", value: ChromiumHistogramEnumValue) -> str:
    return EntityWriterWithIDRetrieval(client, ChromiumHistogramEnumValueMapper()).upsert_and_get_id(value)


def get_id_from_chromium_histogram_enum_value_key(client: "Client", enum_id: str, bucket_id: int) -> str:
    return EntityWriterWithIDRetrieval(client, ChromiumHistogramEnumValueMapper()).get_id_by_key((enum_id, bucket_id))


# ---------------------------------------------------------------------------
# feature links
# ---------------------------------------------------------------------------


@dataclass
class WebFeatureChromiumHistogramEnumValue:
    web_feature_id: str
    chromium_histogram_enum_value_id: str


class WebFeatureChromiumHistogramEnumValueMapper(
    BaseMapper[WebFeatureChromiumHistogramEnumValue, WebFeatureChromiumHistogramEnumValue, str]
):
    table_name = WEB_FEATURE_CHROMIUM_HISTOGRAM_ENUM_VALUES_TABLE
    stored_type = WebFeatureChromiumHistogramEnumValue
    primary_key = ("web_feature_id",)

    def select_one(self, key: str) -> Statement:
        return Statement(
            """
            SELECT web_feature_id, chromium_histogram_enum_value_id
            FROM web_feature_chromium_histogram_enum_values
            WHERE web_feature_id = :web_feature_id
            LIMIT 1
            """,
            {"web_feature_id": key},
        )

    def get_key_from_external(self, external: WebFeatureChromiumHistogramEnumValue) -> str:
        return external.web_feature_id

    def merge(
        self, external: WebFeatureChromiumHistogramEnumValue, existing: WebFeatureChromiumHistogramEnumValue
    ) -> WebFeatureChromiumHistogramEnumValue:
        return replace(existing, chromium_histogram_enum_value_id=external.chromium_histogram_enum_value_id)


def upsert_web_feature_chromium_histogram_enum_value(
    client: "Client", link: WebFeatureChromiumHistogramEnumValue
) -> None:
    EntityWriter(client, WebFeatureChromiumHistogramEnumValueMapper()).upsert(link)


# ---------------------------------------------------------------------------
# daily metrics
# ---------------------------------------------------------------------------


@dataclass
class DailyChromiumHistogramMetric:
    day: date
    rate: float


@dataclass
class StoredDailyChromiumHistogramMetric:
    chromium_histogram_enum_value_id: str
    day: date
    rate: float


class DailyChromiumHistogramMetricMapper(
    BaseMapper[StoredDailyChromiumHistogramMetric, StoredDailyChromiumHistogramMetric, tuple[str, date]]
):
    table_name = DAILY_CHROMIUM_HISTOGRAM_METRICS_TABLE
    stored_type = StoredDailyChromiumHistogramMetric
    primary_key = ("chromium_histogram_enum_value_id", "day")

    def select_one(self, key: tuple[str, date]) -> Statement:
        value_id, day = key
        return Statement(
            """
            SELECT chromium_histogram_enum_value_id, day, rate
            FROM daily_chromium_histogram_metrics
            WHERE chromium_histogram_enum_value_id = :value_id AND day = :day
            LIMIT 1
            """,
            {"value_id": value_id, "day": day},
            {"day": Date()},
        )

    def get_key_from_external(self, external: StoredDailyChromiumHistogramMetric) -> tuple[str, date]:
        return (external.chromium_histogram_enum_value_id, external.day)

    def merge(
        self, external: StoredDailyChromiumHistogramMetric, existing: StoredDailyChromiumHistogramMetric
    ) -> StoredDailyChromiumHistogramMetric:
        return replace(existing, rate=external.rate)


def _latest_metric_day(txn: DbSession, value_id: str) -> Optional[date]:
    row = txn.query_one(
        Statement(
            """
            SELECT day
            FROM latest_daily_chromium_histogram_metrics
            WHERE chromium_histogram_enum_value_id = :value_id
            ORDER BY day DESC
            LIMIT 1
            """,
            {"value_id": value_id},
            {"day": Date()},
        )
    )
    return row["day"] if row is not None else None


def _linked_feature_id(txn: DbSession, value_id: str) -> Optional[str]:
    return txn.execute_scalar(
        Statement(
            """
            SELECT web_feature_id
            FROM web_feature_chromium_histogram_enum_values
            WHERE chromium_histogram_enum_value_id = :value_id
            LIMIT 1
            """,
            {"value_id": value_id},
        )
    )


def upsert_daily_chromium_histogram_metric(
    client: "Client",
    histogram_name: str,
    bucket_id: int,
    metric: DailyChromiumHistogramMetric,
) -> None:
    """
    Store the usage rate of one bucket for one day.

    The feature's latest pointer only moves forward: it is written when the
    metric's day is newer than the day it points at. Buckets without an enum
    value (usually draft features) are skipped with a warning.

    Raises:
        QueryReturnedNoResultsError: If the histogram is unknown
    """
    enum_id = get_id_from_chromium_histogram_key(client, histogram_name)
    try:
        value_id = get_id_from_chromium_histogram_enum_value_key(client, enum_id, bucket_id)
    except QueryReturnedNoResultsError:
        logger.warning(
            "no enum value for histogram %s bucket %d; likely a draft feature, skipping", histogram_name, bucket_id
        )
        return

    writer = EntityWriter(client, DailyChromiumHistogramMetricMapper())
    stored = StoredDailyChromiumHistogramMetric(chromium_histogram_enum_value_id=value_id, day=metric.day, rate=metric.rate)
    with wrap_db_errors("upserting daily chromium histogram metric"):
        with client.read_write_transaction() as txn:
            writer.upsert_with_transaction(stored, txn)
            latest = _latest_metric_day(txn, value_id)
            if latest is not None and metric.day <= latest:
                return
            feature_id = _linked_feature_id(txn, value_id)
            if feature_id is None:
                logger.debug("enum value %s is not linked to a feature; latest pointer not moved", value_id)
                return
            txn.buffer_write(
                [
                    models.insert_or_update(
                        LATEST_DAILY_CHROMIUM_HISTOGRAM_METRICS_TABLE,
                        {"web_feature_id": feature_id, "chromium_histogram_enum_value_id": value_id, "day": metric.day},
                        ("web_feature_id", "chromium_histogram_enum_value_id"),
                    )
                ]
            )


# ---------------------------------------------------------------------------
# capstones
# ---------------------------------------------------------------------------


@dataclass
class DailyChromiumHistogramEnumCapstone:
    day: date
    histogram_name: str


@dataclass
class StoredDailyChromiumHistogramEnumCapstone:
    chromium_histogram_enum_id: str
    day: date


class DailyChromiumHistogramEnumCapstoneMapper(
    BaseMapper[StoredDailyChromiumHistogramEnumCapstone, StoredDailyChromiumHistogramEnumCapstone, tuple[str, date]]
):
    table_name = DAILY_CHROMIUM_HISTOGRAM_ENUM_CAPSTONES_TABLE
    stored_type = StoredDailyChromiumHistogramEnumCapstone
    primary_key = ("chromium_histogram_enum_id", "day")

    def select_one(self, key: tuple[str, date]) -> Statement:
        enum_id, day = key
        return Statement(
            """
            SELECT chromium_histogram_enum_id, day
            FROM daily_chromium_histogram_enum_capstones
            WHERE chromium_histogram_enum_id = :enum_id AND day = :day
            LIMIT 1
            """,
            {"enum_id": enum_id, "day": day},
            {"day": Date()},
        )

    def get_key_from_external(self, external: StoredDailyChromiumHistogramEnumCapstone) -> tuple[str, date]:
        return (external.chromium_histogram_enum_id, external.day)

    def merge(
        self, external: StoredDailyChromiumHistogramEnumCapstone, existing: StoredDailyChromiumHistogramEnumCapstone
    ) -> StoredDailyChromiumHistogramEnumCapstone:
        return existing


def has_daily_chromium_histogram_capstone(client: "Client", capstone: DailyChromiumHistogramEnumCapstone) -> bool:
    enum_id = get_id_from_chromium_histogram_key(client, capstone.histogram_name)
    reader = EntityReader(client, DailyChromiumHistogramEnumCapstoneMapper())
    try:
        reader.read_row_by_key((enum_id, capstone.day))
    except QueryReturnedNoResultsError:
        return False
    return True


def upsert_daily_chromium_histogram_capstone(client: "Client", capstone: DailyChromiumHistogramEnumCapstone) -> None:
    enum_id = get_id_from_chromium_histogram_key(client, capstone.histogram_name)
    EntityWriter(client, DailyChromiumHistogramEnumCapstoneMapper()).upsert(
        StoredDailyChromiumHistogramEnumCapstone(chromium_histogram_enum_id=enum_id, day=capstone.day)
    )


# ---------------------------------------------------------------------------
# usage stats
# ---------------------------------------------------------------------------


@dataclass
class ChromeDailyUsageStatWithDate:
    date: date
    usage: Optional[float]


def _first_day_from(value: datetime) -> date:
    """The first day whose UTC midnight is at or after ``value``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    day = value.date()
    if datetime.combine(day, time.min, tzinfo=timezone.utc) < value:
        day += timedelta(days=1)
    return day


def list_chrome_daily_usage_stats_for_feature(
    client: "Client",
    feature_key: str,
    start_at: datetime,
    end_at: datetime,
    page_size: int,
    page_token: Optional[str] = None,
) -> tuple[list[ChromeDailyUsageStatWithDate], Optional[str]]:
    """
    Daily usage of a feature with days in ``[start_at, end_at)``, newest first.

    Raises:
        InvalidCursorFormatError: If ``page_token`` cannot be decoded
    """
    params: dict[str, Any] = {
        "feature_key": feature_key,
        "start_day": _first_day_from(start_at),
        "end_day": _first_day_from(end_at),
        "page_size": page_size,
    }
    page_filter = ""
    if page_token is not None:
        cursor = decode_cursor(page_token, ChromeDailyUsageCursor)
        params["last_date"] = cursor.last_date
        page_filter = "AND dchm.day < :last_date"
    stmt = Statement(
        f"""
        SELECT dchm.day AS date, dchm.rate AS usage
        FROM daily_chromium_histogram_metrics dchm
        JOIN web_feature_chromium_histogram_enum_values wfchev
            ON wfchev.chromium_histogram_enum_value_id = dchm.chromium_histogram_enum_value_id
        JOIN web_features wf ON wfchev.web_feature_id = wf.id
        WHERE wf.feature_key = :feature_key
            AND dchm.day >= :start_day
            AND dchm.day < :end_day
            {page_filter}
        ORDER BY dchm.day DESC
        LIMIT :page_size
        """,
        params,
        {"date": Date()},
    )
    with wrap_db_errors("listing chrome daily usage"):
        with client.read_only_transaction() as txn:
            rows = txn.query(stmt)
    stats = [ChromeDailyUsageStatWithDate(date=row["date"], usage=row["usage"]) for row in rows]
    next_token = None
    if stats and len(stats) == page_size:
        next_token = encode_cursor(ChromeDailyUsageCursor(last_date=stats[-1].date))
    return stats, next_token
