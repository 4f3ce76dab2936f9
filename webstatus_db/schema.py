"""
Table definitions.

Production databases are migrated out of band; ``create_schema`` exists for
local databases and tests.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    Date,
    Float,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

from .db.types import UTCDateTime

metadata = MetaData()

web_features = Table(
    "web_features",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("feature_key", String(64), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False, default=""),
    Column("description_html", Text, nullable=False, default=""),
)

browser_releases = Table(
    "browser_releases",
    metadata,
    Column("browser_name", String(64), primary_key=True),
    Column("browser_version", String(8), primary_key=True),
    Column("release_date", UTCDateTime, nullable=False),
)

browser_feature_availabilities = Table(
    "browser_feature_availabilities",
    metadata,
    Column("web_feature_id", String(36), ForeignKey("web_features.id"), primary_key=True),
    Column("browser_name", String(64), primary_key=True),
    Column("browser_version", String(8), nullable=False),
    ForeignKeyConstraint(
        ["browser_name", "browser_version"],
        ["browser_releases.browser_name", "browser_releases.browser_version"],
    ),
)

browser_feature_support_events = Table(
    "browser_feature_support_events",
    metadata,
    Column("target_browser_name", String(64), primary_key=True),
    Column("event_browser_name", String(64), primary_key=True),
    Column("event_release_date", UTCDateTime, primary_key=True),
    Column("web_feature_id", String(36), ForeignKey("web_features.id"), primary_key=True),
    Column("support_status", String(16), nullable=False),
)

chromium_histogram_enums = Table(
    "chromium_histogram_enums",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("histogram_name", String(255), nullable=False, unique=True),
)

chromium_histogram_enum_values = Table(
    "chromium_histogram_enum_values",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "chromium_histogram_enum_id",
        String(36),
        ForeignKey("chromium_histogram_enums.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("bucket_id", Integer, nullable=False),
    Column("label", String(255), nullable=False),
    Index("ix_enum_values_by_enum_and_bucket", "chromium_histogram_enum_id", "bucket_id", unique=True),
)

web_feature_chromium_histogram_enum_values = Table(
    "web_feature_chromium_histogram_enum_values",
    metadata,
    Column("web_feature_id", String(36), ForeignKey("web_features.id", ondelete="CASCADE"), primary_key=True),
    Column(
        "chromium_histogram_enum_value_id",
        String(36),
        ForeignKey("chromium_histogram_enum_values.id", ondelete="CASCADE"),
    ),
)

daily_chromium_histogram_metrics = Table(
    "daily_chromium_histogram_metrics",
    metadata,
    Column(
        "chromium_histogram_enum_value_id",
        String(36),
        ForeignKey("chromium_histogram_enum_values.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("day", Date, primary_key=True),
    Column("rate", Float, nullable=False),
)

latest_daily_chromium_histogram_metrics = Table(
    "latest_daily_chromium_histogram_metrics",
    metadata,
    Column("web_feature_id", String(36), ForeignKey("web_features.id"), primary_key=True),
    Column("chromium_histogram_enum_value_id", String(36), primary_key=True),
    Column("day", Date, nullable=False),
)

daily_chromium_histogram_enum_capstones = Table(
    "daily_chromium_histogram_enum_capstones",
    metadata,
    Column(
        "chromium_histogram_enum_id",
        String(36),
        ForeignKey("chromium_histogram_enums.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("day", Date, primary_key=True),
)

latest_feature_developer_signals = Table(
    "latest_feature_developer_signals",
    metadata,
    Column("web_feature_id", String(36), ForeignKey("web_features.id"), primary_key=True),
    Column("votes", Integer, nullable=False),
    Column("link", Text, nullable=False, default=""),
)

excluded_feature_keys = Table(
    "excluded_feature_keys",
    metadata,
    Column("feature_key", String(64), primary_key=True),
)

# according_to and alternatives hold JSON arrays of strings
feature_discouraged_details = Table(
    "feature_discouraged_details",
    metadata,
    Column("web_feature_id", String(36), ForeignKey("web_features.id"), primary_key=True),
    Column("according_to", Text, nullable=False),
    Column("alternatives", Text, nullable=False),
)

saved_searches = Table(
    "saved_searches",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=True),
    Column("query", Text, nullable=False),
    Column("scope", String(32), nullable=False),
    Column("author_id", String(36), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

saved_search_user_roles = Table(
    "saved_search_user_roles",
    metadata,
    Column("saved_search_id", String(36), ForeignKey("saved_searches.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), primary_key=True),
    Column("user_role", String(32), nullable=False),
)

user_saved_search_bookmarks = Table(
    "user_saved_search_bookmarks",
    metadata,
    Column("user_id", String(36), primary_key=True),
    Column("saved_search_id", String(36), ForeignKey("saved_searches.id", ondelete="CASCADE"), primary_key=True),
)

system_managed_saved_searches = Table(
    "system_managed_saved_searches",
    metadata,
    Column("feature_id", String(36), primary_key=True),
    Column("saved_search_id", String(36), ForeignKey("saved_searches.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

notification_channels = Table(
    "notification_channels",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("name", String(255), nullable=False),
    Column("type", String(32), nullable=False),
    Column("config", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    Index("ix_notification_channels_by_user", "user_id", "updated_at"),
)

saved_search_subscriptions = Table(
    "saved_search_subscriptions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "channel_id",
        String(36),
        ForeignKey("notification_channels.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("saved_search_id", String(36), ForeignKey("saved_searches.id", ondelete="CASCADE"), nullable=False),
    Column("triggers", Text, nullable=False),
    Column("frequency", String(32), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
)

saved_search_state = Table(
    "saved_search_state",
    metadata,
    Column("saved_search_id", String(36), primary_key=True),
    Column("snapshot_type", String(16), primary_key=True),
    Column("last_known_state_blob_path", Text, nullable=True),
    Column("worker_lock_id", String(64), nullable=True),
    Column("worker_lock_expires_at", UTCDateTime, nullable=True),
)


def create_schema(engine: Engine) -> None:
    metadata.create_all(engine)
