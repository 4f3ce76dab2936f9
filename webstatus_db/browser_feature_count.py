"""Cumulative count of features available in a browser, per release."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .cursor import BrowserFeatureCountCursor, decode_cursor, encode_cursor
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement
from .db.types import UTCDateTime
from .excluded_feature_keys import get_ignored_feature_ids_for_stats

if TYPE_CHECKING:
    from .client import Client


@dataclass
class BrowserFeatureCountMetric:
    release_date: datetime
    feature_count: int


@dataclass
class BrowserFeatureCountResultPage:
    metrics: list[BrowserFeatureCountMetric]
    next_page_token: Optional[str] = None


def _mobile_filter(target_mobile_browser: Optional[str], params: dict[str, Any]) -> str:
    if target_mobile_browser is None:
        return ""
    params["target_mobile_browser_name"] = target_mobile_browser
    return "AND bfa2.browser_name = :target_mobile_browser_name"


def _excluded_filter(excluded_feature_ids: Sequence[str], params: dict[str, Any]) -> str:
    if not excluded_feature_ids:
        return ""
    params["excluded_feature_ids"] = list(excluded_feature_ids)
    return "AND bfa1.web_feature_id NOT IN :excluded_feature_ids"


def _initial_count(
    txn: DbSession,
    target_browser: str,
    target_mobile_browser: Optional[str],
    start_at: datetime,
    excluded_feature_ids: Sequence[str] = (),
) -> int:
    """Features that reached the target browser before ``start_at``."""
    params: dict[str, Any] = {"target_browser_name": target_browser, "start_at": start_at}
    mobile_filter = _mobile_filter(target_mobile_browser, params)
    excluded_filter = _excluded_filter(excluded_feature_ids, params)
    stmt = Statement(
        f"""
        SELECT COUNT(DISTINCT bfa1.web_feature_id)
        FROM browser_feature_availabilities bfa1
        JOIN browser_releases br
            ON bfa1.browser_name = br.browser_name AND bfa1.browser_version = br.browser_version
        JOIN browser_feature_availabilities bfa2
            ON bfa1.web_feature_id = bfa2.web_feature_id
        WHERE bfa1.browser_name = :target_browser_name
            AND br.release_date < :start_at
            {mobile_filter}
            {excluded_filter}
        """,
        params,
    )
    return int(txn.execute_scalar(stmt) or 0)


def build_browser_feature_count_statement(
    target_browser: str,
    target_mobile_browser: Optional[str],
    start_at: datetime,
    end_at: datetime,
    page_size: int,
    cursor: Optional[BrowserFeatureCountCursor] = None,
    excluded_feature_ids: Sequence[str] = (),
) -> Statement:
    params: dict[str, Any] = {
        "target_browser_name": target_browser,
        "start_at": start_at,
        "end_at": end_at,
        "page_size": page_size,
    }
    mobile_filter = _mobile_filter(target_mobile_browser, params)
    excluded_filter = _excluded_filter(excluded_feature_ids, params)
    page_filter = ""
    if cursor is not None:
        page_filter = "AND br.release_date > :last_release_date"
        params["last_release_date"] = cursor.last_release_date
    return Statement(
        f"""
        WITH common_features AS (
            SELECT
                bfa1.browser_name AS target_browser_name,
                bfa1.browser_version AS target_browser_version,
                bfa1.web_feature_id
            FROM browser_feature_availabilities bfa1
            JOIN browser_feature_availabilities bfa2
                ON bfa1.web_feature_id = bfa2.web_feature_id
            WHERE bfa1.browser_name = :target_browser_name
                {mobile_filter}
                {excluded_filter}
        )
        SELECT
            br.release_date AS release_date,
            COUNT(DISTINCT cf.web_feature_id) AS feature_count
        FROM browser_releases br
        LEFT JOIN common_features cf
            ON br.browser_name = cf.target_browser_name
            AND br.browser_version = cf.target_browser_version
        WHERE br.browser_name = :target_browser_name
            AND br.release_date >= :start_at
            AND br.release_date < :end_at
            {page_filter}
        GROUP BY br.release_date
        ORDER BY br.release_date
        LIMIT :page_size
        """,
        params,
        {"release_date": UTCDateTime()},
    )


def list_browser_feature_count_metric(
    client: "Client",
    target_browser: str,
    target_mobile_browser: Optional[str],
    start_at: datetime,
    end_at: datetime,
    page_size: int,
    page_token: Optional[str] = None,
) -> BrowserFeatureCountResultPage:
    """
    Running total of features available in ``target_browser`` at each of its
    release dates in ``[start_at, end_at)``, oldest first.

    With ``target_mobile_browser`` only features also available in that
    browser are counted. Excluded and discouraged features are never
    counted. The first page starts from the number of features
    released before ``start_at``; later pages continue from the count
    carried in the token.

    Raises:
        InvalidCursorFormatError: If ``page_token`` cannot be decoded
    """
    cursor = decode_cursor(page_token, BrowserFeatureCountCursor) if page_token is not None else None
    with wrap_db_errors("listing browser feature counts"):
        with client.read_only_transaction() as txn:
            excluded = get_ignored_feature_ids_for_stats(txn)
            if cursor is not None:
                cumulative = cursor.last_cumulative_count
            else:
                cumulative = _initial_count(txn, target_browser, target_mobile_browser, start_at, excluded)
            stmt = build_browser_feature_count_statement(
                target_browser, target_mobile_browser, start_at, end_at, page_size, cursor, excluded
            )
            rows = txn.query(stmt)

    metrics: list[BrowserFeatureCountMetric] = []
    for row in rows:
        cumulative += int(row["feature_count"])
        metrics.append(BrowserFeatureCountMetric(release_date=row["release_date"], feature_count=cumulative))

    next_token = None
    if metrics and len(metrics) == page_size:
        last = metrics[-1]
        next_token = encode_cursor(
            BrowserFeatureCountCursor(last_release_date=last.release_date, last_cumulative_count=last.feature_count)
        )
    return BrowserFeatureCountResultPage(metrics=metrics, next_page_token=next_token)
