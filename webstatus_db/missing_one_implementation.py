"""
Counts of features missing from exactly one browser.

The query is assembled from a template with one EXISTS block per other
browser; every value is still passed as a bind parameter.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .browser_feature_support_events import BrowserFeatureSupportStatus
from .cursor import MissingOneImplCursor, decode_cursor, encode_cursor
from .db.helpers import wrap_db_errors
from .db.statement import Statement
from .db.types import UTCDateTime
from .excluded_feature_keys import get_feature_ids_for_excluded_feature_keys
from .errors import InvalidInputError

if TYPE_CHECKING:
    from .client import Client


@dataclass
class MissingOneImplCount:
    event_release_date: datetime
    count: int


@dataclass
class MissingOneImplCountPage:
    metrics: list[MissingOneImplCount]
    next_page_token: Optional[str] = None


_OTHER_BROWSER_BLOCK = """
                AND EXISTS (
                    SELECT 1
                    FROM browser_feature_support_events other
                    WHERE other.web_feature_id = bfse.web_feature_id
                        AND other.target_browser_name = :{param}
                        AND other.support_status = :supported
                        AND other.event_release_date = bfse.event_release_date
                        {excluded_other}
                )"""


def build_missing_one_impl_statement(
    target_browser: str,
    other_browsers: Sequence[str],
    start_at: datetime,
    end_at: datetime,
    page_size: int,
    now: datetime,
    cursor: Optional[MissingOneImplCursor] = None,
    excluded_feature_ids: Sequence[str] = (),
) -> Statement:
    params: dict[str, Any] = {
        "target_browser": target_browser,
        "all_browsers": [*other_browsers, target_browser],
        "unsupported": BrowserFeatureSupportStatus.UNSUPPORTED.value,
        "supported": BrowserFeatureSupportStatus.SUPPORTED.value,
        "start_at": start_at,
        "end_at": end_at,
        "now": now,
        "page_size": page_size,
    }
    excluded_bfse = excluded_other = ""
    if excluded_feature_ids:
        params["excluded_feature_ids"] = list(excluded_feature_ids)
        excluded_bfse = "AND bfse.web_feature_id NOT IN :excluded_feature_ids"
        excluded_other = "AND other.web_feature_id NOT IN :excluded_feature_ids"
    blocks = []
    for i, browser in enumerate(other_browsers):
        param = f"other_browser_{i}"
        params[param] = browser
        blocks.append(_OTHER_BROWSER_BLOCK.format(param=param, excluded_other=excluded_other))
    cursor_filter = ""
    if cursor is not None:
        params["release_date_cursor"] = cursor.release_date
        cursor_filter = "AND release_date < :release_date_cursor"
    return Statement(
        f"""
        SELECT
            releases.event_release_date AS event_release_date,
            (
                SELECT COUNT(DISTINCT bfse.web_feature_id)
                FROM browser_feature_support_events bfse
                WHERE bfse.event_release_date = releases.event_release_date
                    AND bfse.target_browser_name = :target_browser
                    AND bfse.support_status = :unsupported
                    {excluded_bfse}
                    {"".join(blocks)}
            ) AS count
        FROM (
            SELECT DISTINCT release_date AS event_release_date
            FROM browser_releases
            WHERE browser_name IN :all_browsers
                AND release_date >= :start_at
                AND release_date < :end_at
                {cursor_filter}
                AND release_date < :now
        ) releases
        ORDER BY releases.event_release_date DESC
        LIMIT :page_size
        """,
        params,
        {"event_release_date": UTCDateTime()},
    )


def list_missing_one_impl_counts(
    client: "Client",
    target_browser: str,
    other_browsers: Sequence[str],
    start_at: datetime,
    end_at: datetime,
    page_size: int,
    page_token: Optional[str] = None,
) -> MissingOneImplCountPage:
    """
    For each release date of any of the browsers in ``[start_at, end_at)``
    and before now, newest first: the number of features the target browser
    does not support while every other browser does. Features whose key is
    excluded are never counted.

    Raises:
        InvalidInputError: If ``other_browsers`` is empty
        InvalidCursorFormatError: If ``page_token`` cannot be decoded
    """
    if not other_browsers:
        raise InvalidInputError("at least one other browser is required")
    cursor = decode_cursor(page_token, MissingOneImplCursor) if page_token is not None else None
    now = client.time_now()
    with wrap_db_errors("listing missing one implementation counts"):
        with client.read_only_transaction() as txn:
            excluded = get_feature_ids_for_excluded_feature_keys(txn)
            stmt = build_missing_one_impl_statement(
                target_browser, other_browsers, start_at, end_at, page_size, now, cursor, excluded
            )
            rows = txn.query(stmt)

    metrics = [MissingOneImplCount(event_release_date=row["event_release_date"], count=int(row["count"])) for row in rows]
    next_token = None
    if metrics and len(metrics) == page_size:
        next_token = encode_cursor(MissingOneImplCursor(release_date=metrics[-1].event_release_date))
    return MissingOneImplCountPage(metrics=metrics, next_page_token=next_token)
