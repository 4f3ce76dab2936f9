from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from webstatus_db.db.session import DbSession
from webstatus_db.db.statement import Statement, bind_params_for
from webstatus_db.db.types import UTCDateTime
from webstatus_db.db import models


def test_bind_params_only_cover_values_needing_processing() -> None:
    binds = bind_params_for(
        {
            "ids": ["a", "b"],
            "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "day": date(2024, 1, 1),
            "name": "x",
            "limit": 10,
        }
    )
    assert sorted(b.key for b in binds) == ["at", "day", "ids"]
    assert next(b for b in binds if b.key == "ids").expanding is True


def test_sets_are_sorted_for_execution() -> None:
    stmt = Statement("SELECT 1 WHERE x IN :ids", {"ids": {"c", "a", "b"}})
    assert stmt.execution_params() == {"ids": ["a", "b", "c"]}


def test_utc_datetime_normalizes_offsets() -> None:
    col = UTCDateTime()
    plus_two = timezone(timedelta(hours=2))
    stored = col.process_bind_param(datetime(2024, 6, 1, 14, 0, tzinfo=plus_two), None)
    assert stored == datetime(2024, 6, 1, 12, 0)
    assert stored.tzinfo is None
    assert col.process_result_value(datetime(2024, 6, 1, 12, 0), None) == datetime(
        2024, 6, 1, 12, 0, tzinfo=timezone.utc
    )


def test_expanding_and_typed_binds_against_the_database(engine) -> None:
    with DbSession(engine) as session:
        session.buffer_write(
            [
                models.insert(
                    "browser_releases",
                    {"browser_name": name, "browser_version": "1", "release_date": datetime(2024, 1, day, tzinfo=timezone.utc)},
                )
                for day, name in enumerate(["chrome", "edge", "firefox", "safari"], start=1)
            ]
        )

    stmt = Statement(
        "SELECT browser_name, release_date FROM browser_releases "
        "WHERE browser_name IN :names AND release_date >= :since ORDER BY browser_name",
        {"names": ["chrome", "firefox", "safari"], "since": datetime(2024, 1, 2, tzinfo=timezone.utc)},
        {"release_date": UTCDateTime()},
    )
    with DbSession(engine, read_only=True) as session:
        rows = session.query(stmt)
    assert [row["browser_name"] for row in rows] == ["firefox", "safari"]
    assert rows[0]["release_date"] == datetime(2024, 1, 3, tzinfo=timezone.utc)

    empty = Statement("SELECT browser_name FROM browser_releases WHERE browser_name IN :names", {"names": []})
    with DbSession(engine, read_only=True) as session:
        assert session.query(empty) == []
