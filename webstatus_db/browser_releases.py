from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING

from .db.statement import Statement
from .db.types import UTCDateTime
from .entity import AllEntityReader, BaseMapper, EntityWriter

if TYPE_CHECKING:
    from .client import Client

BROWSER_RELEASES_TABLE = "browser_releases"


@dataclass
class BrowserRelease:
    browser_name: str
    browser_version: str
    release_date: datetime


_SELECT = "SELECT browser_name, browser_version, release_date FROM browser_releases"
_RESULT_TYPES = {"release_date": UTCDateTime()}


class BrowserReleaseMapper(BaseMapper[BrowserRelease, BrowserRelease, tuple[str, str]]):
    table_name = BROWSER_RELEASES_TABLE
    stored_type = BrowserRelease
    primary_key = ("browser_name", "browser_version")

    def select_all(self) -> Statement:
        return Statement(f"{_SELECT} ORDER BY browser_name, release_date", {}, _RESULT_TYPES)

    def select_one(self, key: tuple[str, str]) -> Statement:
        browser_name, browser_version = key
        return Statement(
            f"{_SELECT} WHERE browser_name = :browser_name AND browser_version = :browser_version LIMIT 1",
            {"browser_name": browser_name, "browser_version": browser_version},
            _RESULT_TYPES,
        )

    def get_key_from_external(self, external: BrowserRelease) -> tuple[str, str]:
        return (external.browser_name, external.browser_version)

    def merge(self, external: BrowserRelease, existing: BrowserRelease) -> BrowserRelease:
        return replace(existing, release_date=external.release_date)


def upsert_browser_release(client: "Client", release: BrowserRelease) -> BrowserRelease:
    """Insert a release or move the release date of an existing one."""
    return EntityWriter(client, BrowserReleaseMapper()).upsert(release)


def fetch_all_browser_releases(client: "Client") -> list[BrowserRelease]:
    return AllEntityReader(client, BrowserReleaseMapper()).read_all()
