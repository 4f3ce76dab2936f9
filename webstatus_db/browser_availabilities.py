from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .db import models
from .db.statement import Statement
from .entity import AllEntityReader, BaseMapper, EntityMutator
from .web_features import get_id_from_feature_key

if TYPE_CHECKING:
    from .client import Client


BROWSER_FEATURE_AVAILABILITIES_TABLE = "browser_feature_availabilities"


@dataclass
class BrowserFeatureAvailability:
    browser_name: str
    browser_version: str


@dataclass
class StoredBrowserFeatureAvailability:
    web_feature_id: str
    browser_name: str
    browser_version: str


class BrowserFeatureAvailabilityMapper(
    BaseMapper[StoredBrowserFeatureAvailability, StoredBrowserFeatureAvailability, tuple[str, str]]
):
    table_name = BROWSER_FEATURE_AVAILABILITIES_TABLE
    stored_type = StoredBrowserFeatureAvailability
    primary_key = ("web_feature_id", "browser_name")

    def select_all(self) -> Statement:
        return Statement(
            "SELECT web_feature_id, browser_name, browser_version FROM browser_feature_availabilities "
            "ORDER BY web_feature_id, browser_name"
        )

    def select_one(self, key: tuple[str, str]) -> Statement:
        web_feature_id, browser_name = key
        return Statement(
            """
            SELECT web_feature_id, browser_name, browser_version
            FROM browser_feature_availabilities
            WHERE web_feature_id = :web_feature_id AND browser_name = :browser_name
            LIMIT 1
            """,
            {"web_feature_id": web_feature_id, "browser_name": browser_name},
        )


def insert_browser_feature_availability(
    client: "Client", feature_key: str, availability: BrowserFeatureAvailability
) -> None:
    """
    Record the first browser version that shipped a feature.

    An existing row for the feature and browser is kept as is.

    Raises:
        QueryReturnedNoResultsError: If no feature has ``feature_key``
    """
    web_feature_id = get_id_from_feature_key(client, feature_key)
    mapper = BrowserFeatureAvailabilityMapper()
    stored = StoredBrowserFeatureAvailability(
        web_feature_id=web_feature_id,
        browser_name=availability.browser_name,
        browser_version=availability.browser_version,
    )

    def inspect(existing: Optional[StoredBrowserFeatureAvailability]) -> Optional[models.Mutation]:
        if existing is not None:
            return None
        return models.insert_or_update(mapper.table(), mapper.to_row(stored), mapper.primary_key)

    EntityMutator(client, mapper).read_inspect_mutate((web_feature_id, availability.browser_name), inspect)


def fetch_all_browser_availabilities(client: "Client") -> list[StoredBrowserFeatureAvailability]:
    return AllEntityReader(client, BrowserFeatureAvailabilityMapper()).read_all()
