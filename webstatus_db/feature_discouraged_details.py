from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Optional

from .db import models
from .db.helpers import wrap_db_errors
from .db.statement import Statement
from .entity import BaseMapper, EntityWriter
from .web_features import get_id_from_feature_key

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

FEATURE_DISCOURAGED_DETAILS_TABLE = "feature_discouraged_details"


@dataclass
class FeatureDiscouragedDetails:
    according_to: list[str] = field(default_factory=list)
    alternatives: list[str] = field(default_factory=list)


@dataclass
class StoredFeatureDiscouragedDetails:
    web_feature_id: str
    according_to: list[str] = field(default_factory=list)
    alternatives: list[str] = field(default_factory=list)


class FeatureDiscouragedDetailsMapper(
    BaseMapper[StoredFeatureDiscouragedDetails, StoredFeatureDiscouragedDetails, str]
):
    table_name = FEATURE_DISCOURAGED_DETAILS_TABLE
    stored_type = StoredFeatureDiscouragedDetails
    primary_key = ("web_feature_id",)

    # both lists are stored as JSON arrays in text columns
    def to_row(self, stored: StoredFeatureDiscouragedDetails) -> dict[str, Any]:
        return {
            "web_feature_id": stored.web_feature_id,
            "according_to": json.dumps(list(stored.according_to)),
            "alternatives": json.dumps(list(stored.alternatives)),
        }

    def from_row(self, row) -> StoredFeatureDiscouragedDetails:
        return StoredFeatureDiscouragedDetails(
            web_feature_id=row["web_feature_id"],
            according_to=json.loads(row["according_to"]) if row["according_to"] else [],
            alternatives=json.loads(row["alternatives"]) if row["alternatives"] else [],
        )

    def select_one(self, key: str) -> Statement:
        return Statement(
            "SELECT web_feature_id, according_to, alternatives FROM feature_discouraged_details"
            " WHERE web_feature_id = :web_feature_id LIMIT 1",
            {"web_feature_id": key},
        )

    def get_key_from_external(self, external: StoredFeatureDiscouragedDetails) -> str:
        return external.web_feature_id

    def merge(
        self, external: StoredFeatureDiscouragedDetails, existing: StoredFeatureDiscouragedDetails
    ) -> StoredFeatureDiscouragedDetails:
        return replace(existing, according_to=list(external.according_to), alternatives=list(external.alternatives))


def upsert_feature_discouraged_details(
    client: "Client", feature_key: str, details: FeatureDiscouragedDetails
) -> None:
    """
    Raises:
        QueryReturnedNoResultsError: If no feature has ``feature_key``
    """
    feature_id = get_id_from_feature_key(client, feature_key)
    EntityWriter(client, FeatureDiscouragedDetailsMapper()).upsert(
        StoredFeatureDiscouragedDetails(
            web_feature_id=feature_id,
            according_to=list(details.according_to),
            alternatives=list(details.alternatives),
        )
    )


def get_feature_discouraged_details(client: "Client", feature_key: str) -> Optional[FeatureDiscouragedDetails]:
    """Details for ``feature_key``, or None when the feature is not discouraged."""
    mapper = FeatureDiscouragedDetailsMapper()
    with wrap_db_errors("reading feature discouraged details"):
        with client.read_only_transaction() as txn:
            row = txn.query_one(
                Statement(
                    """
                    SELECT fdd.web_feature_id, fdd.according_to, fdd.alternatives
                    FROM feature_discouraged_details fdd
                    JOIN web_features wf ON wf.id = fdd.web_feature_id
                    WHERE wf.feature_key = :feature_key
                    LIMIT 1
                    """,
                    {"feature_key": feature_key},
                )
            )
    if row is None:
        return None
    stored = mapper.from_row(row)
    return FeatureDiscouragedDetails(according_to=stored.according_to, alternatives=stored.alternatives)


def clear_feature_discouraged_details(client: "Client") -> None:
    with wrap_db_errors("clearing feature discouraged details"):
        with client.read_write_transaction() as txn:
            ids = txn.query(Statement("SELECT web_feature_id FROM feature_discouraged_details"))
            txn.buffer_write(
                [
                    models.delete(FEATURE_DISCOURAGED_DETAILS_TABLE, {"web_feature_id": row["web_feature_id"]})
                    for row in ids
                ]
            )
    logger.info("cleared %d feature discouraged details", len(ids))
