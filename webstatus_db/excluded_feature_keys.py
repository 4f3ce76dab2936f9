from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .db import models
from .db.helpers import wrap_db_errors
from .db.session import DbSession
from .db.statement import Statement

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

EXCLUDED_FEATURE_KEYS_TABLE = "excluded_feature_keys"


def insert_excluded_feature_key(client: "Client", feature_key: str) -> None:
    """Exclude ``feature_key`` from the aggregate statistics. Inserting a key twice is a no-op."""
    client.apply(
        [models.insert_or_update(EXCLUDED_FEATURE_KEYS_TABLE, {"feature_key": feature_key}, ("feature_key",))]
    )


def clear_excluded_feature_keys(client: "Client") -> None:
    with wrap_db_errors("clearing excluded feature keys"):
        with client.read_write_transaction() as txn:
            keys = txn.query(Statement("SELECT feature_key FROM excluded_feature_keys"))
            txn.buffer_write(
                [models.delete(EXCLUDED_FEATURE_KEYS_TABLE, {"feature_key": row["feature_key"]}) for row in keys]
            )
    logger.info("cleared %d excluded feature keys", len(keys))


def get_excluded_feature_keys(client: "Client") -> list[str]:
    with wrap_db_errors("reading excluded feature keys"):
        with client.read_only_transaction() as txn:
            rows = txn.query(Statement("SELECT feature_key FROM excluded_feature_keys ORDER BY feature_key"))
    return [row["feature_key"] for row in rows]


def get_feature_ids_for_excluded_feature_keys(txn: DbSession) -> list[str]:
    """Ids of the features whose key is excluded. Keys naming no feature are skipped."""
    rows = txn.query(
        Statement(
            """
            SELECT wf.id
            FROM excluded_feature_keys efk
            JOIN web_features wf ON wf.feature_key = efk.feature_key
            ORDER BY wf.id
            """
        )
    )
    return [row["id"] for row in rows]


def get_ignored_feature_ids_for_stats(txn: DbSession) -> list[str]:
    """Ids left out of the feature counts: excluded keys plus discouraged features."""
    rows = txn.query(
        Statement(
            """
            SELECT wf.id
            FROM excluded_feature_keys efk
            JOIN web_features wf ON wf.feature_key = efk.feature_key
            UNION
            SELECT web_feature_id AS id FROM feature_discouraged_details
            """
        )
    )
    return sorted({row["id"] for row in rows})
