from __future__ import annotations

from datetime import datetime, timezone

import pytest

from webstatus_db.browser_releases import BrowserRelease, BrowserReleaseMapper
from webstatus_db.config import BatchConfig, ClientConfig
from webstatus_db.db import models
from webstatus_db.entity import EntitySynchronizer, SyncResult, run_concurrent_batch

pytestmark = pytest.mark.concurrency

ENTITY_COUNT = 50_000


class ReleaseSyncMapper(BrowserReleaseMapper):
    def get_key_from_internal(self, stored: BrowserRelease) -> tuple[str, str]:
        return (stored.browser_name, stored.browser_version)

    def merge_and_check_changed(self, external: BrowserRelease, existing: BrowserRelease):
        return existing, False


def test_every_entity_lands_exactly_once(client_factory, fetch_rows) -> None:
    client = client_factory(ClientConfig(batch=BatchConfig(batch_size=1_000, batch_writers=8)))

    def to_mutation(i: int) -> models.Mutation:
        return models.insert("latest_feature_developer_signals", {"web_feature_id": f"f{i:06d}", "votes": i, "link": ""})

    run_concurrent_batch(client, range(ENTITY_COUNT), "latest_feature_developer_signals", to_mutation)

    rows = fetch_rows("SELECT COUNT(*) AS n, COUNT(DISTINCT web_feature_id) AS d, SUM(votes) AS s FROM latest_feature_developer_signals")
    assert rows[0]["n"] == ENTITY_COUNT
    assert rows[0]["d"] == ENTITY_COUNT
    assert rows[0]["s"] == sum(range(ENTITY_COUNT))


def test_large_sync_goes_through_batches(client_factory, count_rows) -> None:
    client = client_factory(ClientConfig(batch=BatchConfig(batch_size=1_000, batch_writers=8, batch_write_threshold=5_000)))
    release_date = datetime(2024, 1, 1, tzinfo=timezone.utc)
    desired = [BrowserRelease("chrome", str(v), release_date) for v in range(20_000)]

    assert EntitySynchronizer(client, ReleaseSyncMapper()).sync(desired) == SyncResult(inserts=20_000)
    assert count_rows("browser_releases") == 20_000
