from __future__ import annotations

import pytest

from webstatus_db.config import BatchConfig, ClientConfig, SearchConfig


def test_threshold_defaults_to_batch_size() -> None:
    cfg = BatchConfig(batch_size=100)
    assert cfg.batch_write_threshold == 100


@pytest.mark.parametrize(
    "kwargs",
    [
        {"batch_size": 0},
        {"batch_writers": 0},
        {"batch_write_threshold": 0},
    ],
)
def test_batch_config_rejects_non_positive_values(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        BatchConfig(**kwargs)


def test_search_limits_must_not_be_negative() -> None:
    with pytest.raises(ValueError):
        SearchConfig(max_bookmarks_per_user=-1)


def test_mutation_ceiling_can_be_disabled() -> None:
    assert ClientConfig(max_mutations_per_transaction=None).max_mutations_per_transaction is None
    with pytest.raises(ValueError):
        ClientConfig(max_mutations_per_transaction=0)


def test_from_env_reads_prefixed_variables() -> None:
    cfg = ClientConfig.from_env(
        {
            "WEBSTATUS_DB_BATCH_SIZE": "250",
            "WEBSTATUS_DB_BATCH_WRITERS": "3",
            "WEBSTATUS_DB_MAX_BOOKMARKS_PER_USER": "5",
            "WEBSTATUS_DB_MAX_MUTATIONS_PER_TRANSACTION": "1000",
        }
    )
    assert cfg.batch.batch_size == 250
    assert cfg.batch.batch_writers == 3
    # threshold follows the batch size when unset
    assert cfg.batch.batch_write_threshold == 250
    assert cfg.search.max_bookmarks_per_user == 5
    assert cfg.search.max_owned_searches_per_user == SearchConfig().max_owned_searches_per_user
    assert cfg.max_mutations_per_transaction == 1000


def test_from_env_keeps_defaults_for_empty_values() -> None:
    cfg = ClientConfig.from_env({"WEBSTATUS_DB_BATCH_SIZE": ""})
    assert cfg.batch.batch_size == BatchConfig().batch_size
    assert cfg.max_mutations_per_transaction == ClientConfig().max_mutations_per_transaction


def test_from_env_rejects_non_integers() -> None:
    with pytest.raises(ValueError, match="WEBSTATUS_DB_BATCH_WRITERS"):
        ClientConfig.from_env({"WEBSTATUS_DB_BATCH_WRITERS": "eight"})
