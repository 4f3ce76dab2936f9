from __future__ import annotations

import threading

import pytest

from webstatus_db.config import BatchConfig, ClientConfig
from webstatus_db.db import models
from webstatus_db.entity import run_concurrent_batch
from webstatus_db.errors import (
    BatchWriteError,
    DeadlineExceededError,
    InternalQueryFailureError,
    OperationCancelledError,
)

TABLE = "latest_feature_developer_signals"


def _to_mutation(i: int) -> models.Mutation:
    return models.insert(TABLE, {"web_feature_id": f"f{i:05d}", "votes": i, "link": ""})


def test_writes_every_entity(client, count_rows) -> None:
    run_concurrent_batch(client, range(103), TABLE, _to_mutation, batch_size=7, workers=3)
    assert count_rows(TABLE) == 103


def test_defaults_come_from_config(client_factory, count_rows) -> None:
    client = client_factory(ClientConfig(batch=BatchConfig(batch_size=4, batch_writers=2)))
    run_concurrent_batch(client, range(9), TABLE, _to_mutation)
    assert count_rows(TABLE) == 9


def test_empty_input_is_a_no_op(client, count_rows) -> None:
    run_concurrent_batch(client, [], TABLE, _to_mutation, batch_size=5, workers=2)
    assert count_rows(TABLE) == 0


def test_mutation_builder_failure_is_reported(client) -> None:
    def explode(i: int) -> models.Mutation:
        if i == 5:
            raise ValueError("bad entity")
        return _to_mutation(i)

    with pytest.raises(BatchWriteError) as exc_info:
        run_concurrent_batch(client, range(20), TABLE, explode, batch_size=3, workers=2)
    assert isinstance(exc_info.value.cause, ValueError)


def test_write_failure_is_reported(client) -> None:
    # duplicate primary keys fail the batch that contains them
    with pytest.raises(BatchWriteError) as exc_info:
        run_concurrent_batch(client, [1, 1], TABLE, _to_mutation, batch_size=2, workers=1)
    assert isinstance(exc_info.value.cause, InternalQueryFailureError)


def test_oversized_batch_is_rejected(client_factory) -> None:
    client = client_factory(ClientConfig(max_mutations_per_transaction=2))
    with pytest.raises(BatchWriteError):
        run_concurrent_batch(client, range(3), TABLE, _to_mutation, batch_size=3, workers=1)


def test_cancelled_before_start(client, count_rows) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelledError):
        run_concurrent_batch(client, range(10), TABLE, _to_mutation, batch_size=2, workers=2, cancel_event=cancel)
    assert count_rows(TABLE) == 0


def test_expired_deadline(client) -> None:
    with pytest.raises(DeadlineExceededError):
        run_concurrent_batch(client, range(10), TABLE, _to_mutation, batch_size=2, workers=2, timeout=0)


def test_cancel_after_first_commit_keeps_committed_batches(client, count_rows) -> None:
    cancel = threading.Event()
    write = client.batch_write

    def write_then_cancel(mutations, table=None) -> None:
        write(mutations, table=table)
        cancel.set()

    client.batch_write = write_then_cancel
    with pytest.raises(OperationCancelledError):
        run_concurrent_batch(client, range(500), TABLE, _to_mutation, batch_size=50, workers=8, cancel_event=cancel)

    # at most one in-flight batch per worker lands after the cancel
    assert 0 < count_rows(TABLE) < 500


def _batch_writer_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name.startswith(f"batch-writer-{TABLE}-")]


def test_failing_input_stops_workers(client, count_rows) -> None:
    def entities():
        yield 1
        yield 2
        raise RuntimeError("source went away")

    with pytest.raises(RuntimeError, match="source went away"):
        run_concurrent_batch(client, entities(), TABLE, _to_mutation, batch_size=10, workers=4)

    assert _batch_writer_threads() == []
    assert count_rows(TABLE) == 0
