from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Optional, TypeVar

from ..db.models import Mutation
from ..errors import BatchWriteError, DeadlineExceededError, OperationCancelledError

if TYPE_CHECKING:
    from ..client import Client

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How long blocked queue operations wait before re-checking for cancellation.
_POLL_INTERVAL_S = 0.05

_DONE = object()


@dataclass(frozen=True)
class WorkerError:
    worker_id: int
    exc: BaseException


class _BatchRun:
    def __init__(self, cancel_event: Optional[threading.Event], timeout: Optional[float]) -> None:
        self.cancel_event = cancel_event
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.abort = threading.Event()
        self._lock = threading.Lock()
        self.first_error: Optional[WorkerError] = None
        self.finished_workers = 0

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def should_stop(self) -> bool:
        return self.abort.is_set() or self.cancelled() or self.expired()

    def finish(self) -> None:
        with self._lock:
            self.finished_workers += 1

    def fail(self, worker_id: int, exc: BaseException) -> None:
        with self._lock:
            if self.first_error is None:
                self.first_error = WorkerError(worker_id, exc)
        self.abort.set()


def run_concurrent_batch(
    client: "Client",
    entities: Iterable[T],
    table: str,
    to_mutation: Callable[[T], Mutation],
    *,
    batch_size: Optional[int] = None,
    workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> None:
    """
    Write ``entities`` through a fixed pool of worker threads.

    Each worker drains a bounded queue, groups mutations into batches of
    ``batch_size`` and commits every full batch (and its final partial one)
    with ``client.batch_write``. Batches from different workers commit in no
    particular order; within one worker they commit in arrival order.

    The first worker failure stops every worker before its next flush and is
    raised as BatchWriteError. Setting ``cancel_event`` or passing
    ``timeout`` raises OperationCancelledError or DeadlineExceededError.
    Batches committed before the stop stay committed.
    """
    batch_size = batch_size or client.config.batch.batch_size
    workers = workers or client.config.batch.batch_writers
    run = _BatchRun(cancel_event, timeout)
    work: queue.Queue = queue.Queue(maxsize=batch_size * workers)

    def flush(worker_id: int, batch: list[Mutation]) -> bool:
        if run.should_stop():
            return False
        try:
            client.batch_write(batch, table=table)
        except Exception as exc:
            logger.error("worker %d failed to write a batch of %d for %s: %s", worker_id, len(batch), table, exc)
            run.fail(worker_id, exc)
            return False
        logger.debug("worker %d wrote a batch of %d for %s", worker_id, len(batch), table)
        return True

    def worker(worker_id: int) -> None:
        batch: list[Mutation] = []
        while not run.should_stop():
            try:
                item = work.get(timeout=_POLL_INTERVAL_S)
            except queue.Empty:
                continue
            if item is _DONE:
                if batch and not flush(worker_id, batch):
                    return
                run.finish()
                return
            try:
                batch.append(to_mutation(item))
            except Exception as exc:
                logger.error("worker %d failed to build a mutation for %s: %s", worker_id, table, exc)
                run.fail(worker_id, exc)
                return
            if len(batch) >= batch_size:
                if not flush(worker_id, batch):
                    return
                batch = []

    threads = [
        threading.Thread(target=worker, args=(i,), name=f"batch-writer-{table}-{i}", daemon=True)
        for i in range(workers)
    ]
    for t in threads:
        t.start()

    def put(item: object) -> bool:
        while not run.should_stop():
            try:
                work.put(item, timeout=_POLL_INTERVAL_S)
                return True
            except queue.Full:
                continue
        return False

    try:
        for entity in entities:
            if not put(entity):
                break
        else:
            for _ in threads:
                if not put(_DONE):
                    break
    except BaseException:
        # the caller's iterable failed; stop the workers before re-raising
        run.abort.set()
        raise
    finally:
        for t in threads:
            t.join()

    if run.first_error is not None:
        err = run.first_error
        raise BatchWriteError(
            f"batch write to {table} failed in worker {err.worker_id}: {err.exc}"
        ) from err.exc
    if run.finished_workers == len(threads):
        return
    if run.cancelled():
        raise OperationCancelledError(f"batch write to {table} was cancelled")
    if run.expired():
        raise DeadlineExceededError(f"batch write to {table} exceeded its deadline")
