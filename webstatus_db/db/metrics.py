from __future__ import annotations

from collections import Counter
from typing import Iterable

from ..metrics.registry import DB_MUTATIONS_TOTAL, DB_WRITE_LATENCY_SECONDS, SYNC_RUNS_TOTAL
from .models import Mutation


def count_mutations(mutations: Iterable[Mutation]) -> Counter:
    counts: Counter = Counter()
    for m in mutations:
        counts[(m.table, m.op.value)] += 1
    return counts


def observe_write(counts: Counter, status: str, latency_s: float, table: str | None = None) -> None:
    """
    Record one committed (or failed) write.

    ``counts`` maps (table, op_type) to the number of mutations written.
    Latency is recorded under ``table`` when given, else under every table
    present in ``counts``.
    """
    for (tbl, op_type), n in counts.items():
        DB_MUTATIONS_TOTAL.labels(table=tbl, op_type=op_type, status=status).inc(n)
    tables = {table} if table is not None else {tbl for tbl, _ in counts}
    for tbl in tables:
        DB_WRITE_LATENCY_SECONDS.labels(table=tbl).observe(latency_s)


def observe_sync(table: str, status: str) -> None:
    SYNC_RUNS_TOTAL.labels(table=table, status=status).inc()
