from __future__ import annotations

from prometheus_client import Counter, Histogram

DB_MUTATIONS_TOTAL = Counter(
    "webstatus_db_mutations_total",
    "Mutations applied to the database",
    ["table", "op_type", "status"],
)

DB_WRITE_LATENCY_SECONDS = Histogram(
    "webstatus_db_write_latency_seconds",
    "Latency of committing a transaction or a flushed batch",
    ["table"],
)

SYNC_RUNS_TOTAL = Counter(
    "webstatus_db_sync_runs_total",
    "Table synchronization runs",
    ["table", "status"],
)
