"""
Prometheus metrics for synchronization runs.

Defined at import time through get_or_create_metric so the module can be
reloaded without duplicate-registration errors.
"""

from prometheus_client import Counter, Gauge, Histogram

from utils.metrics import get_or_create_metric

BATCHES_RESOLVED = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_batches_total",
        "Batches resolved, by outcome",
        ["outcome"],  # committed, failed
    ),
    "bulk_sync_batches",
)

APPLY_ATTEMPTS = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_apply_attempts_total",
        "Batch apply attempts, by result",
        ["result"],  # success, transient, permanent
    ),
    "bulk_sync_apply_attempts",
)

BATCH_RETRIES = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_batch_retries_total",
        "Batches re-dispatched after a transient failure",
    ),
    "bulk_sync_batch_retries",
)

ROWS_COMMITTED = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_rows_committed_total",
        "Delta rows whose batch committed",
    ),
    "bulk_sync_rows_committed",
)

APPLY_DURATION = get_or_create_metric(
    lambda: Histogram(
        "bulk_sync_apply_seconds",
        "Time to apply one batch (single attempt, including connection acquisition)",
        buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300],
    ),
    "bulk_sync_apply_seconds",
)

CHECKPOINT_WRITE_DURATION = get_or_create_metric(
    lambda: Histogram(
        "bulk_sync_checkpoint_write_seconds",
        "Time to durably persist a checkpoint",
        ["store"],
        buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5],
    ),
    "bulk_sync_checkpoint_write_seconds",
)

CHECKPOINT_WRITE_FAILURES = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_checkpoint_write_failures_total",
        "Checkpoint writes that failed",
        ["store"],
    ),
    "bulk_sync_checkpoint_write_failures",
)

IN_FLIGHT_BATCHES = get_or_create_metric(
    lambda: Gauge(
        "bulk_sync_in_flight_batches",
        "Batches dispatched and not yet resolved (including retry backoff)",
        ["run_id"],
    ),
    "bulk_sync_in_flight_batches",
)

WATERMARK = get_or_create_metric(
    lambda: Gauge(
        "bulk_sync_watermark_sequence",
        "Highest sequence below which every batch committed",
        ["run_id"],
    ),
    "bulk_sync_watermark_sequence",
)

RUNS = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_runs_total",
        "Finished synchronization runs, by final state",
        ["state"],
    ),
    "bulk_sync_runs",
)
