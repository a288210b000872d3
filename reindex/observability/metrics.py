"""Prometheus metrics for reindex runs.

Provides metrics instrumentation for:
- Run outcomes and duration
- Record outcomes (embedded, written, dropped by reason)
- Embedding request latency
- Index write batches and alias swaps
"""

from pathlib import Path

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    write_to_textfile,
)

from reindex.logging_config import get_logger

logger = get_logger(__name__)

# Run Metrics
REINDEX_RUN_TOTAL = Counter(
    "reindex_runs_total",
    "Total reindex runs",
    ["alias", "status"],
)

REINDEX_RUN_DURATION = Histogram(
    "reindex_run_duration_seconds",
    "Reindex run duration in seconds",
    ["alias", "status"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
)

REINDEX_LAST_SUCCESS = Gauge(
    "reindex_last_success_timestamp_seconds",
    "Unix time of the last successful cutover",
    ["alias"],
)

# Record Metrics
REINDEX_RECORDS_TOTAL = Counter(
    "reindex_records_total",
    "Records processed by outcome",
    ["alias", "outcome"],
)

REINDEX_RECORDS_DROPPED = Counter(
    "reindex_records_dropped_total",
    "Records dropped by stage and reason",
    ["alias", "stage", "reason"],
)

# Embedding Metrics
EMBEDDING_REQUEST_DURATION = Histogram(
    "embedding_request_duration_seconds",
    "Embedding request duration in seconds",
    ["model", "status"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

EMBEDDING_REQUEST_TOTAL = Counter(
    "embedding_requests_total",
    "Total embedding requests",
    ["model", "status"],
)

EMBEDDING_BATCH_SIZE = Histogram(
    "embedding_batch_size",
    "Embedding batch size",
    ["model"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
)

# Index Metrics
INDEX_WRITE_BATCHES = Counter(
    "index_write_batches_total",
    "Point batches written to shadow indexes",
    ["status"],
)

INDEX_WRITE_DURATION = Histogram(
    "index_write_batch_duration_seconds",
    "Point batch write duration (until acknowledged)",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

ALIAS_SWAP_TOTAL = Counter(
    "alias_swaps_total",
    "Alias swap attempts",
    ["alias", "status"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def write_metrics(path: str | Path) -> None:
    """Write metrics for the node-exporter textfile collector.

    Args:
        path: Target ``.prom`` file. Written atomically.
    """
    write_to_textfile(str(path), REGISTRY)
    logger.info(f"Metrics written to {path}")


def track_embedding_request(
    model: str,
    duration: float,
    batch_size: int,
    success: bool = True,
) -> None:
    """Track embedding request metrics.

    Args:
        model: Embedding model name.
        duration: Request duration in seconds.
        batch_size: Number of texts in the batch.
        success: Whether the request succeeded.
    """
    status = "success" if success else "error"

    EMBEDDING_REQUEST_DURATION.labels(model=model, status=status).observe(duration)
    EMBEDDING_REQUEST_TOTAL.labels(model=model, status=status).inc()
    EMBEDDING_BATCH_SIZE.labels(model=model).observe(batch_size)


def track_write_batch(duration: float, success: bool = True) -> None:
    """Track one shadow-index batch write."""
    INDEX_WRITE_BATCHES.labels(status="success" if success else "error").inc()
    if success:
        INDEX_WRITE_DURATION.observe(duration)


def track_alias_swap(alias: str, success: bool = True) -> None:
    """Track an alias swap attempt."""
    ALIAS_SWAP_TOTAL.labels(alias=alias, status="success" if success else "error").inc()


def track_run(
    alias: str,
    status: str,
    duration: float,
    records: dict[str, int],
    dropped: dict[tuple[str, str], int],
    finished_at: float | None = None,
) -> None:
    """Track the outcome of a reindex run.

    Args:
        alias: Logical index name.
        status: Run status (success, failed, cancelled).
        duration: Run duration in seconds.
        records: Record counts keyed by outcome (read, embedded, written).
        dropped: Dropped record counts keyed by (stage, reason).
        finished_at: Unix time the run finished; recorded on success.
    """
    REINDEX_RUN_TOTAL.labels(alias=alias, status=status).inc()
    REINDEX_RUN_DURATION.labels(alias=alias, status=status).observe(duration)

    for outcome, count in records.items():
        if count:
            REINDEX_RECORDS_TOTAL.labels(alias=alias, outcome=outcome).inc(count)
    for (stage, reason), count in dropped.items():
        REINDEX_RECORDS_DROPPED.labels(alias=alias, stage=stage, reason=reason).inc(count)

    if status == "success" and finished_at is not None:
        REINDEX_LAST_SUCCESS.labels(alias=alias).set(finished_at)
