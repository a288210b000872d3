"""Observability module for run metrics."""

from reindex.observability.metrics import (
    get_metrics,
    track_alias_swap,
    track_embedding_request,
    track_run,
    track_write_batch,
    write_metrics,
)

__all__ = [
    "get_metrics",
    "track_alias_swap",
    "track_embedding_request",
    "track_run",
    "track_write_batch",
    "write_metrics",
]
