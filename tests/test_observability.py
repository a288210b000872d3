"""Tests for observability module."""

from pathlib import Path

from reindex.observability.metrics import (
    REINDEX_LAST_SUCCESS,
    get_metrics,
    track_alias_swap,
    track_embedding_request,
    track_run,
    track_write_batch,
    write_metrics,
)


class TestMetricsFunctions:
    """Tests for metrics tracking functions."""

    def test_get_metrics_returns_bytes(self) -> None:
        """get_metrics returns bytes."""
        assert isinstance(get_metrics(), bytes)

    def test_track_embedding_request(self) -> None:
        """track_embedding_request records request."""
        track_embedding_request(
            model="text-embedding-3-small",
            duration=0.1,
            batch_size=10,
            success=True,
        )

        metrics = get_metrics().decode()
        assert "embedding_request_duration_seconds" in metrics
        assert "embedding_batch_size" in metrics

    def test_track_write_batch(self) -> None:
        """Batch writes are counted by outcome."""
        track_write_batch(0.2)
        track_write_batch(0.0, success=False)

        metrics = get_metrics().decode()
        assert 'index_write_batches_total{status="success"}' in metrics
        assert 'index_write_batches_total{status="error"}' in metrics

    def test_track_alias_swap(self) -> None:
        """Alias swaps are counted per alias."""
        track_alias_swap("metrics_test_alias")

        metrics = get_metrics().decode()
        assert 'alias_swaps_total{alias="metrics_test_alias",status="success"}' in metrics

    def test_track_run_success(self) -> None:
        """A successful run records outcome, records and the success time."""
        track_run(
            alias="metrics_run_alias",
            status="success",
            duration=12.5,
            records={"read": 120, "embedded": 119, "written": 119},
            dropped={("embed", "embedding_permanent"): 1},
            finished_at=1_700_000_000.0,
        )

        metrics = get_metrics().decode()
        assert 'reindex_runs_total{alias="metrics_run_alias",status="success"}' in metrics
        assert 'outcome="written"' in metrics
        assert 'reason="embedding_permanent"' in metrics
        assert REINDEX_LAST_SUCCESS.labels(alias="metrics_run_alias")._value.get() == 1_700_000_000.0

    def test_track_run_failure_keeps_last_success(self) -> None:
        """A failed run does not move the last-success gauge."""
        track_run(
            alias="metrics_failed_alias",
            status="failed",
            duration=1.0,
            records={"read": 0, "embedded": 0, "written": 0},
            dropped={},
            finished_at=1_800_000_000.0,
        )

        assert REINDEX_LAST_SUCCESS.labels(alias="metrics_failed_alias")._value.get() == 0.0


class TestWriteMetrics:
    """Tests for textfile export."""

    def test_write_metrics(self, tmp_path: Path) -> None:
        """Metrics are written in the textfile collector format."""
        path = tmp_path / "reindex.prom"
        write_metrics(path)
        assert "# HELP" in path.read_text()
