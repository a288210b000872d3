#!/usr/bin/env python
"""Rebuild the search index behind its alias without downtime.

Usage:
    python -m scripts.run_reindex --source data/ --alias travel_knowledge

Designed to be run by a scheduler, one invocation at a time per alias.
Exits 0 when the alias was repointed, 1 on failure and 130 when cancelled.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from reindex.config import Settings, load_settings
from reindex.logging_config import get_logger, setup_logging
from reindex.observability.metrics import write_metrics
from reindex.pipeline.models import RunStatus, RunSummary
from reindex.pipeline.runner import ReindexRunner

logger = get_logger(__name__)

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.FAILED: 1,
    RunStatus.CANCELLED: 130,
}


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply command-line overrides on top of environment settings."""
    if args.source is not None:
        settings.pipeline.source_path = str(args.source)
    if args.alias is not None:
        settings.qdrant.alias_name = args.alias
    if args.allow_direct_migration:
        settings.qdrant.allow_direct_migration = True
    if args.log_level is not None:
        settings.log_level = args.log_level
    return settings


def print_summary(summary: RunSummary) -> None:
    """Print a human-readable run summary."""
    print("\n" + "=" * 60)
    print("REINDEX SUMMARY")
    print("=" * 60)
    print(f"Alias: {summary.alias}")
    print(f"Status: {summary.status.value} (state: {summary.state.value})")
    if summary.addressing_mode is not None:
        print(f"Addressing: {summary.addressing_mode.value}")
    print(f"New Index: {summary.new_index or '-'}")
    print(f"Previous Index: {summary.previous_index or '-'}")
    print(f"Previous Retired: {summary.previous_retired}")
    print(f"Records Read: {summary.records_read}")
    print(f"Records Embedded: {summary.records_embedded}")
    print(f"Records Written: {summary.records_written}")
    print(f"Records Dropped: {summary.records_dropped}")
    for reason, count in sorted(summary.dropped_by_reason.items()):
        print(f"  {reason}: {count}")
    if summary.error:
        print(f"Error: [{summary.error['code']}] {summary.error['message']}")
    if summary.duration_seconds is not None:
        print(f"Duration: {summary.duration_seconds:.1f}s")
    print("=" * 60)


async def run(
    settings: Settings,
    summary_path: Path | None = None,
    metrics_path: Path | None = None,
) -> RunSummary:
    """Run one reindex and persist its outputs.

    Args:
        settings: Run configuration.
        summary_path: Optional path to save the summary JSON.
        metrics_path: Optional path for Prometheus textfile metrics.

    Returns:
        The run summary.
    """
    runner = ReindexRunner(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.cancel)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable off the main thread and on Windows.
            break

    summary = await runner.run()

    if summary_path:
        summary_path.write_text(summary.model_dump_json(indent=2))
        logger.info(f"Summary saved to {summary_path}")
    if metrics_path:
        write_metrics(metrics_path)

    return summary


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Rebuild the vector index behind its alias without downtime",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--source",
        type=Path,
        default=None,
        help="JSON export file or directory (overrides PIPELINE_SOURCE_PATH)",
    )
    parser.add_argument(
        "--alias",
        default=None,
        help="Logical index name (overrides QDRANT_ALIAS_NAME)",
    )
    parser.add_argument(
        "--allow-direct-migration",
        action="store_true",
        help="Move a directly addressed collection onto an alias (one-way)",
    )
    parser.add_argument(
        "--summary-out",
        type=Path,
        default=None,
        help="Path to save the run summary JSON",
    )
    parser.add_argument(
        "--metrics-out",
        type=Path,
        default=None,
        help="Path for Prometheus textfile metrics",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (overrides LOG_LEVEL)",
    )

    args = parser.parse_args()

    settings = apply_overrides(load_settings(), args)
    setup_logging(settings)

    summary = asyncio.run(
        run(
            settings,
            summary_path=args.summary_out,
            metrics_path=args.metrics_out,
        )
    )

    print_summary(summary)
    if summary.status != RunStatus.SUCCESS:
        print(json.dumps(summary.error or {}, indent=2), file=sys.stderr)

    sys.exit(EXIT_CODES.get(summary.status, 1))


if __name__ == "__main__":
    main()
