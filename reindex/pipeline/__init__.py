"""Zero-downtime reindex pipeline module."""

from reindex.pipeline.aliases import AliasRouter
from reindex.pipeline.builder import ShadowIndexBuilder
from reindex.pipeline.cutover import CutoverController
from reindex.pipeline.models import (
    Addressing,
    AddressingMode,
    RunState,
    RunStatus,
    RunSummary,
)
from reindex.pipeline.runner import ReindexRunner, run_reindex

__all__ = [
    "Addressing",
    "AddressingMode",
    "AliasRouter",
    "CutoverController",
    "ReindexRunner",
    "RunState",
    "RunStatus",
    "RunSummary",
    "ShadowIndexBuilder",
    "run_reindex",
]
