"""Cutover state machine and run summary models."""

from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field

from reindex.records.normalizer import DroppedRecord


class RunState(str, Enum):
    """States of one cutover run."""

    IDLE = "idle"
    BUILDING = "building"
    POPULATING = "populating"
    VALIDATING = "validating"
    SWAPPING = "swapping"
    RETIRING = "retiring"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Allowed transitions. FAILED/CANCELLED are only reachable while the alias
# still points at the previous index.
TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.BUILDING, RunState.FAILED, RunState.CANCELLED}),
    RunState.BUILDING: frozenset({RunState.POPULATING, RunState.FAILED, RunState.CANCELLED}),
    RunState.POPULATING: frozenset({RunState.VALIDATING, RunState.FAILED, RunState.CANCELLED}),
    RunState.VALIDATING: frozenset({RunState.SWAPPING, RunState.FAILED, RunState.CANCELLED}),
    RunState.SWAPPING: frozenset({RunState.RETIRING, RunState.FAILED}),
    RunState.RETIRING: frozenset({RunState.DONE}),
    RunState.DONE: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELLED: frozenset(),
}


class RunStatus(str, Enum):
    """Overall outcome reported to the operator."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AddressingMode(str, Enum):
    """How the logical index name is currently served."""

    ALIASED = "aliased"
    DIRECT = "direct"
    UNBOUND = "unbound"


class Addressing(BaseModel):
    """Result of probing the logical index name.

    Attributes:
        mode: Aliased, direct collection, or nothing yet.
        name: The logical name that was probed.
        physical_name: Collection currently serving the name, if any.
    """

    mode: AddressingMode
    name: str
    physical_name: str | None = None


class RunSummary(BaseModel):
    """Structured outcome of one reindex run."""

    alias: str = Field(description="Logical index name")
    status: RunStatus = Field(default=RunStatus.RUNNING)
    state: RunState = Field(default=RunState.IDLE, description="Last state reached")
    addressing_mode: AddressingMode | None = Field(
        default=None,
        description="Addressing mode found before the run",
    )
    build_id: int | None = Field(default=None, description="Build id of the shadow index")
    new_index: str | None = Field(default=None, description="Shadow index built by this run")
    previous_index: str | None = Field(
        default=None,
        description="Index the alias pointed at before the swap",
    )
    previous_retired: bool = Field(default=False)
    shadow_discarded: bool = Field(default=False)
    records_read: int = Field(default=0)
    records_normalized: int = Field(default=0)
    records_embedded: int = Field(default=0)
    records_written: int = Field(default=0)
    dropped: list[DroppedRecord] = Field(default_factory=list)
    error: dict[str, Any] | None = Field(default=None)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = Field(default=None)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def records_dropped(self) -> int:
        """Number of records left out of the index."""
        return len(self.dropped)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def dropped_by_reason(self) -> dict[str, int]:
        """Dropped record counts per reason."""
        return dict(Counter(d.reason for d in self.dropped))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration of the run."""
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> bool:
        """True when the run reached DONE."""
        return self.status == RunStatus.SUCCESS
