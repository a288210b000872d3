"""Cutover controller: build, validate, swap and retire.

One run moves through IDLE -> BUILDING -> POPULATING -> VALIDATING ->
SWAPPING -> RETIRING -> DONE. Until the swap the live alias is never
touched, so any failure or cancellation before it only has to discard the
shadow index.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

from reindex.composer import ComposedRecord, TextComposer
from reindex.embeddings.service import EmbeddingService
from reindex.exceptions import (
    CompositionError,
    ConfigurationError,
    ErrorCode,
    ReindexError,
    RetireError,
    RunCancelledError,
    ValidationError,
)
from reindex.logging_config import get_logger
from reindex.observability.metrics import track_run
from reindex.pipeline.aliases import AliasRouter
from reindex.pipeline.builder import ShadowIndexBuilder
from reindex.pipeline.models import (
    TRANSITIONS,
    AddressingMode,
    RunState,
    RunStatus,
    RunSummary,
)
from reindex.records.identity import IdentityGenerator
from reindex.records.models import RawRecord, Record
from reindex.records.normalizer import DroppedRecord, RecordNormalizer
from reindex.records.source import RecordSource
from reindex.vectorstore.models import DistanceMetric, IndexPoint
from reindex.vectorstore.service import VectorStore

logger = get_logger(__name__)


class CutoverController:
    """Runs one zero-downtime rebuild of the index behind an alias.

    Concurrent runs against the same alias are not coordinated here; the
    caller must serialize them.
    """

    def __init__(
        self,
        *,
        alias_name: str,
        source: RecordSource,
        store: VectorStore,
        embedder: EmbeddingService,
        builder: ShadowIndexBuilder,
        router: AliasRouter,
        normalizer: RecordNormalizer | None = None,
        composer: TextComposer | None = None,
        collection_prefix: str | None = None,
        allow_direct_migration: bool = False,
        metric: DistanceMetric = DistanceMetric.COSINE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the controller.

        Args:
            alias_name: Logical index name read by the query server.
            source: Upstream record source.
            store: Index backend, used directly for validation.
            embedder: Embedding client.
            builder: Shadow index builder.
            router: Alias router.
            normalizer: Record normalizer.
            composer: Text composer.
            collection_prefix: Prefix for new physical index names.
            allow_direct_migration: Permit moving a directly addressed
                collection onto an alias.
            metric: Similarity metric for new indexes.
            clock: Time source in epoch seconds (build ids derive from it).
        """
        self.alias_name = alias_name
        self._source = source
        self._store = store
        self._embedder = embedder
        self._builder = builder
        self._router = router
        self._normalizer = normalizer or RecordNormalizer()
        self._composer = composer or TextComposer()
        self._prefix = collection_prefix or alias_name
        self._allow_direct_migration = allow_direct_migration
        self._metric = metric
        self._clock = clock
        self._cancel = asyncio.Event()
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        """Current state of the run."""
        return self._state

    def cancel(self) -> None:
        """Request cancellation.

        Honoured at the next state boundary before the swap; a batch write
        in progress is allowed to finish. After the swap the run completes.
        """
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        """True once cancel() has been called."""
        return self._cancel.is_set()

    async def run(self) -> RunSummary:
        """Execute the run.

        Never raises for run-level failures: the outcome, including the
        error, is reported in the returned summary.
        """
        summary = RunSummary(alias=self.alias_name)
        shadow: str | None = None
        swapped = False

        try:
            self._checkpoint()
            addressing = await self._router.probe(self.alias_name)
            summary.addressing_mode = addressing.mode
            summary.previous_index = addressing.physical_name
            if addressing.mode == AddressingMode.DIRECT and not self._allow_direct_migration:
                raise ConfigurationError(
                    f"{self.alias_name} is a physical collection, not an alias; "
                    "enable direct migration to move it onto an alias",
                    details={"alias": self.alias_name},
                )

            raw_records = await self._source.fetch()
            summary.records_read = len(raw_records)

            self._checkpoint()
            self._transition(RunState.BUILDING, summary)
            dimensions = self._embedder.dimensions
            build_id, shadow = await self._allocate_name()
            summary.build_id = build_id
            await self._builder.create_index(shadow, dimensions, self._metric)
            summary.new_index = shadow

            self._checkpoint()
            self._transition(RunState.POPULATING, summary)
            points = await self._build_points(raw_records, IdentityGenerator(build_id), summary)
            summary.records_written = await self._builder.write_points(shadow, points)

            self._checkpoint()
            self._transition(RunState.VALIDATING, summary)
            await self._validate(shadow, summary.records_written, points)

            self._checkpoint()
            self._transition(RunState.SWAPPING, summary)
            if addressing.mode == AddressingMode.DIRECT:
                previous = await self._router.migrate_direct(self.alias_name, shadow)
            else:
                previous = await self._router.swap(self.alias_name, shadow)
            swapped = True
            summary.previous_index = previous

            self._transition(RunState.RETIRING, summary)
            if addressing.mode == AddressingMode.DIRECT:
                # The direct collection was deleted as part of the migration.
                summary.previous_retired = previous is not None
            elif previous is not None and previous != shadow:
                summary.previous_retired = await self._retire(previous)

            self._transition(RunState.DONE, summary)
            summary.status = RunStatus.SUCCESS
            logger.info(
                f"Cutover complete: {self.alias_name} -> {shadow}",
                extra={
                    "alias": self.alias_name,
                    "new_index": shadow,
                    "previous_index": previous,
                    "records_written": summary.records_written,
                },
            )

        except RunCancelledError as e:
            logger.warning(f"Run cancelled in state {self._state.value}")
            summary.error = e.to_dict()["error"]
            await self._abandon(shadow, swapped, summary, e)
            self._terminate(RunState.CANCELLED, summary)
            summary.status = RunStatus.CANCELLED

        except ReindexError as e:
            logger.error(
                f"Run failed in state {self._state.value}: {e.message}",
                extra={"code": e.code.value, "details": e.details},
            )
            summary.error = e.to_dict()["error"]
            await self._abandon(shadow, swapped, summary, e)
            self._terminate(RunState.FAILED, summary)
            summary.status = RunStatus.FAILED

        except Exception as e:
            logger.exception(f"Unexpected error in state {self._state.value}")
            summary.error = ReindexError(
                f"Unexpected error: {e}",
                code=ErrorCode.INTERNAL_ERROR,
                details={"type": type(e).__name__},
            ).to_dict()["error"]
            await self._abandon(shadow, swapped, summary, e)
            self._terminate(RunState.FAILED, summary)
            summary.status = RunStatus.FAILED

        finally:
            summary.finished_at = datetime.now(UTC)
            self._record_metrics(summary)

        return summary

    def _checkpoint(self) -> None:
        if self._cancel.is_set():
            raise RunCancelledError(details={"state": self._state.value})

    def _transition(self, new_state: RunState, summary: RunSummary) -> None:
        if new_state not in TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal transition {self._state.value} -> {new_state.value}")
        logger.info(
            f"State {self._state.value} -> {new_state.value}",
            extra={"alias": self.alias_name},
        )
        self._state = new_state
        summary.state = new_state

    def _terminate(self, terminal: RunState, summary: RunSummary) -> None:
        if terminal in TRANSITIONS[self._state]:
            self._transition(terminal, summary)
        else:
            # Past the swap the alias already serves the new index; keep the
            # state that was reached so the summary shows how far the run got.
            logger.error(
                f"Run ended in state {self._state.value} after the alias was swapped",
                extra={"alias": self.alias_name},
            )

    async def _allocate_name(self) -> tuple[int, str]:
        """Pick a build id whose index name collides with nothing."""
        taken = set(await self._store.list_collections())
        aliases = await self._store.list_aliases()
        taken.update(aliases)
        taken.update(aliases.values())
        taken.add(self.alias_name)

        build_id = int(self._clock() * 1000)
        while f"{self._prefix}_{build_id}" in taken:
            build_id += 1
        return build_id, f"{self._prefix}_{build_id}"

    async def _build_points(
        self,
        raw_records: list[RawRecord],
        identities: IdentityGenerator,
        summary: RunSummary,
    ) -> list[IndexPoint]:
        normalized = self._normalizer.normalize(raw_records)
        summary.records_normalized = len(normalized.records)
        summary.dropped.extend(normalized.dropped)

        composed: list[tuple[Record, ComposedRecord]] = []
        for record in normalized.records:
            try:
                composed.append((record, self._composer.compose_record(record)))
            except CompositionError as e:
                summary.dropped.append(_dropped(record, "compose", "composition_error", e.message))

        embedded = await self._embedder.embed_many([c.text for _, c in composed])
        summary.records_embedded = embedded.succeeded

        points: dict[str, IndexPoint] = {}
        owners: dict[str, Record] = {}
        for i, (record, item) in enumerate(composed):
            vector = embedded.vectors[i]
            if vector is None:
                error = embedded.errors.get(i)
                reason = f"embedding_{error.kind}" if error else "embedding_missing"
                summary.dropped.append(
                    _dropped(record, "embed", reason, error.message if error else "")
                )
                continue

            identity = identities.identity(record)
            if identity in points:
                # Same logical record twice: the later occurrence overwrites.
                summary.dropped.append(
                    _dropped(
                        owners[identity],
                        "embed",
                        "duplicate_identity",
                        f"Superseded by a later record with id {record.natural_id}",
                    )
                )
                del points[identity]
            points[identity] = IndexPoint(id=identity, vector=vector, payload=item.payload)
            owners[identity] = record

        logger.info(
            f"Prepared {len(points)} points from {len(raw_records)} raw records",
            extra={"dropped": len(summary.dropped)},
        )
        return list(points.values())

    async def _validate(self, shadow: str, written: int, points: list[IndexPoint]) -> None:
        """Confirm the shadow index is complete and queryable.

        Raises:
            ValidationError: If the index is empty, incomplete or unqueryable.
        """
        if written < 1 or not points:
            raise ValidationError(
                f"No points were written to {shadow}; refusing to promote an empty index",
                code=ErrorCode.EMPTY_INDEX,
                details={"collection": shadow},
            )

        stored = await self._store.count(shadow)
        if stored != written:
            raise ValidationError(
                f"{shadow} holds {stored} points, expected {written}",
                details={"collection": shadow, "stored": stored, "written": written},
            )

        # Queried by physical name: the alias must not see it yet.
        hits = await self._store.search(shadow, points[0].vector, limit=1)
        if not hits:
            raise ValidationError(
                f"Smoke-test query against {shadow} returned no results",
                details={"collection": shadow},
            )
        logger.info(
            f"Validated {shadow}",
            extra={"collection": shadow, "points": stored},
        )

    async def _retire(self, previous: str) -> bool:
        try:
            await self._router.retire(previous)
        except RetireError as e:
            logger.warning(
                f"Old index {previous} left in place: {e.message}",
                extra={"collection": previous, "code": e.code.value},
            )
            return False
        return True

    async def _abandon(
        self,
        shadow: str | None,
        swapped: bool,
        summary: RunSummary,
        error: BaseException,
    ) -> None:
        """Discard the shadow index unless it is (or may be) serving traffic."""
        if shadow is None or swapped:
            return
        if isinstance(error, ReindexError) and error.details.get("collection_deleted"):
            logger.critical(
                f"Keeping {shadow}: it holds the only copy of the data for {self.alias_name}"
            )
            return
        summary.shadow_discarded = await self._builder.discard(shadow)

    def _record_metrics(self, summary: RunSummary) -> None:
        dropped: dict[tuple[str, str], int] = {}
        for item in summary.dropped:
            key = (item.stage, item.reason)
            dropped[key] = dropped.get(key, 0) + 1
        track_run(
            alias=self.alias_name,
            status=summary.status.value,
            duration=summary.duration_seconds or 0.0,
            records={
                "read": summary.records_read,
                "embedded": summary.records_embedded,
                "written": summary.records_written,
            },
            dropped=dropped,
            finished_at=summary.finished_at.timestamp() if summary.finished_at else None,
        )


def _dropped(record: Record, stage: str, reason: str, message: str) -> DroppedRecord:
    return DroppedRecord(
        stage=stage,
        reason=reason,
        group=record.type.value,
        ordinal=record.ordinal,
        natural_id=record.natural_id,
        message=message,
    )
