"""Tests for the cutover controller."""

import json
from collections.abc import Callable

import pytest

from reindex.config import EmbeddingSettings
from reindex.embeddings.models import EmbeddingBatchResult
from reindex.embeddings.service import EmbeddingService, HTTPEmbeddingService
from reindex.exceptions import EmbeddingError, ErrorCode, VectorStoreError
from reindex.pipeline.aliases import AliasRouter
from reindex.pipeline.builder import ShadowIndexBuilder
from reindex.pipeline.cutover import CutoverController
from reindex.pipeline.models import AddressingMode, RunState, RunStatus
from reindex.records.models import RawRecord
from reindex.records.source import JSONExportSource, RecordSource, StaticRecordSource
from reindex.retry import RetryPolicy
from reindex.vectorstore.models import SearchResult
from tests.fakes import FakeEmbeddingService, InMemoryVectorStore

BUILD_TIME = 1_700_000_000.0
NEW_INDEX = "travel_1700000000000"


def _venues(count: int) -> list[RawRecord]:
    return [
        RawRecord(
            group="venues",
            ordinal=i,
            data={"id": f"v{i}", "title": f"Venue number {i}", "city": "Lisbon"},
        )
        for i in range(count)
    ]


def _controller(
    store: InMemoryVectorStore,
    embedder: EmbeddingService,
    source: RecordSource,
    clock: Callable[[], float] = lambda: BUILD_TIME,
    **kwargs,
) -> CutoverController:
    retry = RetryPolicy(max_attempts=3, base_delay=0.0)
    return CutoverController(
        alias_name="travel",
        source=source,
        store=store,
        embedder=embedder,
        builder=ShadowIndexBuilder(store, retry_policy=retry, batch_size=50),
        router=AliasRouter(store, retry_policy=retry),
        clock=clock,
        **kwargs,
    )


class FailingSource(RecordSource):
    """Source raising an arbitrary exception."""

    async def fetch(self) -> list[RawRecord]:
        raise RuntimeError("upstream exploded")


class ShortCountStore(InMemoryVectorStore):
    """Reports one point fewer than each collection holds."""

    async def count(self, collection: str) -> int:
        return await super().count(collection) - 1


class BlindSearchStore(InMemoryVectorStore):
    """Accepts writes but never returns search hits."""

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
    ) -> list[SearchResult]:
        self.searched.append(collection)
        return []


class CancellingEmbedder(FakeEmbeddingService):
    """Requests cancellation while embeddings are in flight."""

    def __init__(self) -> None:
        super().__init__()
        self.controller: CutoverController | None = None

    async def embed_many(self, texts: list[str]) -> EmbeddingBatchResult:
        assert self.controller is not None
        self.controller.cancel()
        return await super().embed_many(texts)


class TestSuccessfulCutover:
    """Tests for runs that complete."""

    @pytest.mark.asyncio
    async def test_rebuild_replaces_previous_index(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """An aliased index of 100 is replaced by a new index of 120."""
        store.seed("travel_a", 100, alias="travel")

        summary = await _controller(store, embedder, StaticRecordSource(_venues(120))).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.state == RunState.DONE
        assert summary.addressing_mode == AddressingMode.ALIASED
        assert summary.new_index == NEW_INDEX
        assert summary.previous_index == "travel_a"
        assert summary.previous_retired is True
        assert summary.records_read == 120
        assert summary.records_written == 120
        assert summary.records_dropped == 0
        assert store.aliases == {"travel": NEW_INDEX}
        assert len(store.collections[NEW_INDEX]) == 120
        assert "travel_a" not in store.collections

    @pytest.mark.asyncio
    async def test_swap_is_single_atomic_update(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """The alias is only ever changed by one combined update."""
        store.seed("travel_a", 10, alias="travel")

        await _controller(store, embedder, StaticRecordSource(_venues(5))).run()

        assert len(store.alias_updates) == 1
        assert [(a.type.value, a.collection_name) for a in store.alias_updates[0]] == [
            ("delete", None),
            ("create", NEW_INDEX),
        ]

    @pytest.mark.asyncio
    async def test_validation_queries_shadow_by_physical_name(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """The smoke query never goes through the live alias."""
        store.seed("travel_a", 10, alias="travel")

        await _controller(store, embedder, StaticRecordSource(_venues(5))).run()

        assert store.searched == [NEW_INDEX]

    @pytest.mark.asyncio
    async def test_first_run_creates_alias(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """With nothing deployed the alias is created."""
        summary = await _controller(store, embedder, StaticRecordSource(_venues(3))).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.addressing_mode == AddressingMode.UNBOUND
        assert summary.previous_index is None
        assert summary.previous_retired is False
        assert store.aliases == {"travel": NEW_INDEX}

    @pytest.mark.asyncio
    async def test_rerun_keeps_identities(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """Two runs over the same records produce the same identities and payloads."""
        source = StaticRecordSource(_venues(4))

        first = await _controller(store, embedder, source, clock=lambda: 1000.0).run()
        first_points = {p.id: p.payload for p in store.collections[first.new_index].values()}
        second = await _controller(store, embedder, source, clock=lambda: 2000.0).run()

        assert second.status == RunStatus.SUCCESS
        assert second.previous_index == first.new_index
        second_points = {p.id: p.payload for p in store.collections[second.new_index].values()}
        assert second.new_index != first.new_index
        assert second_points == first_points
        assert list(store.collections) == [second.new_index]

    @pytest.mark.asyncio
    async def test_build_name_never_reused(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A taken name moves the build id forward."""
        store.seed(NEW_INDEX, 0)

        summary = await _controller(store, embedder, StaticRecordSource(_venues(2))).run()

        assert summary.new_index == "travel_1700000000001"
        assert summary.build_id == 1_700_000_000_001

    @pytest.mark.asyncio
    async def test_retire_failure_is_not_fatal(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """An old index that cannot be deleted is left behind."""
        store.seed("travel_a", 10, alias="travel")
        store.delete_failures.add("travel_a")

        summary = await _controller(store, embedder, StaticRecordSource(_venues(3))).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.previous_retired is False
        assert store.aliases == {"travel": NEW_INDEX}
        assert "travel_a" in store.collections


class TestRecordOutcomes:
    """Tests for dropped and skipped records."""

    @pytest.mark.asyncio
    async def test_embedding_failures_are_dropped(self, store: InMemoryVectorStore) -> None:
        """Records whose embedding fails are counted, the rest are indexed."""
        embedder = FakeEmbeddingService(
            failures={"Venue number 1 Lisbon": EmbeddingError("content policy")}
        )

        summary = await _controller(store, embedder, StaticRecordSource(_venues(3))).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.records_embedded == 2
        assert summary.records_written == 2
        assert summary.dropped_by_reason == {"embedding_permanent": 1}
        assert summary.dropped[0].natural_id == "v1"

    @pytest.mark.asyncio
    async def test_exhausted_transient_failure_drops_record(
        self,
        store: InMemoryVectorStore,
    ) -> None:
        """A record whose embedding kept timing out is dropped, not fatal."""
        embedder = FakeEmbeddingService(
            failures={"Venue number 0 Lisbon": EmbeddingError("timeout", transient=True)}
        )

        summary = await _controller(store, embedder, StaticRecordSource(_venues(2))).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.records_written == 1
        assert summary.dropped_by_reason == {"embedding_transient": 1}

    @pytest.mark.asyncio
    async def test_malformed_export_item_is_dropped(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
        tmp_path,
    ) -> None:
        """An export item with a non-string type is skipped, not fatal."""
        export = tmp_path / "export.json"
        export.write_text(
            json.dumps(
                [
                    {"id": "a", "type": 5, "title": "Hello world"},
                    {"id": "b", "type": "venue", "title": "Nice venue"},
                ]
            ),
            encoding="utf-8",
        )

        summary = await _controller(store, embedder, JSONExportSource(export)).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.records_read == 2
        assert summary.records_written == 1
        assert summary.dropped_by_reason == {"missing_type": 1}
        assert store.aliases == {"travel": NEW_INDEX}

    @pytest.mark.asyncio
    async def test_untyped_records_are_dropped(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """Records without a type are skipped, not fatal."""
        records = [*_venues(2), RawRecord(group=None, ordinal=0, data={"id": "x"})]

        summary = await _controller(store, embedder, StaticRecordSource(records)).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.records_read == 3
        assert summary.records_normalized == 2
        assert summary.dropped_by_reason == {"missing_type": 1}

    @pytest.mark.asyncio
    async def test_duplicate_identities(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A repeated natural id keeps the later record."""
        records = [
            RawRecord(group="venues", ordinal=0, data={"id": "v1", "title": "Old title"}),
            RawRecord(group="venues", ordinal=1, data={"id": "v1", "title": "New title"}),
        ]

        summary = await _controller(store, embedder, StaticRecordSource(records)).run()

        assert summary.records_written == 1
        assert summary.dropped_by_reason == {"duplicate_identity": 1}
        (point,) = store.collections[summary.new_index].values()
        assert point.payload["title"] == "New title"


class TestFailedCutover:
    """Tests for runs that must leave the live index untouched."""

    @pytest.mark.asyncio
    async def test_write_failure_discards_shadow(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A failed batch leaves the alias on the old index."""
        store.seed("travel_a", 100, alias="travel")
        store.upsert_failures = [None, VectorStoreError("disk full")]

        summary = await _controller(store, embedder, StaticRecordSource(_venues(120))).run()

        assert summary.status == RunStatus.FAILED
        assert summary.state == RunState.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.INDEX_WRITE_ERROR.value
        assert summary.shadow_discarded is True
        assert store.aliases == {"travel": "travel_a"}
        assert list(store.collections) == ["travel_a"]
        assert len(store.collections["travel_a"]) == 100

    @pytest.mark.asyncio
    async def test_empty_index_is_never_promoted(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A run that produces no points fails validation."""
        store.seed("travel_a", 10, alias="travel")
        records = [RawRecord(group="venues", ordinal=0, data="not an object")]

        summary = await _controller(store, embedder, StaticRecordSource(records)).run()

        assert summary.status == RunStatus.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.EMPTY_INDEX.value
        assert store.aliases == {"travel": "travel_a"}
        assert list(store.collections) == ["travel_a"]

    @pytest.mark.asyncio
    async def test_incomplete_index_is_never_promoted(
        self,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A point count that disagrees with the writes fails validation."""
        store = ShortCountStore()
        store.seed("travel_a", 10, alias="travel")

        summary = await _controller(store, embedder, StaticRecordSource(_venues(5))).run()

        assert summary.status == RunStatus.FAILED
        assert summary.state == RunState.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.VALIDATION_ERROR.value
        assert summary.error["details"] == {
            "collection": NEW_INDEX,
            "stored": 4,
            "written": 5,
        }
        assert summary.shadow_discarded is True
        assert store.aliases == {"travel": "travel_a"}
        assert list(store.collections) == ["travel_a"]
        assert store.alias_updates == []

    @pytest.mark.asyncio
    async def test_unqueryable_index_is_never_promoted(
        self,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A shadow index that answers no queries fails validation."""
        store = BlindSearchStore()
        store.seed("travel_a", 10, alias="travel")

        summary = await _controller(store, embedder, StaticRecordSource(_venues(5))).run()

        assert summary.status == RunStatus.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.VALIDATION_ERROR.value
        assert store.searched == [NEW_INDEX]
        assert summary.shadow_discarded is True
        assert store.aliases == {"travel": "travel_a"}
        assert list(store.collections) == ["travel_a"]
        assert store.alias_updates == []

    @pytest.mark.asyncio
    async def test_unknown_vector_size_mutates_nothing(
        self,
        store: InMemoryVectorStore,
    ) -> None:
        """A model with no known vector size fails before any index exists."""
        store.seed("travel_a", 10, alias="travel")
        embedder = HTTPEmbeddingService(EmbeddingSettings(model="in-house-encoder"))

        summary = await _controller(store, embedder, StaticRecordSource(_venues(3))).run()

        assert summary.status == RunStatus.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.CONFIGURATION_ERROR.value
        assert summary.new_index is None
        assert store.aliases == {"travel": "travel_a"}
        assert list(store.collections) == ["travel_a"]

    @pytest.mark.asyncio
    async def test_swap_failure_keeps_old_alias(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A rejected swap leaves the alias and discards the shadow."""
        store.seed("travel_a", 10, alias="travel")
        store.alias_failure = VectorStoreError("forbidden")

        summary = await _controller(store, embedder, StaticRecordSource(_venues(3))).run()

        assert summary.status == RunStatus.FAILED
        assert summary.state == RunState.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.ALIAS_SWAP_ERROR.value
        assert store.aliases == {"travel": "travel_a"}
        assert NEW_INDEX not in store.collections

    @pytest.mark.asyncio
    async def test_source_failure_mutates_nothing(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
        tmp_path,
    ) -> None:
        """An unreadable source fails before any index is created."""
        store.seed("travel_a", 10, alias="travel")

        summary = await _controller(
            store, embedder, JSONExportSource(tmp_path / "missing.json")
        ).run()

        assert summary.status == RunStatus.FAILED
        assert summary.state == RunState.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.SOURCE_READ_ERROR.value
        assert summary.new_index is None
        assert list(store.collections) == ["travel_a"]

    @pytest.mark.asyncio
    async def test_unexpected_error(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """Unexpected exceptions are reported as internal errors."""
        summary = await _controller(store, embedder, FailingSource()).run()

        assert summary.status == RunStatus.FAILED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.INTERNAL_ERROR.value
        assert summary.error["details"]["type"] == "RuntimeError"
        assert summary.finished_at is not None


class TestCancellation:
    """Tests for cancelled runs."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """A run cancelled up front touches nothing."""
        controller = _controller(store, embedder, StaticRecordSource(_venues(3)))
        controller.cancel()

        summary = await controller.run()

        assert summary.status == RunStatus.CANCELLED
        assert summary.state == RunState.CANCELLED
        assert store.collections == {}

    @pytest.mark.asyncio
    async def test_cancel_during_population(self, store: InMemoryVectorStore) -> None:
        """Cancellation mid-build discards the shadow and keeps the alias."""
        store.seed("travel_a", 10, alias="travel")
        embedder = CancellingEmbedder()
        controller = _controller(store, embedder, StaticRecordSource(_venues(3)))
        embedder.controller = controller

        summary = await controller.run()

        assert controller.cancel_requested is True
        assert summary.status == RunStatus.CANCELLED
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.RUN_CANCELLED.value
        assert summary.shadow_discarded is True
        assert store.aliases == {"travel": "travel_a"}
        assert list(store.collections) == ["travel_a"]


class TestDirectAddressing:
    """Tests for deployments that query a collection directly."""

    @pytest.mark.asyncio
    async def test_refused_without_opt_in(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """Direct addressing is left alone unless migration is enabled."""
        store.seed("travel", 10)

        summary = await _controller(store, embedder, StaticRecordSource(_venues(3))).run()

        assert summary.status == RunStatus.FAILED
        assert summary.addressing_mode == AddressingMode.DIRECT
        assert summary.error is not None
        assert summary.error["code"] == ErrorCode.CONFIGURATION_ERROR.value
        assert list(store.collections) == ["travel"]
        assert store.aliases == {}

    @pytest.mark.asyncio
    async def test_migration(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """With opt-in the name moves onto an alias of the new index."""
        store.seed("travel", 10)

        summary = await _controller(
            store,
            embedder,
            StaticRecordSource(_venues(3)),
            allow_direct_migration=True,
        ).run()

        assert summary.status == RunStatus.SUCCESS
        assert summary.addressing_mode == AddressingMode.DIRECT
        assert summary.previous_index == "travel"
        assert summary.previous_retired is True
        assert store.aliases == {"travel": NEW_INDEX}
        assert list(store.collections) == [NEW_INDEX]

    @pytest.mark.asyncio
    async def test_next_run_after_migration_is_aliased(
        self,
        store: InMemoryVectorStore,
        embedder: FakeEmbeddingService,
    ) -> None:
        """Once migrated, later runs use plain swaps."""
        store.seed("travel", 10)
        source = StaticRecordSource(_venues(3))
        await _controller(
            store, embedder, source, clock=lambda: 1000.0, allow_direct_migration=True
        ).run()

        summary = await _controller(store, embedder, source, clock=lambda: 2000.0).run()

        assert summary.addressing_mode == AddressingMode.ALIASED
        assert summary.previous_index == "travel_1000000"
        assert store.aliases == {"travel": "travel_2000000"}
