"""Wires a cutover run from one explicit Settings object."""

from reindex.composer import TextComposer
from reindex.config import Settings
from reindex.embeddings.service import EmbeddingService, HTTPEmbeddingService
from reindex.logging_config import get_logger
from reindex.pipeline.aliases import AliasRouter
from reindex.pipeline.builder import ShadowIndexBuilder
from reindex.pipeline.cutover import CutoverController
from reindex.pipeline.models import RunSummary
from reindex.records.normalizer import RecordNormalizer
from reindex.records.source import JSONExportSource, RecordSource
from reindex.retry import RetryPolicy
from reindex.vectorstore.service import QdrantVectorStore, VectorStore

logger = get_logger(__name__)


class ReindexRunner:
    """Owns the components of one run and releases them afterwards.

    Everything is constructed from the settings passed in; nothing is
    shared with other runs.
    """

    def __init__(
        self,
        settings: Settings,
        source: RecordSource | None = None,
        store: VectorStore | None = None,
        embedder: EmbeddingService | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            settings: Run configuration.
            source: Record source. Defaults to the configured JSON export.
            store: Index backend. Defaults to Qdrant.
            embedder: Embedding client. Defaults to the HTTP service.
        """
        self._settings = settings
        retry_policy = RetryPolicy.from_settings(settings.retry)

        self.source = source or JSONExportSource(settings.pipeline.source_path)
        self.store = store or QdrantVectorStore(settings.qdrant)
        self.embedder = embedder or HTTPEmbeddingService(settings.embedding, retry_policy)

        self.controller = CutoverController(
            alias_name=settings.qdrant.alias_name,
            source=self.source,
            store=self.store,
            embedder=self.embedder,
            builder=ShadowIndexBuilder(
                self.store,
                retry_policy=retry_policy,
                batch_size=settings.qdrant.write_batch_size,
            ),
            router=AliasRouter(self.store, retry_policy=retry_policy),
            normalizer=RecordNormalizer(),
            composer=TextComposer(min_text_length=settings.pipeline.min_text_length),
            collection_prefix=settings.qdrant.prefix,
            allow_direct_migration=settings.qdrant.allow_direct_migration,
        )

    def cancel(self) -> None:
        """Request cancellation of the run."""
        self.controller.cancel()

    async def run(self) -> RunSummary:
        """Execute the run and close owned clients."""
        logger.info(
            f"Starting reindex of {self._settings.qdrant.alias_name}",
            extra={
                "qdrant_url": self._settings.qdrant.url,
                "model": self._settings.embedding.model,
            },
        )
        try:
            return await self.controller.run()
        finally:
            await self.close()

    async def close(self) -> None:
        """Close clients that expose a close() coroutine."""
        for component in (self.embedder, self.store):
            close = getattr(component, "close", None)
            if close is not None:
                await close()


async def run_reindex(
    settings: Settings,
    source: RecordSource | None = None,
) -> RunSummary:
    """Run one reindex with default components.

    Args:
        settings: Run configuration.
        source: Record source override.

    Returns:
        Structured run summary.
    """
    return await ReindexRunner(settings, source=source).run()
