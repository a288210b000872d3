"""Shadow index builder."""

import time

from reindex.exceptions import IndexCreateError, IndexExistsError, IndexWriteError, VectorStoreError
from reindex.logging_config import get_logger
from reindex.observability.metrics import track_write_batch
from reindex.retry import RetryPolicy
from reindex.vectorstore.models import DistanceMetric, IndexPoint
from reindex.vectorstore.service import VectorStore

logger = get_logger(__name__)


class ShadowIndexBuilder:
    """Creates and populates a fresh physical index.

    Batches are written one after another and each must be acknowledged
    before the next is sent, so the written count only ever covers data
    the backend has durably applied.
    """

    def __init__(
        self,
        store: VectorStore,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = 50,
    ) -> None:
        """Initialize the builder.

        Args:
            store: Index backend.
            retry_policy: Policy applied to each batch write.
            batch_size: Points per upsert request.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self.batch_size = batch_size

    async def create_index(
        self,
        name: str,
        dimension: int,
        metric: DistanceMetric = DistanceMetric.COSINE,
    ) -> None:
        """Create an empty physical index.

        Raises:
            IndexExistsError: If the name collides with an existing index.
            IndexCreateError: If the backend fails.
        """
        try:
            await self._store.create_collection(name, dimension, metric)
        except IndexExistsError:
            raise
        except VectorStoreError as e:
            raise IndexCreateError(
                f"Failed to create index {name}: {e.message}",
                details={"collection": name, **e.details},
            ) from e

    async def write_points(self, name: str, points: list[IndexPoint]) -> int:
        """Write points in fixed-size, acknowledged batches.

        Returns:
            Number of points acknowledged by the backend.

        Raises:
            IndexWriteError: If any batch still fails after retries. The
                index must then be discarded, never promoted.
        """
        total_batches = (len(points) + self.batch_size - 1) // self.batch_size
        written = 0

        logger.info(
            f"Writing {len(points)} points to {name} in {total_batches} batches",
            extra={"collection": name, "batch_size": self.batch_size},
        )

        for batch_no, start in enumerate(range(0, len(points), self.batch_size), start=1):
            batch = points[start : start + self.batch_size]
            batch_start = time.perf_counter()
            try:
                acknowledged = await self._retry.call(self._store.upsert, name, batch, wait=True)
            except VectorStoreError as e:
                track_write_batch(time.perf_counter() - batch_start, success=False)
                logger.error(
                    f"Batch {batch_no}/{total_batches} failed for {name}",
                    extra={"collection": name, "code": e.code.value, "written": written},
                )
                raise IndexWriteError(
                    f"Batch {batch_no}/{total_batches} could not be written to {name}: {e.message}",
                    details={
                        "collection": name,
                        "batch": batch_no,
                        "batches": total_batches,
                        "written": written,
                    },
                ) from e

            track_write_batch(time.perf_counter() - batch_start)
            written += acknowledged
            logger.debug(
                f"Batch {batch_no}/{total_batches} acknowledged",
                extra={"collection": name, "written": written},
            )

        return written

    async def discard(self, name: str) -> bool:
        """Delete an abandoned shadow index, best effort.

        Returns:
            True if the index is gone.
        """
        try:
            if not await self._store.collection_exists(name):
                return True
            await self._store.delete_collection(name)
        except VectorStoreError as e:
            logger.warning(
                f"Could not discard shadow index {name}: {e.message}",
                extra={"collection": name, "code": e.code.value},
            )
            return False

        logger.info(f"Discarded shadow index {name}")
        return True
