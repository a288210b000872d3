"""Vector store interface and Qdrant implementation."""

from abc import ABC, abstractmethod
from typing import Any

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    CreateAlias,
    CreateAliasOperation,
    DeleteAlias,
    DeleteAliasOperation,
    Distance,
    PointStruct,
    UpdateStatus,
    VectorParams,
)

from reindex.config import QdrantSettings
from reindex.exceptions import ErrorCode, IndexExistsError, VectorStoreError
from reindex.logging_config import get_logger
from reindex.vectorstore.models import (
    AliasAction,
    AliasActionType,
    DistanceMetric,
    IndexPoint,
    SearchResult,
)

logger = get_logger(__name__)

_DISTANCES = {
    DistanceMetric.COSINE: Distance.COSINE,
    DistanceMetric.DOT: Distance.DOT,
    DistanceMetric.EUCLID: Distance.EUCLID,
}


def is_transient_backend_error(exc: BaseException) -> bool:
    """Classify a raw backend exception as worth retrying."""
    if isinstance(exc, UnexpectedResponse):
        status = exc.status_code or 0
        return status == 429 or status >= 500
    return isinstance(exc, ResponseHandlingException | httpx.TransportError | TimeoutError)


class VectorStore(ABC):
    """Abstract base class for vector stores.

    Defines the collection, point and alias operations the reindex
    pipeline needs from its index backend.
    """

    @abstractmethod
    async def create_collection(
        self,
        name: str,
        dimensions: int,
        distance: DistanceMetric = DistanceMetric.COSINE,
    ) -> None:
        """Create a new, empty collection.

        Args:
            name: Collection name.
            dimensions: Vector dimensions.
            distance: Similarity metric.

        Raises:
            IndexExistsError: If the name is taken.
            VectorStoreError: If creation fails.
        """
        ...

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Delete a collection.

        Args:
            name: Collection name.

        Raises:
            VectorStoreError: If deletion fails.
        """
        ...

    @abstractmethod
    async def collection_exists(self, name: str) -> bool:
        """Check if a physical collection exists.

        Args:
            name: Collection name.

        Returns:
            True if collection exists.
        """
        ...

    @abstractmethod
    async def list_collections(self) -> list[str]:
        """Names of all physical collections."""
        ...

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Exact number of points in a collection."""
        ...

    @abstractmethod
    async def upsert(
        self,
        collection: str,
        points: list[IndexPoint],
        wait: bool = True,
    ) -> int:
        """Insert or overwrite points.

        With ``wait`` the call returns only once the backend has applied
        the write.

        Args:
            collection: Collection name.
            points: Points to upsert.
            wait: Block until the write is durable.

        Returns:
            Number of points acknowledged.

        Raises:
            VectorStoreError: If upsert fails or is not acknowledged.
        """
        ...

    @abstractmethod
    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
    ) -> list[SearchResult]:
        """Search for similar vectors.

        Args:
            collection: Collection or alias name.
            vector: Query vector.
            limit: Maximum results to return.

        Returns:
            List of search results.

        Raises:
            VectorStoreError: If search fails.
        """
        ...

    @abstractmethod
    async def list_aliases(self) -> dict[str, str]:
        """Current alias bindings as ``{alias_name: collection_name}``."""
        ...

    @abstractmethod
    async def update_aliases(self, actions: list[AliasAction]) -> None:
        """Apply alias actions in one atomic backend request.

        Raises:
            VectorStoreError: If the request fails. Nothing is applied then.
        """
        ...


class QdrantVectorStore(VectorStore):
    """Qdrant vector store implementation."""

    def __init__(
        self,
        settings: QdrantSettings,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize Qdrant vector store.

        Args:
            settings: Qdrant configuration.
            client: Existing client (for testing).
        """
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> AsyncQdrantClient:
        """Get or create Qdrant client."""
        if self._client is None:
            api_key = None
            if self._settings.api_key:
                api_key = self._settings.api_key.get_secret_value()

            self._client = AsyncQdrantClient(
                url=self._settings.url,
                api_key=api_key,
                timeout=self._settings.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the Qdrant client."""
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None

    def _backend_error(
        self,
        action: str,
        error: Exception,
        details: dict[str, Any],
    ) -> VectorStoreError:
        return VectorStoreError(
            f"Failed to {action}: {error}",
            code=ErrorCode.VECTOR_STORE_ERROR,
            details={**details, "error": str(error)},
            transient=is_transient_backend_error(error),
        )

    async def create_collection(
        self,
        name: str,
        dimensions: int,
        distance: DistanceMetric = DistanceMetric.COSINE,
    ) -> None:
        """Create a new Qdrant collection."""
        client = await self._get_client()

        try:
            if await client.collection_exists(name):
                raise IndexExistsError(name)

            await client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(
                    size=dimensions,
                    distance=_DISTANCES[distance],
                ),
            )
            logger.info(
                f"Created collection: {name}",
                extra={"dimensions": dimensions, "distance": distance.value},
            )

        except VectorStoreError:
            raise
        except Exception as e:
            raise self._backend_error("create collection", e, {"collection": name}) from e

    async def delete_collection(self, name: str) -> None:
        """Delete a Qdrant collection."""
        client = await self._get_client()

        try:
            if not await client.collection_exists(name):
                raise VectorStoreError(
                    f"Collection not found: {name}",
                    code=ErrorCode.COLLECTION_NOT_FOUND,
                    details={"collection": name},
                )

            await client.delete_collection(name)
            logger.info(f"Deleted collection: {name}")

        except VectorStoreError:
            raise
        except Exception as e:
            raise self._backend_error("delete collection", e, {"collection": name}) from e

    async def collection_exists(self, name: str) -> bool:
        """Check if collection exists."""
        client = await self._get_client()
        try:
            return await client.collection_exists(name)
        except Exception as e:
            raise self._backend_error("check collection", e, {"collection": name}) from e

    async def list_collections(self) -> list[str]:
        """List physical collection names."""
        client = await self._get_client()
        try:
            response = await client.get_collections()
        except Exception as e:
            raise self._backend_error("list collections", e, {}) from e
        return [c.name for c in response.collections]

    async def count(self, collection: str) -> int:
        """Count points exactly."""
        client = await self._get_client()
        try:
            result = await client.count(collection_name=collection, exact=True)
        except Exception as e:
            raise self._backend_error("count points", e, {"collection": collection}) from e
        return result.count

    async def upsert(
        self,
        collection: str,
        points: list[IndexPoint],
        wait: bool = True,
    ) -> int:
        """Upsert points and verify the backend acknowledged them."""
        if not points:
            return 0

        client = await self._get_client()

        try:
            result = await client.upsert(
                collection_name=collection,
                points=[
                    PointStruct(id=point.id, vector=point.vector, payload=point.payload)
                    for point in points
                ],
                wait=wait,
            )
        except Exception as e:
            raise self._backend_error(
                "upsert points", e, {"collection": collection, "points": len(points)}
            ) from e

        if wait and result.status != UpdateStatus.COMPLETED:
            raise VectorStoreError(
                f"Upsert not acknowledged: {result.status}",
                code=ErrorCode.VECTOR_STORE_ERROR,
                details={"collection": collection, "status": str(result.status)},
                transient=True,
            )

        logger.debug(
            f"Upserted {len(points)} points",
            extra={"collection": collection},
        )
        return len(points)

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int = 10,
    ) -> list[SearchResult]:
        """Search for similar vectors."""
        client = await self._get_client()

        try:
            results = await client.query_points(
                collection_name=collection,
                query=vector,
                limit=limit,
                with_payload=True,
            )
        except Exception as e:
            raise self._backend_error("search", e, {"collection": collection}) from e

        return [
            SearchResult(
                id=str(point.id),
                score=point.score if point.score is not None else 0.0,
                payload=dict(point.payload) if point.payload else {},
            )
            for point in results.points
        ]

    async def list_aliases(self) -> dict[str, str]:
        """List alias bindings."""
        client = await self._get_client()
        try:
            response = await client.get_aliases()
        except Exception as e:
            raise self._backend_error("list aliases", e, {}) from e
        return {a.alias_name: a.collection_name for a in response.aliases}

    async def update_aliases(self, actions: list[AliasAction]) -> None:
        """Apply alias actions in a single request."""
        if not actions:
            return

        operations: list[CreateAliasOperation | DeleteAliasOperation] = []
        for action in actions:
            if action.type == AliasActionType.DELETE:
                operations.append(
                    DeleteAliasOperation(delete_alias=DeleteAlias(alias_name=action.alias_name))
                )
            else:
                operations.append(
                    CreateAliasOperation(
                        create_alias=CreateAlias(
                            collection_name=action.collection_name,
                            alias_name=action.alias_name,
                        )
                    )
                )

        client = await self._get_client()
        details = {"actions": [a.model_dump(mode="json") for a in actions]}
        try:
            applied = await client.update_collection_aliases(
                change_aliases_operations=operations,
            )
        except Exception as e:
            raise self._backend_error("update aliases", e, details) from e

        if not applied:
            raise VectorStoreError(
                "Alias update was not applied",
                code=ErrorCode.VECTOR_STORE_ERROR,
                details=details,
            )
        logger.debug("Applied alias actions", extra=details)
