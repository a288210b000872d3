"""Embedding service interface and implementations."""

import asyncio
import time
from abc import ABC, abstractmethod

import httpx

from reindex.config import EmbeddingSettings
from reindex.embeddings.models import EmbeddingBatchResult
from reindex.exceptions import ConfigurationError, EmbeddingError, ErrorCode
from reindex.logging_config import get_logger
from reindex.observability.metrics import track_embedding_request
from reindex.retry import RetryPolicy

logger = get_logger(__name__)

# Status codes worth retrying besides 5xx.
TRANSIENT_STATUS_CODES = frozenset({408, 429})


class EmbeddingService(ABC):
    """Abstract base class for embedding services.

    Defines the interface for generating text embeddings.
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text.

        Args:
            text: Text to embed.

        Returns:
            Embedding vector.

        Raises:
            EmbeddingError: If embedding fails after retries.
        """
        ...

    @abstractmethod
    async def embed_many(self, texts: list[str]) -> EmbeddingBatchResult:
        """Generate embeddings for multiple texts.

        Never raises for individual failures; they are reported by
        position in the result.

        Args:
            texts: List of texts to embed.

        Returns:
            Vectors and failures aligned with the input order.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name used for embeddings."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Get the embedding dimensions."""
        ...


class HTTPEmbeddingService(EmbeddingService):
    """Embedding service using an OpenAI-compatible HTTP API.

    Requests are batched, issued with bounded parallelism and retried
    through the shared retry policy. 429, 5xx, timeouts and connection
    errors are transient; any other 4xx and malformed responses are
    permanent and never retried.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "text-embedding-ada-002": 1536,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "BAAI/bge-large-en-v1.5": 1024,
        "BAAI/bge-base-en-v1.5": 768,
        "BAAI/bge-small-en-v1.5": 384,
    }

    def __init__(
        self,
        settings: EmbeddingSettings,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP embedding service.

        Args:
            settings: Embedding configuration.
            retry_policy: Policy for transient failures.
            client: HTTP client. Creates new one if not provided.
        """
        self._settings = settings
        self._retry = retry_policy or RetryPolicy()
        self._client = client
        self._owns_client = client is None
        self._learned_dimensions: int | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self._settings.model

    @property
    def dimensions(self) -> int:
        """Get embedding dimensions.

        Raises:
            ConfigurationError: If the model is not in MODEL_DIMENSIONS and
                no dimensions are configured.
        """
        expected = self._expected_dimensions()
        if expected is None:
            raise ConfigurationError(
                f"Unknown vector size for model {self._settings.model}; "
                "set EMBEDDING_DIMENSIONS",
                details={"model": self._settings.model},
            )
        return expected

    def _expected_dimensions(self) -> int | None:
        return (
            self._settings.dimensions
            or self.MODEL_DIMENSIONS.get(self._settings.model)
            or self._learned_dimensions
        )

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text, retrying transient failures."""
        vectors = await self._retry.call(self._request, [text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> EmbeddingBatchResult:
        """Embed texts in batches with bounded parallelism.

        A batch that fails permanently is re-issued one text at a time so
        the failure is pinned to the offending inputs. A batch that is still
        failing transiently after retries fails every input it carried.
        """
        result = EmbeddingBatchResult.pending(len(texts))
        if not texts:
            return result

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        batch_size = self._settings.batch_size

        async def run_batch(offset: int, batch: list[str]) -> None:
            async with semaphore:
                try:
                    vectors = await self._retry.call(self._request, batch)
                except EmbeddingError as e:
                    if e.transient or len(batch) == 1:
                        for j in range(len(batch)):
                            result.errors[offset + j] = e
                        return
                    logger.warning(
                        f"Embedding batch failed permanently, isolating {len(batch)} inputs",
                        extra={"offset": offset, "code": e.code.value},
                    )
                    await self._embed_individually(offset, batch, result)
                    return

                for j, vector in enumerate(vectors):
                    result.vectors[offset + j] = vector

        await asyncio.gather(
            *(
                run_batch(offset, texts[offset : offset + batch_size])
                for offset in range(0, len(texts), batch_size)
            )
        )

        if result.errors:
            logger.warning(
                f"Failed to embed {result.failed} of {len(texts)} texts",
                extra={"model": self._settings.model},
            )
        return result

    async def _embed_individually(
        self,
        offset: int,
        batch: list[str],
        result: EmbeddingBatchResult,
    ) -> None:
        for j, text in enumerate(batch):
            try:
                result.vectors[offset + j] = await self.embed(text)
            except EmbeddingError as e:
                result.errors[offset + j] = e

    async def _request(self, texts: list[str]) -> list[list[float]]:
        """Make one embedding request.

        Args:
            texts: Batch of texts.

        Returns:
            Vectors in input order.

        Raises:
            EmbeddingError: If the request fails or the response is unusable.
        """
        client = await self._get_client()
        url = f"{self._settings.base_url.rstrip('/')}/embeddings"
        payload = {
            "input": texts,
            "model": self._settings.model,
        }
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key is not None:
            headers["Authorization"] = f"Bearer {self._settings.api_key.get_secret_value()}"

        start = time.perf_counter()
        try:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            vectors = self._parse_response(response, len(texts))
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            transient = status >= 500 or status in TRANSIENT_STATUS_CODES
            track_embedding_request(
                self._settings.model, time.perf_counter() - start, len(texts), success=False
            )
            logger.error(
                f"Embedding request failed: {status}",
                extra={"url": url, "status": status, "transient": transient},
            )
            raise EmbeddingError(
                f"Embedding service returned {status}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"status_code": status},
                transient=transient,
            ) from e
        except httpx.RequestError as e:
            track_embedding_request(
                self._settings.model, time.perf_counter() - start, len(texts), success=False
            )
            logger.error(
                f"Embedding request error: {e!r}",
                extra={"url": url},
            )
            raise EmbeddingError(
                f"Failed to reach embedding service: {e!r}",
                code=ErrorCode.EMBEDDING_SERVICE_ERROR,
                details={"url": url, "error_type": type(e).__name__},
                transient=True,
            ) from e
        except EmbeddingError:
            track_embedding_request(
                self._settings.model, time.perf_counter() - start, len(texts), success=False
            )
            raise

        track_embedding_request(self._settings.model, time.perf_counter() - start, len(texts))
        return vectors

    def _parse_response(self, response: httpx.Response, expected_count: int) -> list[list[float]]:
        try:
            data = response.json()
            items = data["data"]
            if all(isinstance(item, dict) and "index" in item for item in items):
                items = sorted(items, key=lambda item: item["index"])
            vectors = [[float(x) for x in item["embedding"]] for item in items]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Invalid response from embedding service: {e}",
                code=ErrorCode.EMBEDDING_INVALID_RESPONSE,
                details={"error": str(e)},
            ) from e

        if len(vectors) != expected_count:
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {expected_count} inputs",
                code=ErrorCode.EMBEDDING_INVALID_RESPONSE,
                details={"expected": expected_count, "received": len(vectors)},
            )

        expected_dims = self._expected_dimensions()
        for vector in vectors:
            if not vector:
                raise EmbeddingError(
                    "Embedding service returned an empty vector",
                    code=ErrorCode.EMBEDDING_INVALID_RESPONSE,
                )
            if expected_dims is not None and len(vector) != expected_dims:
                raise EmbeddingError(
                    f"Expected {expected_dims} dimensions, got {len(vector)}",
                    code=ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
                    details={"expected": expected_dims, "received": len(vector)},
                )

        if self._learned_dimensions is None:
            self._learned_dimensions = len(vectors[0])
        return vectors
