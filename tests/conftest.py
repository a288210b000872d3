"""Pytest configuration and shared fixtures."""

import pytest

from reindex.config import EmbeddingSettings, QdrantSettings, RetrySettings, Settings
from reindex.retry import RetryPolicy
from tests.fakes import FakeEmbeddingService, InMemoryVectorStore


@pytest.fixture
def store() -> InMemoryVectorStore:
    """Empty in-memory index backend."""
    return InMemoryVectorStore()


@pytest.fixture
def embedder() -> FakeEmbeddingService:
    """Embedding service that never fails."""
    return FakeEmbeddingService()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts without backoff delay."""
    return RetryPolicy(max_attempts=3, base_delay=0.0)


@pytest.fixture
def settings() -> Settings:
    """Settings with fast retries and a small write batch."""
    return Settings(
        embedding=EmbeddingSettings(base_url="http://embed.test/v1", model="fake-model"),
        qdrant=QdrantSettings(alias_name="travel", write_batch_size=50),
        retry=RetrySettings(max_attempts=3, base_delay=0.0),
    )
