"""Embedding service module."""

from reindex.embeddings.models import EmbeddingBatchResult
from reindex.embeddings.service import EmbeddingService, HTTPEmbeddingService

__all__ = [
    "EmbeddingBatchResult",
    "EmbeddingService",
    "HTTPEmbeddingService",
]
