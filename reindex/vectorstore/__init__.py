"""Vector store module."""

from reindex.vectorstore.models import (
    AliasAction,
    AliasActionType,
    DistanceMetric,
    IndexPoint,
    SearchResult,
)
from reindex.vectorstore.service import QdrantVectorStore, VectorStore

__all__ = [
    "AliasAction",
    "AliasActionType",
    "DistanceMetric",
    "IndexPoint",
    "QdrantVectorStore",
    "SearchResult",
    "VectorStore",
]
