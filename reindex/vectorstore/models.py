"""Vector store data models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DistanceMetric(str, Enum):
    """Similarity metric of a physical index."""

    COSINE = "cosine"
    DOT = "dot"
    EUCLID = "euclid"


class IndexPoint(BaseModel):
    """A point to store in a physical index.

    Attributes:
        id: Deterministic record identity.
        vector: The embedding vector.
        payload: Sanitized metadata stored with the vector.
    """

    id: str = Field(description="Record identity")
    vector: list[float] = Field(min_length=1, description="Embedding vector")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata payload",
    )


class SearchResult(BaseModel):
    """Result from a vector similarity search.

    Attributes:
        id: Record identifier.
        score: Similarity score (higher is more similar).
        payload: Stored metadata.
    """

    id: str = Field(description="Record identifier")
    score: float = Field(description="Similarity score")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Record metadata",
    )


class AliasActionType(str, Enum):
    """Kinds of alias mutation."""

    CREATE = "create"
    DELETE = "delete"


class AliasAction(BaseModel):
    """One action inside an atomic alias update.

    Attributes:
        type: Create or delete the binding.
        alias_name: Logical name.
        collection_name: Target physical index (create only).
    """

    type: AliasActionType
    alias_name: str
    collection_name: str | None = None

    @classmethod
    def create(cls, alias_name: str, collection_name: str) -> "AliasAction":
        """Bind ``alias_name`` to ``collection_name``."""
        return cls(
            type=AliasActionType.CREATE,
            alias_name=alias_name,
            collection_name=collection_name,
        )

    @classmethod
    def delete(cls, alias_name: str) -> "AliasAction":
        """Remove the binding of ``alias_name``."""
        return cls(type=AliasActionType.DELETE, alias_name=alias_name)
