"""Embedding data models."""

from pydantic import BaseModel, ConfigDict, Field

from reindex.exceptions import EmbeddingError


class EmbeddingBatchResult(BaseModel):
    """Outcome of embedding a list of texts.

    Positions line up with the input list: ``vectors[i]`` is the vector for
    input ``i``, or None when that input failed, in which case
    ``errors[i]`` holds the reason.

    Attributes:
        vectors: One slot per input text.
        errors: Failures keyed by input position.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    vectors: list[list[float] | None] = Field(description="Vectors by input position")
    errors: dict[int, EmbeddingError] = Field(
        default_factory=dict,
        description="Failures by input position",
    )

    @classmethod
    def pending(cls, size: int) -> "EmbeddingBatchResult":
        """Create a result with every slot still empty."""
        return cls(vectors=[None] * size)

    @property
    def succeeded(self) -> int:
        """Number of inputs that produced a vector."""
        return sum(1 for v in self.vectors if v is not None)

    @property
    def failed(self) -> int:
        """Number of inputs that did not produce a vector."""
        return len(self.errors)
