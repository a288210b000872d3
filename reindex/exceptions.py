"""Pipeline exception hierarchy.

All custom exceptions inherit from ReindexError.
Each exception has an error code for structured error handling.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "RIX-1000"
    CONFIGURATION_ERROR = "RIX-1001"
    RUN_CANCELLED = "RIX-1002"

    # Source and record errors (2xxx)
    SOURCE_READ_ERROR = "RIX-2000"
    SOURCE_EMPTY = "RIX-2001"
    COMPOSITION_ERROR = "RIX-2002"

    # Embedding errors (3xxx)
    EMBEDDING_SERVICE_ERROR = "RIX-3000"
    EMBEDDING_DIMENSION_MISMATCH = "RIX-3001"
    EMBEDDING_INVALID_RESPONSE = "RIX-3002"

    # Index backend errors (4xxx)
    VECTOR_STORE_ERROR = "RIX-4000"
    COLLECTION_NOT_FOUND = "RIX-4001"
    COLLECTION_EXISTS = "RIX-4002"
    INDEX_CREATE_ERROR = "RIX-4003"
    INDEX_WRITE_ERROR = "RIX-4004"

    # Cutover errors (5xxx)
    VALIDATION_ERROR = "RIX-5000"
    EMPTY_INDEX = "RIX-5001"
    ALIAS_SWAP_ERROR = "RIX-5002"
    ALIAS_MIGRATION_ERROR = "RIX-5003"
    RETIRE_ERROR = "RIX-5004"


class ReindexError(Exception):
    """Base exception for all reindexing errors.

    Attributes:
        message: Human-readable error message.
        code: Structured error code.
        details: Additional error context.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for run summaries."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(ReindexError):
    """Configuration or environment error."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class SourceReadError(ReindexError):
    """Upstream records could not be read. Fatal before any index mutation."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SOURCE_READ_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class CompositionError(ReindexError):
    """A single record could not be turned into embedding input or payload."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.COMPOSITION_ERROR, details)


class EmbeddingError(ReindexError):
    """Embedding service error.

    Attributes:
        transient: True for timeouts, rate limits and 5xx responses,
            which the retry policy may retry.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EMBEDDING_SERVICE_ERROR,
        details: dict[str, Any] | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message, code, details)
        self.transient = transient

    @property
    def kind(self) -> str:
        """Failure class reported in run summaries."""
        return "transient" if self.transient else "permanent"


class VectorStoreError(ReindexError):
    """Index backend operation error."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VECTOR_STORE_ERROR,
        details: dict[str, Any] | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message, code, details)
        self.transient = transient


class IndexExistsError(VectorStoreError):
    """A physical index with the requested name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Collection already exists: {name}",
            code=ErrorCode.COLLECTION_EXISTS,
            details={"collection": name},
        )


class IndexCreateError(VectorStoreError):
    """Backend failed to create a physical index."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.INDEX_CREATE_ERROR, details)


class IndexWriteError(VectorStoreError):
    """A point batch could not be durably written after bounded retries."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.INDEX_WRITE_ERROR, details)


class ValidationError(ReindexError):
    """Shadow index failed validation and must not be promoted."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class AliasSwapError(ReindexError):
    """Alias could not be repointed. The alias binding is unchanged."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.ALIAS_SWAP_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class RetireError(ReindexError):
    """Old physical index could not be deleted. Cleanup debt only."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.RETIRE_ERROR, details)


class RunCancelledError(ReindexError):
    """The run was cancelled between states."""

    def __init__(
        self,
        message: str = "Reindex run cancelled",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.RUN_CANCELLED, details)
