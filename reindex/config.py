"""Pipeline configuration using Pydantic Settings.

All configuration is loaded from environment variables.
No secrets are hardcoded. A fresh Settings object is built once per run
and handed to every component explicitly.
"""

from enum import Enum

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EmbeddingSettings(BaseSettings):
    """Embedding service configuration.

    Targets any OpenAI-compatible ``/embeddings`` endpoint.
    """

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Embedding service base URL",
    )
    model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Bearer token for the embedding service",
    )
    dimensions: int | None = Field(
        default=None,
        ge=1,
        description="Vector size; required for models outside the known table",
    )
    batch_size: int = Field(
        default=32,
        ge=1,
        description="Texts per embedding request",
    )
    max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Maximum in-flight embedding requests",
    )
    timeout: float = Field(
        default=30.0,
        gt=0,
        description="Request timeout in seconds",
    )


class QdrantSettings(BaseSettings):
    """Qdrant index backend configuration."""

    model_config = SettingsConfigDict(env_prefix="QDRANT_")

    url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Qdrant API key (optional for local)",
    )
    alias_name: str = Field(
        default="travel_knowledge",
        description="Logical index name read by the query server",
    )
    collection_prefix: str | None = Field(
        default=None,
        description="Prefix for physical index names (defaults to the alias name)",
    )
    timeout: int = Field(
        default=30,
        ge=1,
        description="Backend request timeout in seconds",
    )
    write_batch_size: int = Field(
        default=50,
        ge=1,
        description="Points per upsert request",
    )
    allow_direct_migration: bool = Field(
        default=False,
        description="Permit the one-way move from direct collection to alias addressing",
    )

    @property
    def prefix(self) -> str:
        """Prefix used when naming new physical indexes."""
        return self.collection_prefix or self.alias_name


class RetrySettings(BaseSettings):
    """Retry policy shared by embedding calls and index writes."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per call, including the first",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the first retry in seconds",
    )
    multiplier: float = Field(
        default=2.0,
        ge=1,
        description="Backoff growth factor per attempt",
    )
    max_delay: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound on a single backoff delay",
    )


class PipelineSettings(BaseSettings):
    """Record processing configuration."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    source_path: str = Field(
        default="data",
        description="JSON export file, or directory holding exports",
    )
    min_text_length: int = Field(
        default=5,
        ge=0,
        description="Composed text shorter than this falls back to id and type",
    )


class Settings(BaseSettings):
    """Main pipeline settings.

    Aggregates all configuration sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    # Nested settings
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


def load_settings() -> Settings:
    """Load settings for a single pipeline run.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()
