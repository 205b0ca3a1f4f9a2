"""Configuration management using pydantic-settings."""

import warnings
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EmbeddingProvider(str, Enum):
    """Embedding provider selection."""

    OPENAI = "openai"
    AZURE = "azure"


class EmbeddingSettings(BaseSettings):
    """Embedding configuration (provider-agnostic)."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    embedding_provider: EmbeddingProvider = Field(
        default=EmbeddingProvider.OPENAI,
        description="Embedding provider: openai or azure. Env var: EMBEDDING_PROVIDER",
    )

    # OpenAI (direct) embeddings
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for embeddings. Env var: OPENAI_API_KEY",
    )
    openai_base_url: Optional[str] = Field(
        default=None,
        description="Optional OpenAI base URL (advanced). Env var: OPENAI_BASE_URL",
    )

    # Azure OpenAI embeddings (optional)
    azure_openai_endpoint: Optional[str] = Field(
        default=None, description="Azure OpenAI endpoint URL. Env var: AZURE_OPENAI_ENDPOINT"
    )
    azure_openai_api_key: Optional[str] = Field(
        default=None, description="Azure OpenAI API key. Env var: AZURE_OPENAI_API_KEY"
    )
    azure_openai_api_version: str = Field(
        default="2024-02-15-preview",
        description="Azure OpenAI API version. Env var: AZURE_OPENAI_API_VERSION",
    )

    # Model configuration
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name (OpenAI direct). Env var: EMBEDDING_MODEL",
    )
    embedding_deployment_name: Optional[str] = Field(
        default=None,
        description="Embedding deployment name (Azure OpenAI). Env var: EMBEDDING_DEPLOYMENT_NAME",
    )
    embedding_dimension: Optional[int] = Field(
        default=1536,
        description="Expected embedding dimension, None disables the check. Env var: EMBEDDING_DIMENSION",
    )
    embedding_batch_size: int = Field(
        default=100,
        description="Number of chunks sent per provider request. Env var: EMBEDDING_BATCH_SIZE",
    )
    embedding_timeout: float = Field(
        default=30.0,
        description="Embedding request timeout in seconds. Env var: EMBEDDING_TIMEOUT",
    )
    embedding_max_retries: int = Field(
        default=5,
        description="Retries for embedding requests. Env var: EMBEDDING_MAX_RETRIES",
    )
    embedding_initial_delay: float = Field(
        default=1.0,
        description="Initial backoff delay in seconds for embedding retries. Env var: EMBEDDING_INITIAL_DELAY",
    )
    embedding_update_batch_size: int = Field(
        default=250,
        description="Embeddings written back per batch. Env var: EMBEDDING_UPDATE_BATCH_SIZE",
    )
    embedding_update_concurrency: int = Field(
        default=2,
        description="Embedding write batches in flight. Env var: EMBEDDING_UPDATE_CONCURRENCY",
    )

    @property
    def provider(self) -> EmbeddingProvider:
        """Get the embedding provider."""
        return self.embedding_provider

    @property
    def is_configured(self) -> bool:
        """Check if the selected embedding provider is configured."""
        if self.embedding_provider == EmbeddingProvider.OPENAI:
            return bool(self.openai_api_key)
        if self.embedding_provider == EmbeddingProvider.AZURE:
            return bool(self.azure_openai_endpoint and self.azure_openai_api_key and self.embedding_deployment_name)
        return False

    @property
    def resolved_model_name(self) -> str:
        """Get the effective model/deployment name to use for embeddings."""
        if self.embedding_provider == EmbeddingProvider.AZURE:
            return self.embedding_deployment_name or ""
        return self.embedding_model

    @property
    def batch_size(self) -> int:
        return self.embedding_batch_size

    @property
    def timeout(self) -> float:
        return self.embedding_timeout

    @property
    def max_retries(self) -> int:
        return self.embedding_max_retries


class ChunkingSettings(BaseSettings):
    """Text segmentation configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    chunk_min_part_size: int = Field(
        default=500,
        description="Adjacent parts are merged while shorter than this many chars. Env var: CHUNK_MIN_PART_SIZE",
    )
    token_encoding: str = Field(
        default="cl100k_base",
        description="tiktoken encoding used for chunk token counts. Env var: TOKEN_ENCODING",
    )

    @property
    def min_part_size(self) -> int:
        return self.chunk_min_part_size


class RetrySettings(BaseSettings):
    """Retry configuration for network-facing operations."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    max_retries: int = Field(
        default=5, description="Maximum number of retries. Env var: MAX_RETRIES"
    )
    retry_initial_delay: float = Field(
        default=1.0,
        description="First backoff delay in seconds, doubled on every retry. Env var: RETRY_INITIAL_DELAY",
    )
    retry_max_jitter: float = Field(
        default=0.1,
        description="Upper bound of the random jitter added to each delay, in seconds. Env var: RETRY_MAX_JITTER",
    )
    retry_deadline: Optional[float] = Field(
        default=None,
        description="Absolute time budget in seconds for one retried call (None = unbounded). Env var: RETRY_DEADLINE",
    )

    @property
    def initial_delay(self) -> float:
        return self.retry_initial_delay

    @property
    def max_jitter(self) -> float:
        return self.retry_max_jitter

    @property
    def deadline(self) -> Optional[float]:
        return self.retry_deadline


class StoreSettings(BaseSettings):
    """Document store (persistence gateway) configuration."""

    model_config = SettingsConfigDict(env_prefix="STORE_", case_sensitive=False)

    url: str = Field(
        default="http://localhost:3210",
        description="Document store deployment URL. Env var: STORE_URL",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Deploy/admin key sent as a bearer token. Env var: STORE_API_KEY",
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds. Env var: STORE_TIMEOUT")
    download_timeout: float = Field(
        default=120.0, description="File download timeout in seconds. Env var: STORE_DOWNLOAD_TIMEOUT"
    )
    insert_batch_size: int = Field(
        default=250, description="Chunks per insert call. Env var: STORE_INSERT_BATCH_SIZE"
    )
    insert_concurrency: int = Field(
        default=2, description="Insert batches in flight. Env var: STORE_INSERT_CONCURRENCY"
    )


class GraphSettings(BaseSettings):
    """Similarity graph configuration."""

    model_config = SettingsConfigDict(env_prefix="GRAPH_", case_sensitive=False)

    enabled: bool = Field(
        default=True, description="Update the similarity graph after ingestion. Env var: GRAPH_ENABLED"
    )
    top_k: int = Field(default=5, description="Outgoing links kept per node. Env var: GRAPH_TOP_K")
    min_similarity: float = Field(
        default=0.0,
        description="Links need a similarity strictly above this value. Env var: GRAPH_MIN_SIMILARITY",
    )
    page_size: int = Field(
        default=500, description="Embedded chunks fetched per page. Env var: GRAPH_PAGE_SIZE"
    )
    upsert_batch_size: int = Field(
        default=50, description="Nodes/links per upsert call. Env var: GRAPH_UPSERT_BATCH_SIZE"
    )
    worker_processes: int = Field(
        default=1, description="Processes in the similarity worker pool. Env var: GRAPH_WORKER_PROCESSES"
    )

    @field_validator("top_k")
    @classmethod
    def validate_top_k(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("GRAPH_TOP_K must be > 0")
        return v


class ServerSettings(BaseSettings):
    """Server configuration."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    host: str = Field(default="0.0.0.0", description="Server host. Env var: HOST")
    port: int = Field(default=8004, description="HTTP server port. Env var: PORT")
    reload: bool = Field(
        default=False, description="Enable auto-reload (development only). Env var: RELOAD"
    )


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="semantic-ingestion", description="Application name. Env var: APP_NAME"
    )
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment. Env var: ENVIRONMENT",
    )
    debug: bool = Field(default=False, description="Enable debug mode. Env var: DEBUG")
    log_level: str = Field(
        default="INFO", description="Logging level. Env var: LOG_LEVEL"
    )

    allowed_file_types_str: Optional[str] = Field(
        default="pdf,txt,md",
        description="Allowed file types for processing (comma-separated). Env var: ALLOWED_FILE_TYPES_STR",
    )

    # Sub-settings
    embedding: Optional[EmbeddingSettings] = None
    chunking: Optional[ChunkingSettings] = None
    retry: Optional[RetrySettings] = None
    store: Optional[StoreSettings] = None
    graph: Optional[GraphSettings] = None
    server: Optional[ServerSettings] = None

    @model_validator(mode="after")
    def initialize_nested_settings(self) -> "Settings":
        """Initialize nested settings to ensure they read from environment."""
        if self.embedding is None:
            self.embedding = EmbeddingSettings()
        if self.chunking is None:
            self.chunking = ChunkingSettings()
        if self.retry is None:
            self.retry = RetrySettings()
        if self.store is None:
            self.store = StoreSettings()
        if self.graph is None:
            self.graph = GraphSettings()
        if self.server is None:
            self.server = ServerSettings()
        return self

    @field_validator("environment", mode="before")
    @classmethod
    def parse_environment(cls, v):
        """Parse environment from string."""
        if isinstance(v, str):
            try:
                return Environment(v.lower())
            except ValueError:
                return Environment.DEVELOPMENT
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @property
    def allowed_file_types(self) -> List[str]:
        """Get allowed file types as a list."""
        if not self.allowed_file_types_str:
            return ["pdf", "txt", "md"]
        return [
            ft.strip().lower()
            for ft in self.allowed_file_types_str.split(",")
            if ft.strip()
        ]

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def validate_configuration(self) -> None:
        """Warn about services that are not configured."""
        if not self.embedding.is_configured:
            warnings.warn(
                "Embeddings are not configured. For OpenAI direct set EMBEDDING_PROVIDER=openai and OPENAI_API_KEY. "
                "For Azure set EMBEDDING_PROVIDER=azure and AZURE_OPENAI_ENDPOINT/AZURE_OPENAI_API_KEY/"
                "EMBEDDING_DEPLOYMENT_NAME.",
                UserWarning,
            )

    def validate_production_settings(self) -> None:
        """Validate that production settings are secure."""
        if self.is_production:
            if self.debug:
                raise ValueError("DEBUG must be False in production")

            if not self.store.api_key:
                raise ValueError("STORE_API_KEY must be set in production")

            if not self.embedding.is_configured:
                raise ValueError(
                    "Embeddings must be configured in production. "
                    "Set EMBEDDING_PROVIDER and the matching OpenAI/Azure credentials."
                )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.validate_configuration()
        try:
            _settings.validate_production_settings()
        except ValueError as e:
            import logging

            logging.error(f"Configuration validation failed: {e}")
            if _settings.is_production:
                raise
    return _settings
