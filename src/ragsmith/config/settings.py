"""
Configuration system with Pydantic Settings and validation.

Every section can be overridden from the environment using the ``RAGSMITH_``
prefix and ``__`` as the nesting delimiter, e.g.
``RAGSMITH_RETRIEVAL__RRF_K=30`` or ``RAGSMITH_STORE__BACKEND=memory``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ModelEndpoint(BaseModel):
    """Configuration for a model endpoint."""

    name: str = Field(..., description="Model name (e.g., 'text-embedding-3-small')")
    base_url: str = Field("https://api.openai.com/v1", description="Base URL for the model API")
    api_key: str | None = Field(None, description="API key if required")
    timeout: float = Field(60.0, gt=0, description="Request timeout in seconds")
    temperature: float = Field(0.2, ge=0.0, le=2.0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class ModelsConfig(BaseModel):
    """Configuration for all model endpoints."""

    embeddings: ModelEndpoint = Field(
        default_factory=lambda: ModelEndpoint(name="text-embedding-3-small")
    )
    generation: ModelEndpoint = Field(default_factory=lambda: ModelEndpoint(name="gpt-4.1-mini"))


class RetryConfig(BaseModel):
    """Exponential backoff for transient service failures."""

    max_retries: int = Field(4, ge=0)
    base_delay: float = Field(0.5, gt=0)
    max_delay: float = Field(8.0, gt=0)
    jitter: float = Field(0.25, ge=0)


class StoreConfig(BaseModel):
    """Configuration for the hybrid store backend."""

    backend: Literal["chroma", "memory"] = Field("chroma")
    uri: str = Field("./.chroma")
    collection_name: str = Field("rag_chunks")


class IndexingConfig(BaseModel):
    """Configuration for document loading and index builds."""

    data_directory: Path = Field(Path("./data"))
    extensions: list[str] = Field(default_factory=lambda: [".txt", ".md"])
    chunk_size: int = Field(1200, gt=0)
    chunk_overlap: int = Field(200, ge=0)
    batch_size: int = Field(64, gt=0)
    default_mode: Literal["full", "incremental"] = Field("incremental")

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]


class RetrievalConfig(BaseModel):
    """Configuration for query-time retrieval and selection."""

    per_query_top_k: int = Field(8, gt=0)
    final_top_k: int = Field(25, gt=0)
    context_k: int = Field(6, gt=0)
    rrf_k: int = Field(60, gt=0)
    per_query_expansion: int = Field(3, ge=1)
    final_expansion: int = Field(4, ge=1)
    enable_hybrid: bool = Field(True)
    enable_multi_query: bool = Field(True)
    enable_hyde: bool = Field(True)
    max_rewrites: int = Field(3, ge=0)
    diversity_lambda: float = Field(0.8, ge=0.0, le=1.0)
    diversity_min_keep: float = Field(0.1)
    context_token_budget: int | None = Field(None, gt=0)


class CacheConfig(BaseModel):
    """Location of the on-disk caches and the index manifest."""

    directory: Path = Field(Path("./.cache"))

    @property
    def embeddings_path(self) -> Path:
        return self.directory / "embeddings.json"

    @property
    def augment_path(self) -> Path:
        return self.directory / "augment.json"

    @property
    def answers_path(self) -> Path:
        return self.directory / "answers.json"

    @property
    def manifest_path(self) -> Path:
        return self.directory / "record_manager.json"


class ObservabilityConfig(BaseModel):
    """Configuration for logging and monitoring."""

    log_level: str = Field("INFO")
    service_name: str = Field("ragsmith")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="RAGSMITH_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    models: ModelsConfig = Field(default_factory=ModelsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    environment: str = Field(
        "development", description="Environment: development, staging, production"
    )
    debug: bool = Field(False)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
