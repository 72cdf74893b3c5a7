"""Configuration models for the KPI AI core."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "local"]

DEFAULT_LOCAL_ENDPOINT = "http://localhost:8000/ai/chat"


def default_store_path() -> Path:
    return Path.cwd() / ".local-storage" / "vector-store.json"


class OrchestratorSettings(BaseSettings):
    """Settings for the service orchestrator, sourced from `AI_*` env vars."""

    model_config = SettingsConfigDict(
        env_prefix="AI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    provider: ProviderName = Field(
        default="anthropic",
        validation_alias=AliasChoices("AI_PROVIDER", "AI_SERVICE_PROVIDER"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "AI_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"
        ),
    )
    endpoint: str | None = None

    anthropic_model: str = "claude-3-sonnet-20240229"
    openai_model: str = "gpt-4"
    local_model: str = "local-llm"
    default_max_tokens: int = Field(default=4000, ge=1)
    default_temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    max_retries: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    timeout_ms: int = Field(default=30_000, gt=0)
    rate_limit_rpm: int = Field(default=100, ge=1)

    cache_enabled: bool = True
    cache_ttl_ms: int = Field(default=300_000, ge=0)
    cache_sweep_interval_seconds: float = Field(default=300.0, gt=0.0)

    history_limit: int = Field(default=1000, ge=1)
    cost_per_call_usd: float = Field(default=0.01, ge=0.0)
    debug: bool = False

    @property
    def local_endpoint(self) -> str:
        return self.endpoint or DEFAULT_LOCAL_ENDPOINT


class VectorStoreConfig(BaseModel):
    """Configures the JSON-file vector store."""

    path: Path = Field(default_factory=default_store_path)
    enforce_dimension: bool = True


class KnowledgeBaseConfig(BaseModel):
    """Configures document chunking and context retrieval."""

    chunk_size: int = Field(default=1000, ge=1)
    top_k: int = Field(default=5, ge=1)
    preview_chars: int = Field(default=100, ge=0)
    embedding_model: str = "text-embedding-3-small"
