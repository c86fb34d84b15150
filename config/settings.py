"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. Every key uses
the ``SEGURITAC_`` prefix (e.g. ``SEGURITAC_RATE_LIMIT_REQUESTS=30``);
GCP settings keep their canonical environment variable names via
``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the SegurITAC assistant engine.

    Environment variables are loaded from a ``.env`` file when present.
    All values are read once at startup; the knowledge base is the only
    piece that can be hot-reloaded, and only by bumping its version.
    """

    model_config = SettingsConfigDict(
        env_prefix="SEGURITAC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # ── Knowledge base & emergency phrases ─────────────────────────────
    # ``None`` selects the files bundled in ``src/data``.
    knowledge_base_path: str | None = None
    emergency_phrases_path: str | None = None

    # ── Intent classifier ──────────────────────────────────────────────
    classifier_min_confidence: float = Field(default=0.15, ge=0.0, le=1.0)
    classifier_tie_break: Literal["declaration", "urgency"] = "declaration"

    # ── Response cache ─────────────────────────────────────────────────
    cache_ttl_seconds: float = Field(default=600.0, gt=0)  # 10 minutes
    fallback_cache_ttl_seconds: float = Field(default=60.0, gt=0)
    cache_max_entries: int = Field(default=2_048, ge=1)
    cache_shards: int = Field(default=16, ge=1)

    # ── Rate limiting (per user, sliding window) ───────────────────────
    rate_limit_requests: int = Field(default=20, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_idle_seconds: float = Field(default=3_600.0, gt=0)
    rate_limit_shards: int = Field(default=16, ge=1)

    # ── Generative backend ─────────────────────────────────────────────
    generative_backend: Literal["ollama", "gemini", "disabled"] = "ollama"
    generation_timeout_seconds: float = Field(default=8.0, gt=0)
    generation_max_tokens: int = Field(default=150, ge=1)
    generation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    # Ollama (local model)
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"

    # Vertex AI / Gemini (remote API)
    gcp_project_id: str = Field(default="", validation_alias="GCP_PROJECT_ID")
    vertex_ai_model: str = Field(default="gemini-2.0-flash", validation_alias="VERTEX_AI_MODEL")
    vertex_ai_location: str = Field(default="us-central1", validation_alias="VERTEX_AI_LOCATION")

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
