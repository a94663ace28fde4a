from __future__ import annotations

from functools import lru_cache
from typing import Any, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:5173,http://localhost:5173",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./gamemaster.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    llm_provider: str = Field(default="mock", alias="LLM_PROVIDER")
    llm_model: str = Field(default="", alias="LLM_MODEL")
    llm_base_url: str = Field(default="", alias="LLM_BASE_URL")
    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_timeout_sec: float = Field(default=60.0, alias="LLM_TIMEOUT_SEC")
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    ollama_base_url: str = Field(
        default="http://localhost:11434", alias="OLLAMA_BASE_URL"
    )

    embed_provider: str = Field(default="deterministic", alias="EMBED_PROVIDER")
    embed_model: str = Field(default="deterministic-v1", alias="EMBED_MODEL")
    embed_dim: int = Field(default=256, alias="EMBED_DIM")
    embed_openai_api_key: str = Field(default="", alias="EMBED_OPENAI_API_KEY")

    workflow_max_retries: int = Field(default=3, alias="WORKFLOW_MAX_RETRIES")
    workflow_phase_timeout_sec: float = Field(default=30.0, alias="WORKFLOW_PHASE_TIMEOUT_SEC")
    workflow_retry_backoff_sec: float = Field(default=0.0, alias="WORKFLOW_RETRY_BACKOFF_SEC")
    workflow_retry_backoff_max_sec: float = Field(
        default=8.0, alias="WORKFLOW_RETRY_BACKOFF_MAX_SEC"
    )

    memory_context_limit: int = Field(default=5, alias="MEMORY_CONTEXT_LIMIT")
    memory_context_threshold: float = Field(default=0.1, alias="MEMORY_CONTEXT_THRESHOLD")
    memory_auto_cleanup: bool = Field(default=False, alias="MEMORY_AUTO_CLEANUP")
    memory_cleanup_keep_count: int = Field(default=200, alias="MEMORY_CLEANUP_KEEP_COUNT")
    memory_cleanup_min_importance: int = Field(default=5, alias="MEMORY_CLEANUP_MIN_IMPORTANCE")

    dice_seed: Optional[int] = Field(default=None, alias="DICE_SEED")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
