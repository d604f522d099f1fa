from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # LLM (optional: empty API key means no LLM configured, basic generation only)
    llm_provider: str = "openai"  # "openai" | "anthropic"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = ""  # Optional OpenAI-compatible proxy URL (e.g. OpenRouter)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 30.0
    llm_cost_per_1k_tokens: float = 0.000375

    # Credential vault: 64 hex chars (AES-256 key). Required to store or read tokens.
    encryption_key: str = ""

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_app_id: str = ""
    github_app_private_key: str = ""
    github_timeout_seconds: float = 15.0
    github_max_concurrent_repos: int = 5

    # Storage (empty string means in-memory stores)
    standup_db_path: str = ""

    # Standup defaults
    activity_lookback_days: int = 1
    default_tone: str = "professional"
    default_length: str = "medium"

    # "production" | "development"
    app_mode: str = "production"
    jwt_secret: str = ""

    # Daily schedule (optional: empty = scheduler disabled)
    standup_schedule_cron: str = ""  # e.g. "0 7 * * 1-5"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
