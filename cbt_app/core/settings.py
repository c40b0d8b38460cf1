"""Environment-driven settings for the CBT service."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cbt_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT


class Settings(BaseSettings):
    """Application settings loaded from the environment or a ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(default=DEFAULT_HOST, alias="CBT_HOST")
    port: int = Field(default=DEFAULT_PORT, alias="CBT_PORT")
    log_level: str = Field(default="INFO", alias="CBT_LOG_LEVEL")

    essay_scorer_api_key: str | None = Field(default=None, alias="ESSAY_SCORER_API_KEY")
    essay_scorer_api_url: str = Field(
        default="https://api.anthropic.com/v1/messages", alias="ESSAY_SCORER_API_URL"
    )
    essay_scorer_model: str = Field(default="claude-3-opus-20240229", alias="ESSAY_SCORER_MODEL")
    essay_scorer_timeout: float = Field(default=30.0, alias="ESSAY_SCORER_TIMEOUT")

    shuffle_seed: int | None = Field(default=None, alias="CBT_SHUFFLE_SEED")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
