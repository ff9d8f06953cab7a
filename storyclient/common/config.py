"""Configuration management."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "storyclient"
    app_env: str = "development"
    log_level: str = "INFO"
    json_logs: bool = False

    # Story server
    api_base_url: str = "https://stserver-lrr8.onrender.com"
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Generation polling (15s * 20 attempts ~ 5 minutes)
    poll_interval_seconds: float = Field(default=15.0, ge=0)
    poll_max_attempts: int = Field(default=20, ge=1)

    # Story list paging
    list_page_size: int = Field(default=20, ge=1)
    list_max_pages: int = Field(default=50, ge=1)

    # Session
    token_verify_debounce_seconds: float = Field(default=30.0, ge=0)

    # Local persistence keys
    stories_storage_key: str = "user_stories"
    auth_token_key: str = "auth_token"
    refresh_token_key: str = "refresh_token"
    storage_dir: str = ".storyclient"

    # Playback
    skip_seconds: float = Field(default=10.0, gt=0)

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
