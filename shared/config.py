"""Process-wide configuration loaded from the environment."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"

LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE,
        env_file_encoding=ENV_FILE_ENCODING,
        case_sensitive=False,
        extra="ignore",
    )

    # Email transport (Elastic Email v2)
    elastic_email_api_key: Optional[str] = Field(
        default=None,
        description="API key for Elastic Email; sends are refused without it",
    )
    elastic_email_base_url: str = "https://api.elasticemail.com/v2"
    email_from_address: str = Field(default="notificari@carvizio.ro", min_length=3)
    email_from_name: str = "Carvizio.ro"
    email_timeout_seconds: float = Field(default=10.0, gt=0)
    dedup_window_minutes: int = Field(
        default=30,
        ge=0,
        description="How long a sent dedup key blocks an identical re-send",
    )

    # Digest and browser delivery
    digest_interval_minutes: int = Field(default=15, gt=0)
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    push_ack_timeout_seconds: float = Field(default=3.0, gt=0)
    dashboard_url: str = "https://carvizio.ro/dashboard/service"

    # Storage
    data_dir: Path = Path("data")
    persist_preferences: bool = False

    # API
    api_tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Static bearer tokens mapped to '<role>:<user_id>'",
    )

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""
    get_settings.cache_clear()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for an entry point (API server or CLI)."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
