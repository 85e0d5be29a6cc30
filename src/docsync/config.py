"""
Configuration for the sync engine.

Uses Pydantic Settings to load environment variables.
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SyncSettings(BaseSettings):
    """Settings shared by every connector."""

    # HTTP
    http_timeout_seconds: float = Field(
        60.0,
        description="Timeout for provider requests in seconds",
        gt=0,
    )
    max_rate_limit_retries: int = Field(
        3,
        description="Retries after a 429 response before the request fails",
        ge=0,
    )

    # Content
    max_content_size_bytes: int = Field(
        5 * 1024 * 1024,  # 5MB
        description="Maximum content size to download (capped at 5MB)",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        "INFO",
        description="Logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="DOCSYNC_",
        env_file=".env",
        extra="ignore",
    )


_settings: SyncSettings | None = None


def get_settings() -> SyncSettings:
    """
    Get sync settings from environment.

    Returns:
        SyncSettings instance.
    """
    global _settings
    if _settings is None:
        _settings = SyncSettings()  # type: ignore[call-arg]
    return _settings


def reset_settings() -> None:
    """
    Reset settings for testing.

    Clears the cached settings instance.
    """
    global _settings
    _settings = None


def configure_logging(settings: SyncSettings | None = None) -> None:
    """
    Configure root logging for a process embedding the engine.

    Args:
        settings: Settings to read the level from (defaults to environment).
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
    )
