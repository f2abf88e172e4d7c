"""Configuration for the Edith Mission Control server.

Settings come from ``EDITH_*`` environment variables or a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_config_dir() -> Path:
    """Return the Edith config directory (~/.edith)."""
    return Path.home() / ".edith"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EDITH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(default_factory=lambda: get_config_dir() / "mission_control")
    storage_backend: Literal["file", "memory"] = "file"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    cors_allowed_origins: list[str] = Field(default_factory=list)

    # Resource manager defaults
    default_currency: str = "USD"
    default_warning_threshold: float = Field(default=0.8, gt=0, le=1)

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
