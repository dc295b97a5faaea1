"""
Runtime configuration and logging setup.

Settings are read from environment variables prefixed with ``NOTIFY_`` (or a
``.env`` file next to the working directory). Each process loads them once;
tests build their own ``Settings`` instances instead of touching the cache.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models import check_timezone


LOG_FORMAT = "%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s"


class Settings(BaseSettings):
    """Typed view of the notification engine configuration."""

    environment: str = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./notifications.db"

    # Used when a user's settings row is created on first access
    default_timezone: str = "America/Sao_Paulo"

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: str = "Convite Certo <noreply@convitecerto.local>"

    frontend_url: str = "http://localhost:3000"

    model_config = SettingsConfigDict(env_prefix="NOTIFY_", env_file=".env", extra="ignore")

    @field_validator("log_level", mode="after")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("default_timezone", mode="after")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        return check_timezone(v)

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (loaded once)."""
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the format shared by the API, CLI and demos."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
