"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=False)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Admission control configuration.

    ``interval`` accepts a symbolic window (second, minute, hour, day and the
    sec/min/hr aliases) or a digit string interpreted as milliseconds.
    """

    enabled: bool = Field(
        True,
        description="Enable per-identifier admission control",
    )
    tokens_per_interval: int = Field(
        100,
        description="Bucket capacity; tokens regenerated over one interval",
    )
    interval: str = Field(
        "hour",
        description="Refill interval: second|minute|hour|day or milliseconds",
    )
    state_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Where remaining-token counts are persisted",
    )
    state_ttl_seconds: int = Field(
        3600,
        description="Expiry applied to persisted remaining-token counts",
        ge=1,
    )
    key_prefix: str = Field(
        "rate-limit:",
        description="Prefix for persisted state keys",
    )
    max_tracked_identifiers: int = Field(
        10000,
        description="Max buckets kept in process memory (LRU); 0 for unbounded",
        ge=0,
    )
    store_timeout_seconds: float = Field(
        0.5,
        description="Upper bound on each state store call; 0 disables the bound",
        ge=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers",
    )
    exempt_paths: str = Field(
        "/health,/docs,/openapi.json",
        description="Comma-separated paths that bypass admission control",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @property
    def exempt_path_set(self) -> frozenset[str]:
        return frozenset(p.strip() for p in self.exempt_paths.split(",") if p.strip())


class RedisSettings(BaseSettings):
    """Connection settings for the shared state store."""

    url: str = Field(
        "redis://localhost:6379",
        description="Redis connection URL",
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Socket read/write timeout",
    )
    socket_connect_timeout_seconds: float = Field(
        2.0,
        description="Socket connect timeout",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


def _build_app_settings() -> AppSettings:
    """Build app settings from environment.

    BaseSettings populates fields from environment variables; type checkers
    still treat them as constructor arguments, hence the factory.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> RedisSettings:
    return RedisSettings()  # type: ignore[call-arg]


def _build_log_settings() -> LogSettings:
    return LogSettings()  # type: ignore[call-arg]


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
