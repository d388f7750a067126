"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class RateLimitSettings(BaseSettings):
    """Rate limit policy configuration.

    These values are turned into an explicit ``RateLimitPolicy`` at wiring
    time; the decision engine never reads settings directly.
    """

    threshold: int = Field(
        10,
        description="Maximum number of requests admitted per window (per identity key)",
        ge=1,
    )
    window_minutes: int = Field(
        1,
        description="Fixed window length in minutes, measured from the first request",
        ge=1,
    )
    ttl_sweep_grace_seconds: int = Field(
        60,
        description="Assumed maximum lag of the store TTL sweep behind the marked expiry",
        ge=0,
    )
    max_attempts: int = Field(
        3,
        description="Maximum store attempts when write conflicts occur",
        ge=1,
    )
    initial_backoff_ms: int = Field(
        100,
        description="Backoff before the second attempt, in milliseconds",
        ge=0,
    )
    backoff_multiplier: float = Field(
        2.0,
        description="Factor applied to the backoff after every retry",
        ge=1.0,
    )
    backoff_jitter_ratio: float = Field(
        0.0,
        description="Random jitter applied to each backoff, as a fraction of it (0 disables)",
        ge=0.0,
        le=1.0,
    )
    retry_after_padding_seconds: int = Field(
        0,
        description="Extra seconds added to the Retry-After header by the HTTP layer",
        ge=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Window record store configuration.

    ``memory`` keeps windows in-process (single replica only). ``mongodb``
    shares windows across replicas through a TTL-indexed collection.
    """

    backend: str = Field(
        "memory",
        description="Store backend name (memory, mongodb)",
    )
    mongodb_uri: str = Field(
        "mongodb://localhost:27017",
        description="MongoDB connection string",
    )
    database: str = Field(
        "ratelimiter",
        description="MongoDB database holding the window records",
    )
    collection: str = Field(
        "rateLimiter",
        description="MongoDB collection holding the window records",
    )
    server_selection_timeout_ms: int = Field(
        2000,
        description="How long to wait for a reachable MongoDB server before failing",
        ge=1,
    )
    sweep_lag_seconds: int | None = Field(
        None,
        description=(
            "Simulated TTL sweep lag for the in-memory backend; "
            "defaults to RATE_LIMIT_TTL_SWEEP_GRACE_SECONDS"
        ),
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: str = Field(
        "json",
        description="Log format: json or plain",
    )
    output: str = Field(
        "stdout",
        description="Log destination: stdout or file",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


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


def _build_rate_limit_settings() -> RateLimitSettings:
    return RateLimitSettings()


def _build_store_settings() -> StoreSettings:
    return StoreSettings()


def _build_log_settings() -> LogSettings:
    return LogSettings()


def _build_app_settings() -> AppSettings:
    return AppSettings()


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
