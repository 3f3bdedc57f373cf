"""Library configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from redlimit.utils.duration import to_ms


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

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_limiter_settings() -> "LimiterSettings":
    return LimiterSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class RedisSettings(BaseSettings):
    """Counter store connection configuration."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL shared by every limiter instance",
    )
    backend: str = Field(
        "redis",
        description="Counter store backend: 'redis' or 'memory' (single process only)",
    )
    socket_timeout_seconds: float | None = Field(
        5.0,
        description="Socket timeout applied by the Redis client",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LimiterSettings(BaseSettings):
    """Defaults for the process-wide limiter used by the FastAPI dependency."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting in the FastAPI dependency",
    )
    key_prefix: str = Field(
        "rate-limit",
        description="Namespace for all limiter keys",
        min_length=1,
    )
    window: int = Field(
        1000,
        description="Window length in ms, or a duration string such as '1m'",
    )
    limit: int = Field(
        1,
        description="Maximum admitted requests per window",
    )
    cooldown: int = Field(
        0,
        description="Minimum spacing between two requests in ms, or a duration string",
    )
    use_local_cache: bool = Field(
        True,
        description="Short-circuit known over-quota identifiers in process",
    )
    timeout_ms: int | None = Field(
        None,
        description="Deadline for each store round trip; unset waits indefinitely",
        ge=1,
    )
    local_cache_max_entries: int | None = Field(
        None,
        description="Bound on the local blocklist size (unbounded when unset)",
        ge=1,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    trust_forwarded_for: bool = Field(
        True,
        description="Use the first X-Forwarded-For hop as the client identifier",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        case_sensitive=False,
    )

    @field_validator("window", "cooldown", mode="before")
    @classmethod
    def _parse_duration(cls, value: int | str) -> int | None:
        return to_ms(value)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Level of the redlimit logger")
    format: str = Field("json", description="'json' or 'plain'")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
