"""Limiter configuration model.

Out-of-range values are coerced to defaults rather than rejected, so a
limiter can always be built from loosely validated settings. Only a missing
or empty key prefix is an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from redlimit.utils.duration import to_ms

if TYPE_CHECKING:
    from redlimit.core.config import LimiterSettings

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 1000
DEFAULT_LIMIT = 1
FALLBACK_LIMIT = 5
DEFAULT_COOLDOWN_MS = 0


class RateLimitConfig(BaseModel):
    """Immutable limiter configuration."""

    model_config = ConfigDict(frozen=True)

    key_prefix: str = Field(
        ...,
        min_length=1,
        description="Namespace for every key this limiter touches",
    )
    window_ms: int = Field(
        DEFAULT_WINDOW_MS,
        description="Fixed window length in milliseconds (or a duration string)",
    )
    limit: int = Field(
        DEFAULT_LIMIT,
        description="Maximum admitted requests per window",
    )
    cooldown_ms: int = Field(
        DEFAULT_COOLDOWN_MS,
        description="Minimum spacing between two requests; 0 disables the check",
    )
    use_local_cache: bool = Field(
        True,
        description="Short-circuit known over-quota keys without a store round trip",
    )
    timeout_ms: int | None = Field(
        None,
        ge=1,
        description="Deadline applied to each store round trip",
    )
    local_cache_max_entries: int | None = Field(
        None,
        ge=1,
        description="Bound on the local blocklist size",
    )

    @field_validator("window_ms", mode="before")
    @classmethod
    def _default_window(cls, value: Any) -> int:
        window = to_ms(value)
        if window is None or window < 0:
            return DEFAULT_WINDOW_MS
        return window

    @field_validator("limit", mode="before")
    @classmethod
    def _default_limit(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_LIMIT
        return value

    @field_validator("limit")
    @classmethod
    def _fallback_limit(cls, value: int) -> int:
        return FALLBACK_LIMIT if value < 1 else value

    @field_validator("cooldown_ms", mode="before")
    @classmethod
    def _default_cooldown(cls, value: Any) -> int:
        cooldown = to_ms(value)
        if cooldown is None or cooldown < 0:
            return DEFAULT_COOLDOWN_MS
        return cooldown

    @field_validator("cooldown_ms")
    @classmethod
    def _clamp_cooldown(cls, value: int, info: ValidationInfo) -> int:
        window = info.data.get("window_ms")
        if window is not None and value > window:
            logger.warning(
                "rate_limit.cooldown_clamped",
                extra={"cooldown_ms": value, "window_ms": window},
            )
            return window
        return value

    @property
    def cooldown_enabled(self) -> bool:
        return self.cooldown_ms > 0

    @classmethod
    def from_settings(cls, limiter_settings: "LimiterSettings") -> "RateLimitConfig":
        """Build a config from the RATELIMIT_* environment settings."""
        return cls(
            key_prefix=limiter_settings.key_prefix,
            window_ms=limiter_settings.window,
            limit=limiter_settings.limit,
            cooldown_ms=limiter_settings.cooldown,
            use_local_cache=limiter_settings.use_local_cache,
            timeout_ms=limiter_settings.timeout_ms,
            local_cache_max_entries=limiter_settings.local_cache_max_entries,
        )
