"""redlimit - fixed-window rate limiting over a shared counter store."""

from redlimit.adapters.store import (
    AbstractCounterStore,
    AdmitOutcome,
    InMemoryCounterStore,
    RedisCounterStore,
    create_counter_store,
)
from redlimit.core.errors import (
    AppError,
    ConfigurationAppError,
    DurationParseError,
    StoreAppError,
)
from redlimit.schemas.rate_limit import RateLimitConfig
from redlimit.services.rate_limiter import LimitStatus, RateLimiter, RateLimitResult
from redlimit.utils.blocklist_cache import BlockStatus, LocalBlocklistCache
from redlimit.utils.duration import format_duration, ms, ms_precise, ms_to_friendly

__version__ = "0.1.0"

__all__ = [
    "AbstractCounterStore",
    "AdmitOutcome",
    "AppError",
    "BlockStatus",
    "ConfigurationAppError",
    "DurationParseError",
    "InMemoryCounterStore",
    "LimitStatus",
    "LocalBlocklistCache",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "RedisCounterStore",
    "StoreAppError",
    "create_counter_store",
    "format_duration",
    "ms",
    "ms_precise",
    "ms_to_friendly",
]
