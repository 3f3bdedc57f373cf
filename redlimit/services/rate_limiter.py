"""Fixed-window rate limiter backed by a shared counter store.

Each check runs through up to three gates, stopping at the first rejection:

1. the local blocklist, which remembers keys already known to be over quota
   until their window lifts (no store traffic);
2. the cooldown gate, which rejects a request arriving less than
   ``cooldown_ms`` after the previous one without consuming quota;
3. the atomic admission step in the store, which increments the counter and
   decides against ``limit``.

Store failures never escape :meth:`RateLimiter.check`. They are reported to
the configured error logger and turned into a rejection: the limiter fails
closed.

Example:
    >>> store = RedisCounterStore.from_url("redis://localhost:6379/0")
    >>> limiter = RateLimiter(store, key_prefix="api", window_ms="1m", limit=60)
    >>> result = await limiter.check(client_ip)
    >>> if not result.success:
    ...     raise HTTPException(status_code=429)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError

from redlimit.adapters.store.base import AbstractCounterStore
from redlimit.core.errors import ConfigurationAppError
from redlimit.schemas.rate_limit import RateLimitConfig
from redlimit.utils.blocklist_cache import LocalBlocklistCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorLogger = Callable[[str], None]

TOO_SOON_MESSAGE = "Request too soon after the last one"
COOLDOWN_FAILED_MESSAGE = "Failed to check difference between requests"
LIMIT_FAILED_MESSAGE = "Failed to rate limit request"
RESET_FAILED_MESSAGE = "Failed to reset rate limit"


class LimitStatus(str, Enum):
    """Diagnostic classification of a check outcome."""

    ALLOWED = "allowed"
    LOCAL_BLOCKED = "local_blocked"
    COOLDOWN = "cooldown"
    OVER_LIMIT = "over_limit"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        success: Whether the request is admitted. Callers branch on this only.
        remaining: Requests left in the current window (0 when rejected).
        limit: Max requests per window.
        ttl_ms: Milliseconds until the rejection lifts (window or cooldown);
            for admitted requests, until the window resets.
        key: Store key used for this identifier.
        status: Why the request was admitted or rejected.
        reset: Coroutine function clearing this key's state.
        reset_at_ms: Epoch milliseconds when the window resets (0 if unknown).
        error: Description for cooldown and store-error rejections.
    """

    success: bool
    remaining: int
    limit: int
    ttl_ms: int
    key: str
    status: LimitStatus
    reset: Callable[[], Awaitable[None]] = field(repr=False, compare=False)
    reset_at_ms: int = 0
    error: str | None = None


def _default_error_logger(message: str) -> None:
    logger.error(message)


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class RateLimiter:
    """Per-identifier admission control over a shared counter store.

    The store is shared and owned by the caller; the local blocklist belongs
    to this instance and is never shared, even between limiters using the
    same prefix.
    """

    def __init__(
        self,
        store: AbstractCounterStore,
        config: RateLimitConfig | None = None,
        *,
        error_logger: ErrorLogger | None = None,
        clock: Callable[[], float] = time.time,
        **options: Any,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared counter store.
            config: Prebuilt configuration. Mutually exclusive with ``options``.
            error_logger: Called with a message whenever the store fails.
                Defaults to the module logger at ERROR level.
            clock: Time source returning UNIX time in seconds.
            **options: RateLimitConfig fields (key_prefix, window_ms, limit,
                cooldown_ms, use_local_cache, timeout_ms,
                local_cache_max_entries).

        Raises:
            ConfigurationAppError: If the store is missing or the config is invalid.
        """
        if store is None:
            raise ConfigurationAppError(
                code="store_missing",
                message="No counter store provided.",
            )
        if config is not None and options:
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message="Pass either a RateLimitConfig or keyword options, not both",
            )
        if config is None:
            config = self._build_config(options)

        self._store = store
        self._config = config
        self._clock = clock
        self._error_logger = error_logger or _default_error_logger
        self._timeout = config.timeout_ms / 1000 if config.timeout_ms else None
        self._local_cache = (
            LocalBlocklistCache(max_entries=config.local_cache_max_entries, clock=clock)
            if config.use_local_cache
            else None
        )

    @staticmethod
    def _build_config(options: dict[str, Any]) -> RateLimitConfig:
        try:
            return RateLimitConfig(**options)
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            loc = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message=f"Invalid rate limit configuration: {first.get('msg', exc)}",
                details={"field": loc},
            ) from exc

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    @property
    def local_cache(self) -> LocalBlocklistCache | None:
        return self._local_cache

    @property
    def limit(self) -> int:
        return self._config.limit

    def key_for(self, identifier: str) -> str:
        """Store key for ``identifier``."""
        return f"{self._config.key_prefix}:{identifier}"

    @staticmethod
    def last_key_for(key: str) -> str:
        """Cooldown key paired with a limiter key."""
        return f"{key}:last"

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def check(self, identifier: str) -> RateLimitResult:
        """Decide whether ``identifier`` may proceed right now.

        Args:
            identifier: Caller identity, usually a client IP address.

        Returns:
            RateLimitResult. Never raises for store failures.
        """
        key = self.key_for(identifier)
        now = self._now_ms()

        if self._local_cache is not None:
            block = self._local_cache.is_blocked(key)
            if block.blocked:
                return self._result(
                    key,
                    status=LimitStatus.LOCAL_BLOCKED,
                    remaining=0,
                    ttl_ms=block.reset_at - now,
                    reset_at_ms=block.reset_at,
                )

        cooldown = self._config.cooldown_ms
        if cooldown > 0:
            try:
                last = await self._call(self._store.get(self.last_key_for(key)))
                elapsed = now - int(last) if last is not None else None
            except Exception as exc:
                self._error_logger(f"{COOLDOWN_FAILED_MESSAGE} - {_describe(exc)}")
                return self._failure(key, COOLDOWN_FAILED_MESSAGE)

            # A record stamped ahead of our clock still waits one cooldown at most
            if elapsed is not None and elapsed < cooldown:
                return self._result(
                    key,
                    status=LimitStatus.COOLDOWN,
                    remaining=0,
                    ttl_ms=min(cooldown - elapsed, cooldown),
                    error=TOO_SOON_MESSAGE,
                )

        try:
            outcome = await self._call(
                self._store.admit(
                    key,
                    window_ms=self._config.window_ms,
                    last_key=self.last_key_for(key) if cooldown > 0 else None,
                    now_ms=now,
                    cooldown_ms=cooldown,
                )
            )
            current = int(outcome.count)
            ttl_ms = max(int(outcome.ttl_ms), 0)
        except Exception as exc:
            self._error_logger(f"{LIMIT_FAILED_MESSAGE} - {_describe(exc)}")
            return self._failure(key, LIMIT_FAILED_MESSAGE)

        limit = self._config.limit
        success = current <= limit
        reset_at = now + ttl_ms

        if not success and self._local_cache is not None:
            self._local_cache.block_until(key, reset_at)

        return self._result(
            key,
            status=LimitStatus.ALLOWED if success else LimitStatus.OVER_LIMIT,
            remaining=max(limit - current, 0),
            ttl_ms=ttl_ms,
            reset_at_ms=reset_at,
        )

    async def reset(self, key: str) -> None:
        """Clear the counter, cooldown record and local block for ``key``.

        Idempotent. Store failures are reported to the error logger and
        swallowed; the local block is cleared regardless.
        """
        try:
            await self._call(self._store.delete(key, self.last_key_for(key)))
        except Exception as exc:
            self._error_logger(f"{RESET_FAILED_MESSAGE} - {_describe(exc)}")
        finally:
            if self._local_cache is not None:
                self._local_cache.pop(key)

    async def reset_identifier(self, identifier: str) -> None:
        """Reset by identifier instead of store key."""
        await self.reset(self.key_for(identifier))

    async def health_check(self) -> bool:
        """Ping the store; failures are reported and return False."""
        try:
            return bool(await self._call(self._store.ping()))
        except Exception as exc:
            self._error_logger(f"Failed to connect to counter store - {_describe(exc)}")
            return False

    def _reset_callback(self, key: str) -> Callable[[], Awaitable[None]]:
        async def _reset() -> None:
            await self.reset(key)

        return _reset

    def _result(
        self,
        key: str,
        *,
        status: LimitStatus,
        remaining: int,
        ttl_ms: int,
        reset_at_ms: int = 0,
        error: str | None = None,
    ) -> RateLimitResult:
        return RateLimitResult(
            success=status is LimitStatus.ALLOWED,
            remaining=remaining,
            limit=self._config.limit,
            ttl_ms=max(ttl_ms, 0),
            key=key,
            status=status,
            reset=self._reset_callback(key),
            reset_at_ms=reset_at_ms,
            error=error,
        )

    def _failure(self, key: str, message: str) -> RateLimitResult:
        return self._result(
            key,
            status=LimitStatus.STORE_ERROR,
            remaining=0,
            ttl_ms=0,
            error=message,
        )
