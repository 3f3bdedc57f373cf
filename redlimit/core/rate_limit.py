"""Rate limiting dependency for FastAPI routes.

This module wires the limiter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency function only.
- Fail closed: a store outage rejects requests with 429 like any other limit.
- Safe defaults: limiter built from RATELIMIT_* / REDIS_* settings.

Usage:
    >>> enforce = rate_limit_dependency()
    >>> @app.get("/items", dependencies=[Depends(enforce)])
    ... async def items(): ...
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request, status

from redlimit.adapters.store.base import AbstractCounterStore
from redlimit.adapters.store.factory import create_counter_store
from redlimit.core.config import settings
from redlimit.core.logging import LimiterRecordFilter
from redlimit.schemas.rate_limit import RateLimitConfig
from redlimit.services.rate_limiter import LimitStatus, RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)
logger.addFilter(LimiterRecordFilter())


_store: AbstractCounterStore | None = None
_store_config: str | None = None
_limiter: RateLimiter | None = None
_limiter_config: str | None = None


async def get_rate_limiter() -> RateLimiter:
    """Return a process-wide limiter instance.

    The instance is cached in-module so the local blocklist survives across
    requests. If configuration changes (primarily in tests), it is rebuilt.
    The counter store is cached on the REDIS_* settings alone: a limiter
    rebuild reuses it, and a store replaced by new connection settings is
    closed first.

    Returns:
        RateLimiter: Configured limiter instance.
    """

    global _store, _store_config, _limiter, _limiter_config

    store_config = settings.redis.model_dump_json()
    limiter_config = settings.limiter.model_dump_json()

    if _store is None or _store_config != store_config:
        previous = _store
        _store = create_counter_store(settings.redis)
        _store_config = store_config
        _limiter = None
        if previous is not None:
            await previous.aclose()

    if _limiter is None or _limiter_config != limiter_config:
        _limiter = RateLimiter(_store, RateLimitConfig.from_settings(settings.limiter))
        _limiter_config = limiter_config

    return _limiter


async def shutdown_rate_limiter() -> None:
    """Close the cached store and forget the cached limiter.

    Call from the application's shutdown hook.
    """

    global _store, _store_config, _limiter, _limiter_config

    store = _store
    _store = _store_config = None
    _limiter = _limiter_config = None
    if store is not None:
        await store.aclose()


def client_identifier(request: Request) -> str:
    """Identify the caller of ``request``.

    Args:
        request: FastAPI request.

    Returns:
        str: First X-Forwarded-For hop when trusted, else the peer address,
            else "anonymous".
    """

    if settings.limiter.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop

    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def _retry_after_seconds(result: RateLimitResult) -> int:
    # Round up so clients never retry before the window lifts
    return max(0, -(-result.ttl_ms // 1000))


def _build_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "Retry-After": str(_retry_after_seconds(result)),
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at_ms // 1000),
    }


def rate_limit_dependency(
    limiter: RateLimiter | None = None,
    *,
    identifier: Callable[[Request], str] = client_identifier,
) -> Callable[[Request], Awaitable[None]]:
    """Build a FastAPI dependency enforcing rate limits.

    Args:
        limiter: Limiter to use; defaults to :func:`get_rate_limiter` at call time.
        identifier: Maps a request to the limiter identifier.

    Returns:
        Async dependency raising HTTP 429 when the request is rejected.
    """

    async def enforce_rate_limit(request: Request) -> None:
        """Consume one unit of the caller's budget or raise 429.

        Raises:
            HTTPException: 429 Too Many Requests on any rejection.
        """

        if not settings.limiter.enabled:
            return

        active = limiter or await get_rate_limiter()
        result = await active.check(identifier(request))

        if result.success:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "key": result.key,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_ms": active.config.window_ms,
                },
            )
            return

        log = logger.error if result.status is LimitStatus.STORE_ERROR else logger.warning
        log(
            "rate_limit.exceeded",
            extra={
                "key": result.key,
                "limit_status": result.status,
                "limit": result.limit,
                "remaining": result.remaining,
                "window_ms": active.config.window_ms,
                "retry_after_ms": result.ttl_ms,
            },
        )

        headers = _build_headers(result) if settings.limiter.include_headers else None

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=result.error or "Rate limit exceeded. Try again later.",
            headers=headers,
        )

    return enforce_rate_limit


enforce_rate_limit = rate_limit_dependency()
