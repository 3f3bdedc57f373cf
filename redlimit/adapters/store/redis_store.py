"""Redis-backed counter store.

Wraps a ``redis.asyncio.Redis`` client. The connection is owned by the
caller: this adapter never closes a client it did not create.
"""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from redlimit.adapters.store.base import AbstractCounterStore, AdmitOutcome
from redlimit.core.errors import ConfigurationAppError, ErrorDetails, StoreAppError
from redlimit.core.logging import LimiterRecordFilter

logger = logging.getLogger(__name__)
logger.addFilter(LimiterRecordFilter())


def _as_int(value: Any, *, operation: str) -> int:
    """Coerce a Redis integer reply, rejecting anything else."""
    if isinstance(value, bool) or value is None:
        raise StoreAppError(
            code="store_bad_reply",
            message=f"Unexpected reply to {operation}: {value!r}",
            details={"operation": operation},
        )
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise StoreAppError(
            code="store_bad_reply",
            message=f"Unexpected reply to {operation}: {value!r}",
            details={"operation": operation},
        ) from exc


class RedisCounterStore(AbstractCounterStore):
    """Counter store on top of a shared Redis server.

    The admission step runs in a MULTI/EXEC transaction so that the increment,
    the window expiry and the cooldown record cannot interleave with other
    processes. The window expiry uses ``PEXPIRE ... NX`` (Redis 7+) inside the
    same transaction: a counter never ends up without an expiry, and an
    existing expiry is never pushed forward.
    """

    def __init__(self, client: Redis, *, owns_client: bool = False) -> None:
        if client is None:
            raise ConfigurationAppError(
                code="store_missing_client",
                message="No Redis client provided.",
            )
        self._client = client
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float | None = None) -> "RedisCounterStore":
        """Create a store with its own client from a connection URL."""
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
        )
        return cls(client, owns_client=True)

    @property
    def client(self) -> Redis:
        return self._client

    async def increment(self, key: str) -> int:
        try:
            value = await self._client.incr(key)
        except RedisError as exc:
            raise self._wrap(exc, "incr", key) from exc
        return _as_int(value, operation="incr")

    async def set_expiry(self, key: str, ttl_ms: int, *, only_if_unset: bool = False) -> bool:
        try:
            applied = await self._client.pexpire(key, ttl_ms, nx=only_if_unset)
        except RedisError as exc:
            raise self._wrap(exc, "pexpire", key) from exc
        return bool(applied)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._client.get(key)
        except RedisError as exc:
            raise self._wrap(exc, "get", key) from exc
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def ttl(self, key: str) -> int:
        try:
            value = await self._client.pttl(key)
        except RedisError as exc:
            raise self._wrap(exc, "pttl", key) from exc
        return _as_int(value, operation="pttl")

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            value = await self._client.delete(*keys)
        except RedisError as exc:
            raise self._wrap(exc, "del") from exc
        return _as_int(value, operation="del")

    async def admit(
        self,
        key: str,
        *,
        window_ms: int,
        last_key: str | None = None,
        now_ms: int | None = None,
        cooldown_ms: int = 0,
    ) -> AdmitOutcome:
        record_last = last_key is not None and now_ms is not None and cooldown_ms > 0

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, window_ms, nx=True)
                if record_last:
                    pipe.set(last_key, now_ms, px=cooldown_ms)
                pipe.pttl(key)
                replies = await pipe.execute()
        except RedisError as exc:
            raise self._wrap(exc, "admit", key) from exc

        expected = 4 if record_last else 3
        if not isinstance(replies, (list, tuple)) or len(replies) != expected:
            raise StoreAppError(
                code="store_bad_reply",
                message=f"Unexpected transaction reply: {replies!r}",
                details={"operation": "admit"},
            )

        count = _as_int(replies[0], operation="incr")
        ttl_ms = _as_int(replies[-1], operation="pttl")
        return AdmitOutcome(count=count, ttl_ms=ttl_ms)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise self._wrap(exc, "ping") from exc

    async def aclose(self) -> None:
        """Close the client if this store created it."""
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _wrap(exc: Exception, operation: str, key: str | None = None) -> StoreAppError:
        details: ErrorDetails = {"operation": operation}
        if key is not None:
            details["key"] = key
        error = StoreAppError(
            code="store_unavailable",
            message=f"Redis {operation} failed: {exc}",
            details=details,
        )
        logger.debug("store.command_failed", extra={"error": error})
        return error
