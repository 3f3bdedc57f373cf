"""Factory for creating counter store instances."""

from redlimit.adapters.store.base import AbstractCounterStore
from redlimit.adapters.store.in_memory import InMemoryCounterStore
from redlimit.adapters.store.redis_store import RedisCounterStore
from redlimit.core.config import RedisSettings, settings
from redlimit.core.errors import ConfigurationAppError


def create_counter_store(redis_settings: RedisSettings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store selected by configuration.

    Args:
        redis_settings: Store settings; defaults to the global settings.

    Returns:
        AbstractCounterStore: Redis-backed store, or the in-memory store when
            REDIS_BACKEND=memory.

    Raises:
        ConfigurationAppError: If the backend is unknown or the URL is missing.
    """
    cfg = redis_settings or settings.redis
    backend = cfg.backend.lower()

    if backend == "redis":
        if not cfg.url:
            raise ConfigurationAppError(
                code="store_missing_url",
                message="Redis backend requires REDIS_URL environment variable",
            )
        return RedisCounterStore.from_url(cfg.url, socket_timeout=cfg.socket_timeout_seconds)

    if backend == "memory":
        return InMemoryCounterStore()

    raise ConfigurationAppError(
        code="store_unknown_backend",
        message=f"Unknown counter store backend: '{backend}'. Supported backends: redis, memory",
    )
