"""In-process blocklist used to short-circuit known over-quota keys.

Once the store reports that a key is over its limit, the limiter records the
moment the window lifts. Until then, checks for that key are rejected without
a store round trip. Entries are evicted lazily on read; an optional size bound
and :meth:`LocalBlocklistCache.sweep` keep long-running processes in check.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockStatus:
    """Outcome of a blocklist lookup.

    Attributes:
        blocked: True while the entry's reset time is in the future.
        reset_at: Epoch milliseconds when the block lifts (0 when not blocked).
    """

    blocked: bool
    reset_at: int


class LocalBlocklistCache:
    """Thread-safe mapping of limiter key to block expiry (epoch ms).

    Attributes:
        max_entries: Maximum number of entries kept (None for unlimited).
    """

    def __init__(
        self,
        *,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self._max_entries = max_entries
        self._clock = clock
        self._store: dict[str, int] = {}
        self._lock = threading.RLock()
        self._blocks = 0
        self._evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"LocalBlocklistCache(max_entries={self._max_entries}, size={len(self._store)}, "
            f"blocks={self._blocks}, evictions={self._evictions})"
        )

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    def is_blocked(self, key: str) -> BlockStatus:
        """Return whether ``key`` is blocked, evicting a stale entry.

        Args:
            key: Limiter key.

        Returns:
            BlockStatus with the stored reset time when blocked.
        """

        with self._lock:
            reset_at = self._store.get(key)
            if reset_at is None:
                return BlockStatus(blocked=False, reset_at=0)

            if reset_at <= self._now_ms():
                self._evict_single(key)
                return BlockStatus(blocked=False, reset_at=0)

            return BlockStatus(blocked=True, reset_at=reset_at)

    def block_until(self, key: str, reset_at: int) -> None:
        """Block ``key`` until ``reset_at`` (epoch ms). Last write wins."""

        with self._lock:
            self._store[key] = reset_at
            self._blocks += 1
            self._evict_if_over_capacity_locked()

            logger.debug(
                "blocklist.set",
                extra={
                    "size": len(self._store),
                    "reset_at_ms": reset_at,
                },
            )

    def pop(self, key: str) -> None:
        """Remove ``key`` whether or not it is still blocked."""

        with self._lock:
            self._store.pop(key, None)

    def sweep(self) -> int:
        """Evict every expired entry.

        Returns:
            Number of entries removed.
        """

        with self._lock:
            return self._evict_expired_locked()

    def clear(self) -> None:
        """Remove all entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._blocks = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight cache metrics."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "blocks": self._blocks,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_expired_locked(self) -> int:
        now = self._now_ms()
        expired_keys = [k for k, reset_at in self._store.items() if reset_at <= now]
        for key in expired_keys:
            self._evict_single(key)
        return len(expired_keys)

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None or len(self._store) <= self._max_entries:
            return

        self._evict_expired_locked()

        # Entries closest to expiry are the cheapest to lose
        while len(self._store) > self._max_entries:
            key = min(self._store, key=self._store.__getitem__)
            self._evict_single(key)
