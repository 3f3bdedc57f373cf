"""In-memory counter store.

Notes:
- Per-process only: use it in tests or single-worker deployments.
- Expiry is millisecond-precise and evaluated lazily on access.
- Every operation is counted in ``calls`` so tests can assert on store traffic.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable

from redlimit.adapters.store.base import AbstractCounterStore, AdmitOutcome
from redlimit.core.errors import StoreAppError


@dataclass
class _Entry:
    value: str
    expires_at: int | None = None


class InMemoryCounterStore(AbstractCounterStore):
    """Dict-backed store with the same semantics as the Redis adapter."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self.calls: Counter[str] = Counter()

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._now_ms():
            del self._data[key]
            return None
        return entry

    def _incr_locked(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            entry = _Entry(value="0")
            self._data[key] = entry
        try:
            current = int(entry.value) + 1
        except ValueError as exc:
            raise StoreAppError(
                code="store_bad_reply",
                message="value is not an integer or out of range",
                details={"operation": "incr"},
            ) from exc
        entry.value = str(current)
        return current

    def _expire_locked(self, key: str, ttl_ms: int, only_if_unset: bool) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        if only_if_unset and entry.expires_at is not None:
            return False
        if ttl_ms <= 0:
            del self._data[key]
            return True
        entry.expires_at = self._now_ms() + ttl_ms
        return True

    def _ttl_locked(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry.expires_at is None:
            return -1
        return entry.expires_at - self._now_ms()

    async def increment(self, key: str) -> int:
        self.calls["increment"] += 1
        async with self._lock:
            return self._incr_locked(key)

    async def set_expiry(self, key: str, ttl_ms: int, *, only_if_unset: bool = False) -> bool:
        self.calls["set_expiry"] += 1
        async with self._lock:
            return self._expire_locked(key, ttl_ms, only_if_unset)

    async def get(self, key: str) -> str | None:
        self.calls["get"] += 1
        async with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    async def ttl(self, key: str) -> int:
        self.calls["ttl"] += 1
        async with self._lock:
            return self._ttl_locked(key)

    async def delete(self, *keys: str) -> int:
        self.calls["delete"] += 1
        async with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._data[key]
                    removed += 1
            return removed

    async def admit(
        self,
        key: str,
        *,
        window_ms: int,
        last_key: str | None = None,
        now_ms: int | None = None,
        cooldown_ms: int = 0,
    ) -> AdmitOutcome:
        self.calls["admit"] += 1
        async with self._lock:
            count = self._incr_locked(key)
            self._expire_locked(key, window_ms, only_if_unset=True)
            if last_key is not None and now_ms is not None and cooldown_ms > 0:
                self._data[last_key] = _Entry(
                    value=str(now_ms),
                    expires_at=self._now_ms() + cooldown_ms,
                )
            return AdmitOutcome(count=count, ttl_ms=self._ttl_locked(key))

    def clear(self) -> None:
        """Drop all keys and call counters."""
        self._data.clear()
        self.calls.clear()
