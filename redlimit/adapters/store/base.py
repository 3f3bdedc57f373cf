"""Counter store interfaces.

The limiter depends on this abstraction (not a concrete client) so the shared
store can be Redis in production and an in-process fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AdmitOutcome:
    """Result of the atomic admission step.

    Attributes:
        count: Counter value after the increment.
        ttl_ms: Remaining lifetime of the counter in milliseconds
            (0 or negative when the store reports no expiry).
    """

    count: int
    ttl_ms: int


class AbstractCounterStore(ABC):
    """Interface for shared counter stores with millisecond expiry."""

    @abstractmethod
    async def increment(self, key: str) -> int:
        """Atomically increment ``key`` (created at 0) and return the new value."""
        raise NotImplementedError

    @abstractmethod
    async def set_expiry(self, key: str, ttl_ms: int, *, only_if_unset: bool = False) -> bool:
        """Expire ``key`` after ``ttl_ms`` milliseconds.

        Args:
            key: Store key.
            ttl_ms: Lifetime in milliseconds.
            only_if_unset: Leave an existing expiry untouched.

        Returns:
            True if the expiry was applied.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value at ``key`` as a string, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining lifetime of ``key`` in ms (0 or negative if absent/persistent)."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete ``keys`` and return how many existed."""
        raise NotImplementedError

    @abstractmethod
    async def admit(
        self,
        key: str,
        *,
        window_ms: int,
        last_key: str | None = None,
        now_ms: int | None = None,
        cooldown_ms: int = 0,
    ) -> AdmitOutcome:
        """Run the admission step as one atomic unit.

        Increments ``key``, gives it a ``window_ms`` expiry if it has none,
        records ``now_ms`` at ``last_key`` for ``cooldown_ms`` when a cooldown
        key is given, and reads back the counter's remaining lifetime.

        Args:
            key: Counter key.
            window_ms: Window length applied to a fresh counter.
            last_key: Cooldown key to refresh, if the cooldown is active.
            now_ms: Timestamp written to ``last_key``.
            cooldown_ms: Lifetime of the cooldown record.

        Returns:
            AdmitOutcome with the new count and the counter TTL.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Check connectivity. Stores without a remote peer are always up."""
        return True

    async def aclose(self) -> None:
        """Release connections held by the store. No-op by default."""
        return None
