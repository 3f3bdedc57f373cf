"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded and points the default store at
the in-memory backend so nothing needs a Redis server.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("REDIS_BACKEND", "memory")
os.environ.setdefault("RATELIMIT_KEY_PREFIX", "test")

import pytest  # noqa: E402

from redlimit.adapters.store.in_memory import InMemoryCounterStore  # noqa: E402


class FakeTime:
    """Deterministic clock used to test expiration logic.

    Time is kept as whole milliseconds so repeated small advances never drift.
    """

    def __init__(self, start: float = 1_000.0) -> None:
        self.current_ms = round(start * 1000)

    def time(self) -> float:
        return self.current_ms / 1000

    def now_ms(self) -> int:
        return self.current_ms

    def advance(self, seconds: float) -> None:
        self.current_ms += round(seconds * 1000)

    def advance_ms(self, millis: int) -> None:
        self.current_ms += millis


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def store(fake_time: FakeTime) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=fake_time.time)
