"""Behavioural tests for the rate limiter decision engine."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from redlimit.adapters.store.base import AdmitOutcome
from redlimit.adapters.store.in_memory import InMemoryCounterStore
from redlimit.core.errors import ConfigurationAppError, StoreAppError
from redlimit.schemas.rate_limit import RateLimitConfig
from redlimit.services.rate_limiter import (
    LIMIT_FAILED_MESSAGE,
    TOO_SOON_MESSAGE,
    LimitStatus,
    RateLimiter,
)


def _limiter(store, fake_time, **options) -> RateLimiter:
    options.setdefault("key_prefix", "rl")
    return RateLimiter(store, clock=fake_time.time, error_logger=Mock(), **options)


class TestConstruction:
    def test_requires_store(self) -> None:
        with pytest.raises(ConfigurationAppError):
            RateLimiter(None, key_prefix="rl")  # type: ignore[arg-type]

    def test_requires_prefix(self, store) -> None:
        with pytest.raises(ConfigurationAppError) as exc_info:
            RateLimiter(store, key_prefix="")

        assert exc_info.value.code == "invalid_rate_limit_config"

    def test_rejects_config_and_options_together(self, store) -> None:
        with pytest.raises(ConfigurationAppError):
            RateLimiter(store, RateLimitConfig(key_prefix="rl"), limit=3)

    def test_cooldown_clamped_to_window(self, store) -> None:
        limiter = RateLimiter(store, key_prefix="rl", window_ms=1000, cooldown_ms=3000)

        assert limiter.config.cooldown_ms == 1000

    def test_local_cache_optional(self, store) -> None:
        assert RateLimiter(store, key_prefix="rl").local_cache is not None
        assert RateLimiter(store, key_prefix="rl", use_local_cache=False).local_cache is None

    def test_key_derivation(self, store) -> None:
        limiter = RateLimiter(store, key_prefix="api")

        assert limiter.key_for("10.0.0.1") == "api:10.0.0.1"
        assert limiter.last_key_for("api:10.0.0.1") == "api:10.0.0.1:last"


class TestQuota:
    @pytest.mark.asyncio
    async def test_single_request_limit_and_reset(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1, window_ms=1000)

        first = await limiter.check("A")
        assert first.success is True
        assert first.remaining == 0
        assert first.status is LimitStatus.ALLOWED
        assert first.key == "rl:A"

        second = await limiter.check("A")
        assert second.success is False
        assert second.remaining == 0
        assert second.status is LimitStatus.OVER_LIMIT
        assert second.error is None

        await limiter.reset(second.key)

        third = await limiter.check("A")
        assert third.success is True
        assert third.remaining == 0

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=3, window_ms=1000)

        results = [await limiter.check("B") for _ in range(4)]

        assert [r.success for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert all(r.limit == 3 for r in results)

    @pytest.mark.asyncio
    async def test_window_expiry_restarts_count(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=2, window_ms=1000, use_local_cache=False)

        for _ in range(5):
            await limiter.check("C")

        fake_time.advance_ms(1000)

        result = await limiter.check("C")
        assert result.success is True
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_window_is_fixed_not_sliding(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=10, window_ms=1000)

        first = await limiter.check("D")
        fake_time.advance_ms(600)
        later = await limiter.check("D")

        assert first.ttl_ms == 1000
        assert later.ttl_ms == 400

    @pytest.mark.asyncio
    async def test_identifiers_are_isolated(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1)

        assert (await limiter.check("x")).success is True
        assert (await limiter.check("x")).success is False
        assert (await limiter.check("y")).success is True

    @pytest.mark.asyncio
    async def test_result_reset_callback(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1)

        await limiter.check("E")
        blocked = await limiter.check("E")
        await blocked.reset()

        assert (await limiter.check("E")).success is True

    @pytest.mark.asyncio
    async def test_reset_is_idempotent(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time)

        await limiter.reset("rl:nobody")
        await limiter.reset_identifier("nobody")

        assert (await limiter.check("nobody")).success is True


class TestLocalCache:
    @pytest.mark.asyncio
    async def test_blocked_key_skips_store(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1, window_ms=1000)

        await limiter.check("F")
        await limiter.check("F")
        admits_before = store.calls["admit"]

        fake_time.advance_ms(100)
        result = await limiter.check("F")

        assert result.success is False
        assert result.status is LimitStatus.LOCAL_BLOCKED
        assert result.ttl_ms == 900
        assert store.calls["admit"] == admits_before

    @pytest.mark.asyncio
    async def test_block_lifts_when_window_ends(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1, window_ms=1000)

        await limiter.check("G")
        await limiter.check("G")
        fake_time.advance_ms(1000)

        assert (await limiter.check("G")).success is True

    @pytest.mark.asyncio
    async def test_reset_evicts_local_block(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1)

        await limiter.check("H")
        await limiter.check("H")
        await limiter.reset("rl:H")

        assert limiter.local_cache.is_blocked("rl:H").blocked is False

    @pytest.mark.asyncio
    async def test_without_local_cache_every_check_hits_store(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=1, use_local_cache=False)

        for _ in range(4):
            await limiter.check("I")

        assert store.calls["admit"] == 4


class TestCooldown:
    @pytest.mark.asyncio
    async def test_too_soon_is_rejected_without_consuming_quota(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=3, window_ms=1000, cooldown_ms=100)

        first = await limiter.check("J")
        fake_time.advance_ms(50)
        too_soon = await limiter.check("J")

        assert too_soon.success is False
        assert too_soon.status is LimitStatus.COOLDOWN
        assert too_soon.error == TOO_SOON_MESSAGE
        assert too_soon.ttl_ms == 50

        fake_time.advance_ms(50)
        second = await limiter.check("J")

        assert first.remaining == 2
        assert second.success is True
        assert second.remaining == 1

    @pytest.mark.asyncio
    async def test_request_at_exact_cooldown_boundary_is_admitted(self) -> None:
        now = [1_000.0]

        def clock() -> float:
            return now[0]

        store = InMemoryCounterStore(clock=clock)
        limiter = RateLimiter(
            store, clock=clock, error_logger=Mock(), key_prefix="rl", limit=3, cooldown_ms=100
        )

        await limiter.check("N")
        # 1000.0 + 0.05 + 0.05 lands just under 1000.1 in binary floating point
        now[0] += 0.05
        now[0] += 0.05
        result = await limiter.check("N")

        assert result.success is True
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_last_record_ahead_of_clock_waits_one_cooldown_at_most(
        self, store, fake_time
    ) -> None:
        limiter = _limiter(store, fake_time, limit=3, window_ms=1000, cooldown_ms=100)
        await store.admit(
            "rl:O",
            window_ms=1000,
            last_key="rl:O:last",
            now_ms=fake_time.now_ms() + 5_000,
            cooldown_ms=100,
        )

        result = await limiter.check("O")

        assert result.status is LimitStatus.COOLDOWN
        assert result.ttl_ms == 100

    @pytest.mark.asyncio
    async def test_cooldown_record_written_atomically(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, cooldown_ms=100, window_ms=1000)

        await limiter.check("K")

        assert await store.get("rl:K:last") == str(fake_time.now_ms())
        assert await store.ttl("rl:K:last") == 100

    @pytest.mark.asyncio
    async def test_reset_clears_cooldown(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=5, cooldown_ms=500, window_ms=1000)

        await limiter.check("L")
        await limiter.reset_identifier("L")

        assert (await limiter.check("L")).success is True

    @pytest.mark.asyncio
    async def test_disabled_cooldown_never_reads_last(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, limit=5)

        await limiter.check("M")
        await limiter.check("M")

        assert store.calls["get"] == 0


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_increment_failure_fails_closed(self, fake_time) -> None:
        store = InMemoryCounterStore(clock=fake_time.time)
        store.admit = AsyncMock(side_effect=ConnectionError("connection refused"))
        error_logger = Mock()
        limiter = RateLimiter(store, key_prefix="rl", clock=fake_time.time, error_logger=error_logger)

        result = await limiter.check("N")

        assert result.success is False
        assert result.error == LIMIT_FAILED_MESSAGE
        assert result.status is LimitStatus.STORE_ERROR
        assert result.remaining == 0
        assert result.ttl_ms == 0
        error_logger.assert_called_once()
        assert "connection refused" in error_logger.call_args.args[0]

    @pytest.mark.asyncio
    async def test_cooldown_read_failure_fails_closed(self, fake_time) -> None:
        store = InMemoryCounterStore(clock=fake_time.time)
        store.get = AsyncMock(
            side_effect=StoreAppError(code="store_unavailable", message="down")
        )
        store.admit = AsyncMock()
        limiter = _limiter(store, fake_time, cooldown_ms=100)

        result = await limiter.check("O")

        assert result.success is False
        assert result.status is LimitStatus.STORE_ERROR
        assert result.error
        store.admit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_last_timestamp_fails_closed(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time, cooldown_ms=100)
        store.get = AsyncMock(return_value="not-a-timestamp")

        result = await limiter.check("P")

        assert result.success is False
        assert result.status is LimitStatus.STORE_ERROR

    @pytest.mark.asyncio
    async def test_store_timeout_fails_closed(self, fake_time) -> None:
        async def _stall(*args, **kwargs) -> AdmitOutcome:
            await asyncio.sleep(1)
            return AdmitOutcome(count=1, ttl_ms=1000)

        store = InMemoryCounterStore(clock=fake_time.time)
        store.admit = _stall
        limiter = _limiter(store, fake_time, timeout_ms=10)

        result = await limiter.check("Q")

        assert result.success is False
        assert result.status is LimitStatus.STORE_ERROR

    @pytest.mark.asyncio
    async def test_reset_failure_is_logged_and_swallowed(self, store, fake_time) -> None:
        error_logger = Mock()
        limiter = RateLimiter(
            store, key_prefix="rl", limit=1, clock=fake_time.time, error_logger=error_logger
        )
        await limiter.check("R")
        await limiter.check("R")
        store.delete = AsyncMock(side_effect=ConnectionError("down"))

        await limiter.reset("rl:R")

        error_logger.assert_called_once()
        assert limiter.local_cache.is_blocked("rl:R").blocked is False

    @pytest.mark.asyncio
    async def test_default_error_logger_uses_logging(self, fake_time, caplog) -> None:
        store = InMemoryCounterStore(clock=fake_time.time)
        store.admit = AsyncMock(side_effect=ConnectionError("boom"))
        limiter = RateLimiter(store, key_prefix="rl", clock=fake_time.time)

        await limiter.check("S")

        assert any("Failed to rate limit request" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_health_check(self, store, fake_time) -> None:
        limiter = _limiter(store, fake_time)
        assert await limiter.health_check() is True

        store.ping = AsyncMock(side_effect=ConnectionError("down"))
        assert await limiter.health_check() is False


@pytest.mark.asyncio
async def test_concurrent_checks_admit_exactly_limit(store, fake_time) -> None:
    limiter = _limiter(store, fake_time, limit=5, window_ms=1000)

    results = await asyncio.gather(*(limiter.check("T") for _ in range(20)))

    assert sum(r.success for r in results) == 5
