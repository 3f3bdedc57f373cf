"""Unit tests for the in-memory counter store."""

import pytest

from redlimit.adapters.store.in_memory import _Entry
from redlimit.core.errors import StoreAppError


@pytest.mark.asyncio
async def test_increment_creates_and_counts(store) -> None:
    assert await store.increment("k") == 1
    assert await store.increment("k") == 2
    assert await store.get("k") == "2"


@pytest.mark.asyncio
async def test_ttl_reports_absent_and_persistent_keys(store) -> None:
    assert await store.ttl("missing") == -2

    await store.increment("k")
    assert await store.ttl("k") == -1


@pytest.mark.asyncio
async def test_expiry_is_millisecond_precise(store, fake_time) -> None:
    await store.increment("k")
    assert await store.set_expiry("k", 250) is True

    fake_time.advance_ms(249)
    assert await store.ttl("k") == 1

    fake_time.advance_ms(1)
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_only_if_unset_keeps_existing_expiry(store, fake_time) -> None:
    await store.increment("k")
    await store.set_expiry("k", 1000)
    fake_time.advance_ms(400)

    assert await store.set_expiry("k", 1000, only_if_unset=True) is False
    assert await store.ttl("k") == 600


@pytest.mark.asyncio
async def test_admit_sets_window_once(store, fake_time) -> None:
    first = await store.admit("k", window_ms=1000)
    assert first.count == 1
    assert first.ttl_ms == 1000

    fake_time.advance_ms(300)
    second = await store.admit("k", window_ms=1000)
    assert second.count == 2
    assert second.ttl_ms == 700


@pytest.mark.asyncio
async def test_admit_records_last_request(store, fake_time) -> None:
    now_ms = fake_time.now_ms()

    await store.admit("k", window_ms=1000, last_key="k:last", now_ms=now_ms, cooldown_ms=200)

    assert await store.get("k:last") == str(now_ms)
    assert await store.ttl("k:last") == 200


@pytest.mark.asyncio
async def test_delete_counts_existing_keys(store) -> None:
    await store.increment("a")

    assert await store.delete("a", "b") == 1
    assert await store.delete("a") == 0


@pytest.mark.asyncio
async def test_increment_non_integer_raises_store_error(store) -> None:
    store._data["k"] = _Entry(value="not-a-number")

    with pytest.raises(StoreAppError):
        await store.increment("k")


@pytest.mark.asyncio
async def test_calls_are_counted(store) -> None:
    await store.admit("k", window_ms=1000)
    await store.get("k")

    assert store.calls["admit"] == 1
    assert store.calls["get"] == 1
    assert await store.ping() is True
