"""Stale-while-revalidate read cache."""

import pytest
import redis.asyncio as redis

from crewtime.utils.cache import MemoryBackend, ReadCache


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingLoader:
    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


class BrokenBackend:
    async def get(self, key):
        raise redis.ConnectionError("down")

    async def set(self, key, stored_at, value, expire_seconds):
        raise redis.ConnectionError("down")

    async def delete_prefix(self, prefix):
        raise redis.ConnectionError("down")


def _cache(clock: FakeClock, backend=None) -> ReadCache:
    return ReadCache("test", ttl=60, stale=300, backend=backend or MemoryBackend(), clock=clock)


@pytest.mark.cache
@pytest.mark.asyncio
class TestReadCache:

    async def test_fresh_hit(self):
        clock = FakeClock()
        cache = _cache(clock)
        loader = CountingLoader({"v": 1}, {"v": 2})

        assert await cache.get_or_load("k", loader) == {"v": 1}
        clock.now += 59
        assert await cache.get_or_load("k", loader) == {"v": 1}
        assert loader.calls == 1

    async def test_stale_served_then_refreshed(self):
        clock = FakeClock()
        cache = _cache(clock)
        loader = CountingLoader("old", "new")

        await cache.get_or_load("k", loader)
        clock.now += 120

        assert await cache.get_or_load("k", loader) == "old"
        await cache.wait_for_refreshes()
        assert loader.calls == 2
        assert await cache.get_or_load("k", loader) == "new"

    async def test_one_refresh_per_key(self):
        clock = FakeClock()
        cache = _cache(clock)
        loader = CountingLoader("old", "new", "newer")

        await cache.get_or_load("k", loader)
        clock.now += 120
        await cache.get_or_load("k", loader)
        await cache.get_or_load("k", loader)
        await cache.wait_for_refreshes()

        assert loader.calls == 2

    async def test_expired_is_a_miss(self):
        clock = FakeClock()
        cache = _cache(clock)
        loader = CountingLoader("old", "new")

        await cache.get_or_load("k", loader)
        clock.now += 360

        assert await cache.get_or_load("k", loader) == "new"
        assert loader.calls == 2

    async def test_failed_refresh_keeps_stale_value(self):
        clock = FakeClock()
        cache = _cache(clock)
        loader = CountingLoader("old", RuntimeError("database went away"), "new")

        await cache.get_or_load("k", loader)
        clock.now += 120
        assert await cache.get_or_load("k", loader) == "old"
        await cache.wait_for_refreshes()

        # Still stale, so a new refresh is attempted and the old value served
        assert await cache.get_or_load("k", loader) == "old"
        await cache.wait_for_refreshes()
        assert await cache.get_or_load("k", loader) == "new"

    async def test_invalidate_key_prefix(self):
        clock = FakeClock()
        cache = _cache(clock)
        await cache.get_or_load("5:staff", CountingLoader("five"))
        await cache.get_or_load("55:staff", CountingLoader("fifty-five"))

        await cache.invalidate("5:")

        reload_five = CountingLoader("five-again")
        assert await cache.get_or_load("5:staff", reload_five) == "five-again"
        untouched = CountingLoader("unused")
        assert await cache.get_or_load("55:staff", untouched) == "fifty-five"
        assert untouched.calls == 0

    async def test_invalidate_namespace(self):
        clock = FakeClock()
        backend = MemoryBackend()
        cache = _cache(clock, backend)
        other = ReadCache("other", ttl=60, stale=300, backend=backend, clock=clock)
        await cache.get_or_load("a", CountingLoader(1))
        await other.get_or_load("a", CountingLoader(2))

        await cache.invalidate()

        assert await backend.get("test:a") is None
        assert await backend.get("other:a") is not None

    async def test_backend_errors_fall_through(self):
        cache = _cache(FakeClock(), BrokenBackend())
        loader = CountingLoader("a", "b")

        assert await cache.get_or_load("k", loader) == "a"
        assert await cache.get_or_load("k", loader) == "b"
        await cache.invalidate()

