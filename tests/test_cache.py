"""Tests for the directory response cache"""

from kanway.services.cache import ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def test_get_returns_value_until_expiry():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=30, clock=clock)

    await cache.set("heroes:a", ["x"])
    assert await cache.get("heroes:a") == ["x"]

    clock.now = 30.0
    assert await cache.get("heroes:a") is None
    assert len(cache) == 0


async def test_get_or_load_calls_loader_once():
    cache = ResponseCache(ttl_seconds=30, clock=FakeClock())
    calls = []

    async def loader():
        calls.append(1)
        return ["hero"]

    assert await cache.get_or_load("heroes:a", loader) == ["hero"]
    assert await cache.get_or_load("heroes:a", loader) == ["hero"]
    assert len(calls) == 1


async def test_invalidate_by_prefix():
    cache = ResponseCache(clock=FakeClock())
    await cache.set("heroes:a", 1)
    await cache.set("heroes:b", 2)
    await cache.set("other", 3)

    await cache.invalidate("heroes:")

    assert await cache.get("heroes:a") is None
    assert await cache.get("other") == 3


async def test_evicts_when_full():
    clock = FakeClock()
    cache = ResponseCache(ttl_seconds=30, max_entries=2, clock=clock)
    await cache.set("a", 1)
    clock.now = 1.0
    await cache.set("b", 2)
    clock.now = 2.0
    await cache.set("c", 3)

    assert len(cache) == 2
    assert await cache.get("a") is None
    assert await cache.get("c") == 3
