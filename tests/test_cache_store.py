"""Tests for the cache backends and the best-effort cache service."""

import pytest

from app.core.cache import CacheBackendError, CacheService, MemoryBackend


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenBackend(MemoryBackend):
    async def get(self, key):
        raise CacheBackendError("down")

    async def set(self, key, value, ttl=None):
        raise CacheBackendError("down")

    async def keys(self, pattern):
        raise CacheBackendError("down")


@pytest.mark.asyncio
async def test_memory_backend_expires_entries():
    clock = FakeClock()
    backend = MemoryBackend(clock=clock)
    await backend.set("a", {"n": 1}, ttl=10)
    await backend.set("forever", [1, 2])

    clock.now += 9
    assert await backend.get("a") == {"n": 1}
    clock.now += 1
    assert await backend.get("a") is None
    assert await backend.get("forever") == [1, 2]
    assert await backend.keys("*") == ["forever"]


@pytest.mark.asyncio
async def test_memory_backend_returns_copies():
    backend = MemoryBackend()
    value = {"items": [1]}
    await backend.set("k", value)
    value["items"].append(2)
    assert await backend.get("k") == {"items": [1]}


@pytest.mark.asyncio
async def test_unserialisable_value_rejected():
    with pytest.raises(CacheBackendError):
        await MemoryBackend().set("k", object())


def test_generate_key_skips_empty_parts():
    assert CacheService.generate_key(["/v1/users", "GET", None, "", "tenant", "t1"]) == "/v1/users:GET:tenant:t1"


@pytest.mark.asyncio
async def test_invalidate_pattern_counts_removed_keys():
    cache = CacheService(MemoryBackend())
    await cache.set("/v1/users:GET", 1)
    await cache.set("/v1/users/{user_id}:GET:params:user_id:1", 2)
    await cache.set("/v1/roles:GET", 3)

    assert await cache.invalidate_pattern("/v1/users*") == 2
    assert await cache.get("/v1/users:GET") is None
    assert await cache.get("/v1/roles:GET") == 3
    assert await cache.invalidate_pattern("/v1/users*") == 0


@pytest.mark.asyncio
async def test_invalidate_tenant_and_user():
    cache = CacheService(MemoryBackend())
    await cache.set("/v1/users:GET:tenant:t1", 1)
    await cache.set("/v1/users:GET:tenant:t1:user:u1", 2)
    await cache.set("/v1/users:GET:tenant:t2:user:u1", 3)
    await cache.set("/v1/roles:GET:user:u1", 4)

    assert await cache.invalidate_user("u1", tenant_id="t2") == 1
    assert await cache.get("/v1/users:GET:tenant:t1:user:u1") == 2

    assert await cache.invalidate_tenant("t1") == 2
    assert await cache.get("/v1/roles:GET:user:u1") == 4

    assert await cache.invalidate_user("u1") == 1
    assert await cache.backend.keys("*") == []


@pytest.mark.asyncio
async def test_service_swallows_backend_failures():
    cache = CacheService(BrokenBackend())
    await cache.set("k", 1)
    assert await cache.get("k") is None
    assert await cache.invalidate_pattern("*") == 0


@pytest.mark.asyncio
async def test_memory_backend_sweeps_expired_keys_on_write():
    """Keys that are never read again are still dropped once expired."""
    clock = FakeClock()
    backend = MemoryBackend(clock=clock, sweep_interval=100)
    for n in range(99):
        await backend.set(f"ratelimit:{n}", n, ttl=60)
    await backend.set("forever", "kept")
    assert backend.size == 100

    clock.now += 61
    for n in range(100):
        await backend.set(f"fresh:{n}", n, ttl=60)

    assert backend.size == 101
    assert await backend.keys("ratelimit:*") == []
    assert await backend.get("forever") == "kept"


@pytest.mark.asyncio
async def test_memory_backend_sweep_reports_removed():
    clock = FakeClock()
    backend = MemoryBackend(clock=clock)
    await backend.set("short", 1, ttl=5)
    await backend.set("long", 2, ttl=50)

    clock.now += 5
    assert backend.sweep() == 1
    assert backend.size == 1
    assert backend.sweep() == 0


@pytest.mark.asyncio
async def test_cache_ping():
    assert await CacheService(MemoryBackend()).ping() is True
    assert await CacheService(BrokenBackend()).ping() is False
