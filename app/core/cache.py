"""Shared key/value store for response caching and rate-limit counters.

Two backends with the same async surface:

* ``MemoryBackend``: in-process TTL dict, for single-process deployments
  and the test-suite.
* ``RedisBackend``: ``redis.asyncio`` client shared by every worker.

Values are JSON documents in both backends, so a cached value never aliases
a live object. Backends raise ``CacheBackendError``; ``CacheService`` wraps
them for callers that treat the cache as best-effort.
"""

import fnmatch
import json
import logging
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import Settings

logger = logging.getLogger(__name__)

# Default TTL in seconds
DEFAULT_TTL = 300

HEALTH_KEY = "health:ping"


class CacheBackendError(Exception):
    """The underlying store failed or a value could not be (de)serialised."""


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise CacheBackendError(f"Value is not JSON-serialisable: {exc}") from exc


def _loads(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise CacheBackendError(f"Corrupt cache entry: {exc}") from exc


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...


class MemoryBackend:
    """In-process TTL store. Patterns use Redis-style globs via fnmatch.

    Expired entries are dropped when read, and swept from the whole map every
    ``sweep_interval`` writes so keys that are never read again do not pile up.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: int = 1000,
    ) -> None:
        self._entries: dict[str, tuple[float | None, str]] = {}
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._writes = 0

    @property
    def size(self) -> int:
        """Stored entries, expired ones included until they are swept."""
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return _loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (expires_at, _dumps(value))
        self._writes += 1
        if self._writes >= self._sweep_interval:
            self.sweep()

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        self._writes = 0
        now = self._clock()
        expired = [
            key
            for key, (expires_at, _) in self._entries.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def keys(self, pattern: str) -> list[str]:
        now = self._clock()
        return [
            key
            for key, (expires_at, _) in list(self._entries.items())
            if (expires_at is None or expires_at > now) and fnmatch.fnmatchcase(key, pattern)
        ]

    async def clear(self) -> None:
        self._entries.clear()

    async def close(self) -> None:
        self._entries.clear()


class RedisBackend:
    """Redis store; every key is namespaced under ``prefix``."""

    def __init__(self, client: Redis, prefix: str) -> None:
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self.client.get(self._key(key))
        except RedisError as exc:
            raise CacheBackendError(str(exc)) from exc
        return None if raw is None else _loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        serialized = _dumps(value)
        try:
            if ttl:
                await self.client.setex(self._key(key), ttl, serialized)
            else:
                await self.client.set(self._key(key), serialized)
        except RedisError as exc:
            raise CacheBackendError(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as exc:
            raise CacheBackendError(str(exc)) from exc

    async def keys(self, pattern: str) -> list[str]:
        strip = len(self.prefix) + 1
        try:
            return [key[strip:] async for key in self.client.scan_iter(match=self._key(pattern))]
        except RedisError as exc:
            raise CacheBackendError(str(exc)) from exc

    async def clear(self) -> None:
        for key in await self.keys("*"):
            await self.delete(key)

    async def close(self) -> None:
        await self.client.aclose()


def build_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache_backend == "redis":
        client = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password or None,
            db=settings.redis_db,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        return RedisBackend(client, prefix=settings.cache_key_prefix)
    return MemoryBackend()


def _scoped_patterns(scope: str) -> tuple[str, str]:
    # A scope segment may end the key or sit in the middle of it.
    return f"*:{scope}", f"*:{scope}:*"


class CacheService:
    """Best-effort facade: every failure is logged and swallowed."""

    def __init__(self, backend: CacheBackend) -> None:
        self.backend = backend

    @staticmethod
    def generate_key(parts: Iterable[str | None]) -> str:
        """Join the non-empty parts with ``:``."""
        return ":".join(part for part in parts if part)

    async def get(self, key: str) -> Any | None:
        try:
            value = await self.backend.get(key)
        except CacheBackendError:
            logger.exception("Cache GET failed for key %s", key)
            return None
        logger.debug("Cache %s for key %s", "HIT" if value is not None else "MISS", key)
        return value

    async def set(self, key: str, value: Any, ttl: int | None = DEFAULT_TTL) -> None:
        try:
            await self.backend.set(key, value, ttl)
        except CacheBackendError:
            logger.exception("Cache SET failed for key %s", key)

    async def delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except CacheBackendError:
            logger.exception("Cache DEL failed for key %s", key)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``; returns how many were removed."""
        try:
            keys = await self.backend.keys(pattern)
            for key in keys:
                await self.backend.delete(key)
        except CacheBackendError:
            logger.exception("Cache invalidation failed for pattern %s", pattern)
            return 0
        if keys:
            logger.debug("Cache invalidated for pattern %s (%d keys)", pattern, len(keys))
        return len(keys)

    async def invalidate_tenant(self, tenant_id: str) -> int:
        removed = 0
        for pattern in _scoped_patterns(f"tenant:{tenant_id}"):
            removed += await self.invalidate_pattern(pattern)
        return removed

    async def invalidate_user(self, user_id: str, tenant_id: str | None = None) -> int:
        scope = f"tenant:{tenant_id}:user:{user_id}" if tenant_id else f"user:{user_id}"
        removed = 0
        for pattern in _scoped_patterns(scope):
            removed += await self.invalidate_pattern(pattern)
        return removed

    async def ping(self) -> bool:
        """Write then read back a short-lived key."""
        try:
            await self.backend.set(HEALTH_KEY, 1, ttl=10)
            return await self.backend.get(HEALTH_KEY) == 1
        except CacheBackendError:
            logger.exception("Cache health check failed")
            return False

    async def clear(self) -> None:
        try:
            await self.backend.clear()
        except CacheBackendError:
            logger.exception("Cache clear failed")

    async def close(self) -> None:
        await self.backend.close()
