"""Read caching for aggregated activity views.

ReadCache is an explicit stale-while-revalidate cache:

    age < ttl                → fresh, served from cache
    ttl <= age < ttl + stale → served stale; one background refresh is
                               scheduled for the key
    age >= ttl + stale       → treated as a miss, loaded inline

Two backends share one interface:
    MemoryBackend  - per-process dict (default, tests)
    RedisBackend   - shared across replicas via redis.asyncio

Redis errors never fail a read: the loader runs uncached instead.  The
cache is only placed in front of display reads (staff overview,
leaderboard); reset decisions always query the database.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from crewtime.config import settings

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


# ── Backends ────────────────────────────────────────────────

class MemoryBackend:
    def __init__(self):
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> tuple[float, Any] | None:
        return self._entries.get(key)

    async def set(self, key: str, stored_at: float, value: Any, expire_seconds: int) -> None:
        self._entries[key] = (stored_at, value)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)


class RedisBackend:
    """Stores {"stored_at": ..., "value": ...} JSON with an expiry of ttl + stale."""

    def __init__(self, client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis):
        self._client_factory = client_factory

    async def get(self, key: str) -> tuple[float, Any] | None:
        client = await self._client_factory()
        raw = await client.get(key)
        if not raw:
            return None
        data = json.loads(raw)
        return data["stored_at"], data["value"]

    async def set(self, key: str, stored_at: float, value: Any, expire_seconds: int) -> None:
        client = await self._client_factory()
        await client.setex(
            key,
            max(1, int(expire_seconds)),
            json.dumps({"stored_at": stored_at, "value": value}, default=str),
        )

    async def delete_prefix(self, prefix: str) -> int:
        client = await self._client_factory()
        keys = [key async for key in client.scan_iter(match=f"{prefix}*")]
        if keys:
            await client.delete(*keys)
        return len(keys)


def _default_backend():
    if settings.cache_backend == "redis":
        return RedisBackend()
    return MemoryBackend()


# ── ReadCache ───────────────────────────────────────────────

class ReadCache:
    """Namespaced stale-while-revalidate cache.

    Args:
        namespace: key prefix, e.g. "leaderboard"
        ttl:       seconds an entry is fresh
        stale:     further seconds a stale entry may be served while it
                   is refreshed in the background
        backend:   MemoryBackend / RedisBackend
        clock:     wall-clock source (injectable for tests)

    Values must be JSON-serialisable when the Redis backend is used.

    Example:
        cache = ReadCache("leaderboard", ttl=60, stale=300)
        data = await cache.get_or_load(f"{workspace_id}:{viewer}", loader)
    """

    def __init__(
        self,
        namespace: str,
        ttl: int | None = None,
        stale: int | None = None,
        backend=None,
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self.ttl = settings.cache_ttl_seconds if ttl is None else ttl
        self.stale = settings.cache_stale_seconds if stale is None else stale
        self.backend = backend or _default_backend()
        self.clock = clock
        self._refreshing: dict[str, asyncio.Task] = {}

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        full_key = self._key(key)
        try:
            entry = await self.backend.get(full_key)
        except redis.RedisError as e:
            logger.warning(f"Redis error (falling back to uncached): {e}")
            return await loader()

        now = self.clock()
        if entry is not None:
            stored_at, value = entry
            age = now - stored_at
            if age < self.ttl:
                logger.debug(f"Cache HIT: {full_key}")
                return value
            if age < self.ttl + self.stale:
                logger.debug(f"Cache STALE: {full_key}")
                self._schedule_refresh(full_key, loader)
                return value

        logger.debug(f"Cache MISS: {full_key}")
        value = await loader()
        await self._store(full_key, value)
        return value

    async def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or the whole namespace when key is None."""
        prefix = self._key(key) if key is not None else f"{self.namespace}:"
        try:
            removed = await self.backend.delete_prefix(prefix)
            if removed:
                logger.info(f"Invalidated {removed} cache keys matching {prefix}")
        except redis.RedisError as e:
            logger.warning(f"Failed to invalidate cache: {e}")

    async def wait_for_refreshes(self) -> None:
        """Await in-flight background refreshes (shutdown and tests)."""
        tasks = list(self._refreshing.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _store(self, full_key: str, value: Any) -> None:
        try:
            await self.backend.set(full_key, self.clock(), value, self.ttl + self.stale)
        except redis.RedisError as e:
            logger.warning(f"Redis error (value not cached): {e}")

    def _schedule_refresh(self, full_key: str, loader: Callable[[], Awaitable[Any]]) -> None:
        if full_key in self._refreshing:
            return

        async def _refresh():
            try:
                value = await loader()
                await self._store(full_key, value)
            except Exception:
                # The stale value stays in place until the next attempt
                logger.exception("Background refresh failed for %s", full_key)
            finally:
                self._refreshing.pop(full_key, None)

        self._refreshing[full_key] = asyncio.create_task(_refresh())
