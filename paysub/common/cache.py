"""Advisory read-through cache for repository lookups by local id.

The relational store stays the only source of truth: repositories read
through the cache and delete the key on every write that touches it. Values
are JSON-compatible dicts so the same records work in-process and in Redis.
"""

import asyncio
import json
import time
from collections import OrderedDict
from typing import Any, Protocol

from redis import asyncio as redis_asyncio

from paysub.common.config import CommonSettings
from paysub.common.logging import logger


class Cache(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, value: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class NullCache:
    """Cache that never stores anything."""

    async def get(self, key: str) -> dict[str, Any] | None:
        return None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def close(self) -> None:
        return None


class MemoryCache:
    """Bounded in-process LRU with per-entry TTL."""

    def __init__(self, max_entries: int = 1024, ttl_seconds: int = 300, timer=time.monotonic) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.timer = timer
        self._entries: OrderedDict[str, tuple[float, dict[str, Any]]] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at < self.timer():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return dict(value)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        async with self._lock:
            self._entries[key] = (self.timer() + self.ttl_seconds, dict(value))
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Shared cache for multi-replica deployments.

    Redis failures degrade to cache misses; they never fail a request.
    """

    def __init__(self, client: redis_asyncio.Redis, ttl_seconds: int = 300, prefix: str = "paysub:") -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self.client.get(self.prefix + key)
        except Exception as exc:
            logger.warning("cache_read_failed key=%s error=%s", key, exc)
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        try:
            await self.client.setex(self.prefix + key, self.ttl_seconds, json.dumps(value))
        except Exception as exc:
            logger.warning("cache_write_failed key=%s error=%s", key, exc)

    async def delete(self, key: str) -> None:
        # A missed invalidation leaves a stale entry until ttl_seconds elapses.
        try:
            await self.client.delete(self.prefix + key)
        except Exception as exc:
            logger.error("cache_invalidate_failed key=%s error=%s", key, exc)

    async def close(self) -> None:
        await self.client.aclose()


def build_cache(config: CommonSettings) -> Cache:
    if config.cache_backend == "redis":
        client = redis_asyncio.Redis.from_url(config.redis_url, decode_responses=True)
        return RedisCache(client, ttl_seconds=config.cache_ttl_seconds)
    if config.cache_backend == "memory":
        return MemoryCache(max_entries=config.cache_max_entries, ttl_seconds=config.cache_ttl_seconds)
    return NullCache()
