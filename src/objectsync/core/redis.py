"""Namespaced Redis wrapper used as the push engine's key/value lock store.

Every key is prefixed with the configured LOCK_KEY_PREFIX so loop-guard
locks, pointers and flags never collide with other users of the same Redis
database. Values are stored as strings; a TTL of None means no expiry.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.objectsync.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.close()
        _redis_pool = None


# ── Namespaced Redis Wrapper ───────────────────────────────────────────────


class NamespacedRedis:
    """Key/value store with expiry, prefixing every key with a namespace.

    Implements the lock store contract consumed by LoopGuard:
    ``set(key, value, ttl)``, ``get(key)``, ``delete(key)``.

    Args:
        redis_client: Raw async Redis client (decode_responses=True).
        prefix: Namespace prepended to every key.
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        """Generate a namespaced key: {prefix}{key}."""
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        """Get a value by namespaced key."""
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str | int, ttl: int | None = None) -> None:
        """Set a value with optional TTL (seconds)."""
        await self._redis.set(self._key(key), str(value), ex=ttl)

    async def delete(self, key: str) -> int:
        """Delete a key. Returns number of keys deleted."""
        return await self._redis.delete(self._key(key))

    async def exists(self, key: str) -> bool:
        """Check if a key exists."""
        return bool(await self._redis.exists(self._key(key)))


def get_lock_store() -> NamespacedRedis:
    """Get a NamespacedRedis lock store using the global Redis pool."""
    return NamespacedRedis(get_redis_pool(), prefix=get_settings().LOCK_KEY_PREFIX)
