"""
cache/redis_store.py -- Redis-backed SharedCache for multi-instance deployments.

Thin wrapper over redis.asyncio. Every method is a single Redis command, so
each mutation the auth subsystem performs (HINCRBY on a rate counter, SET EX
on a session tombstone) is atomic on the server without transactions or
locks.

Keys are namespaced with CACHE_PREFIX so several deployments can share one
Redis database.

Socket timeouts are set on the client as a last line of defence; the auth
pipeline applies its own request-level deadline on top.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger("schoolgate.cache")


class RedisCache:
    """SharedCache implementation backed by a Redis server."""

    def __init__(self, redis_url: str, prefix: str = "", *, socket_timeout: float = 5.0) -> None:
        self._prefix = f"{prefix}:" if prefix else ""
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self.client.get(self._key(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self.client.set(self._key(key), value, ex=ttl_seconds or None)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self.client.expire(self._key(key), ttl_seconds))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        return int(await self.client.hincrby(self._key(key), field, amount))

    async def hget(self, key: str, field: str) -> str | None:
        return await self.client.hget(self._key(key), field)

    async def hset(self, key: str, field: str, value: str) -> None:
        await self.client.hset(self._key(key), field, value)

    async def ping(self) -> bool:
        """Return True if Redis answers PING; connection errors read as False."""
        try:
            return bool(await self.client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        await self.client.aclose()
