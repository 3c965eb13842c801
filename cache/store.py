"""
cache/store.py -- Shared key-value cache contract plus an in-process backend.

The auth subsystem keeps all cross-request mutable state (rate counters,
session tombstones) in a shared cache. SharedCache is the contract both
backends implement:

    get / set           -- string values with optional TTL (seconds)
    expire              -- (re)set the TTL of an existing key
    hincrby / hget /    -- hash fields; hincrby is the atomic
      hset                 increment-and-return the rate limiter relies on
    ping / close

MemoryCache is the single-process backend: used when REDIS_URL is empty
(local dev) and in the test suite. Expiry is evaluated lazily on access
against an injectable clock so tests can step time forward. For more than one
service instance use cache.redis_store.RedisCache -- counters in MemoryCache are not
shared between processes.

Usage:
    cache = MemoryCache(prefix="schoolgate")
    await cache.hincrby("ratelimit:global:10.0.0.1", "count", 1)   # -> 1
    await cache.expire("ratelimit:global:10.0.0.1", 900)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol


class SharedCache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int: ...

    async def hget(self, key: str, field: str) -> str | None: ...

    async def hset(self, key: str, field: str, value: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class MemoryCache:
    """Dictionary-backed SharedCache with lazy TTL eviction.

    Every operation runs under one lock and never awaits while holding it, so
    hincrby is atomic with respect to concurrent callers in the same process.
    """

    def __init__(self, prefix: str = "", clock: Callable[[], float] = time.time) -> None:
        self._prefix = f"{prefix}:" if prefix else ""
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at); value is str for plain keys, dict for hashes
        self._entries: dict[str, tuple[str | dict[str, str], float | None]] = {}

    # ------------------------------------------------------------------
    # Internals (call with the lock held)
    # ------------------------------------------------------------------

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _live(self, key: str) -> tuple[str | dict[str, str], float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return entry

    def _hash(self, key: str) -> tuple[dict[str, str], float | None]:
        entry = self._live(key)
        if entry is None:
            fields: dict[str, str] = {}
            self._entries[key] = (fields, None)
            return fields, None
        value, expires_at = entry
        if not isinstance(value, dict):
            raise TypeError(f"key {key!r} holds a string, not a hash")
        return value, expires_at

    # ------------------------------------------------------------------
    # Plain keys
    # ------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(self._key(key))
        if entry is None:
            return None
        value, _ = entry
        if isinstance(value, dict):
            raise TypeError(f"key {key!r} holds a hash, not a string")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._entries[self._key(key)] = (str(value), expires_at)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set a TTL on an existing key. Returns False if the key does not exist."""
        full = self._key(key)
        with self._lock:
            entry = self._live(full)
            if entry is None:
                return False
            value, _ = entry
            self._entries[full] = (value, self._clock() + ttl_seconds)
        return True

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        with self._lock:
            fields, _ = self._hash(self._key(key))
            current = int(fields.get(field, "0")) + amount
            fields[field] = str(current)
        return current

    async def hget(self, key: str, field: str) -> str | None:
        with self._lock:
            entry = self._live(self._key(key))
        if entry is None:
            return None
        value, _ = entry
        if not isinstance(value, dict):
            raise TypeError(f"key {key!r} holds a string, not a hash")
        return value.get(field)

    async def hset(self, key: str, field: str, value: str) -> None:
        with self._lock:
            fields, _ = self._hash(self._key(key))
            fields[field] = str(value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
