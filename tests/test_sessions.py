"""Unit tests for auth/sessions.py and cache/store.py.

Covers:
- Revoked sessions stay revoked for the tombstone TTL, then the key lapses
- Revocation is per session id
- Empty session ids are rejected
- MemoryCache prefixing, TTLs and type checks
"""

import pytest

from auth.sessions import SessionRegistry
from cache.store import MemoryCache
from conftest import FakeClock

# ---------------------------------------------------------------------------
# SessionRegistry
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def cache(clock):
    return MemoryCache(prefix="schoolgate", clock=clock)


@pytest.fixture
def registry(cache):
    return SessionRegistry(cache, ttl_seconds=3600)


@pytest.mark.asyncio
async def test_revoke_then_is_revoked(registry):
    assert not await registry.is_revoked("sess-1")
    await registry.revoke("sess-1")
    assert await registry.is_revoked("sess-1")
    assert not await registry.is_revoked("sess-2")


@pytest.mark.asyncio
async def test_revocation_is_idempotent(registry):
    await registry.revoke("sess-1")
    await registry.revoke("sess-1")
    assert await registry.is_revoked("sess-1")


@pytest.mark.asyncio
async def test_tombstone_lives_for_ttl(registry, cache, clock):
    await registry.revoke("sess-1")
    assert await cache.get("invalidated:session:sess-1") == "1"
    _, expires_at = cache._entries["schoolgate:invalidated:session:sess-1"]
    assert expires_at - clock() == 3600

    clock.advance(3599)
    assert await registry.is_revoked("sess-1")
    clock.advance(1)
    assert not await registry.is_revoked("sess-1")


@pytest.mark.asyncio
async def test_empty_session_id_rejected(registry):
    with pytest.raises(ValueError):
        await registry.revoke("")


# ---------------------------------------------------------------------------
# MemoryCache
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_prefix_isolates_namespaces(clock):
    a = MemoryCache(prefix="a", clock=clock)
    await a.set("k", "v")
    assert await a.get("k") == "v"
    assert a._entries == {"a:k": ("v", None)}


@pytest.mark.asyncio
async def test_expire_missing_key_returns_false(cache):
    assert await cache.expire("nope", 10) is False


@pytest.mark.asyncio
async def test_hash_and_string_types_do_not_mix(cache):
    await cache.set("plain", "1")
    with pytest.raises(TypeError):
        await cache.hincrby("plain", "count", 1)
    await cache.hset("hashed", "field", "x")
    with pytest.raises(TypeError):
        await cache.get("hashed")


@pytest.mark.asyncio
async def test_hincrby_restarts_after_expiry(cache, clock):
    assert await cache.hincrby("counter", "count", 1) == 1
    assert await cache.hincrby("counter", "count", 1) == 2
    await cache.expire("counter", 5)
    clock.advance(5)
    assert await cache.hget("counter", "count") is None
    assert await cache.hincrby("counter", "count", 1) == 1


@pytest.mark.asyncio
async def test_ping_and_close(cache):
    await cache.set("k", "v")
    assert await cache.ping()
    await cache.close()
    assert await cache.get("k") is None
