"""
api/limiter.py -- Distributed fixed-window rate limiter on the shared cache.

Two tiers, each with its own key namespace and budget:
  global -- every API request, RATE_LIMIT_GLOBAL per window (default 100 / 15 min)
  auth   -- login, refresh and logout, RATE_LIMIT_AUTH per window (default 5 / 15 min)

The tier is a pure function of the requested operation (scope_for), never of
the caller's identity.

Counter layout: hash ratelimit:<scope>:<client> with fields
  count     -- incremented atomically with HINCRBY
  expiresAt -- window end in epoch milliseconds
and a cache TTL equal to the window.

The single HINCRBY is what makes the limiter correct under concurrency: two
requests can never both read the same stale count and both take the last
slot. When HINCRBY returns 1 this request created the counter and stamps the
TTL and expiresAt. Two racing "first" requests stamp equivalent values, so
the initialisation is safe to repeat. If expiresAt is missing (eviction, or a
crash between HINCRBY and HSET) it is recomputed and re-stamped together with
the TTL rather than failing the request.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from email.utils import formatdate
from enum import Enum

from cache.store import SharedCache

logger = logging.getLogger("schoolgate.ratelimit")

# Operations that guard credential guessing get the stricter budget.
AUTH_OPERATIONS = frozenset({"auth.login", "auth.refresh", "auth.logout"})


class RateScope(str, Enum):
    GLOBAL = "global"
    AUTH = "auth"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int  # seconds until the window ends

    def headers(self) -> dict[str, str]:
        """Response headers describing this decision.

        Retry-After is only present on rejections.
        """
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": formatdate(self.reset_at, usegmt=True),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def scope_for(operation: str) -> RateScope:
    """Select the rate-limit tier for an operation name like 'auth.login'."""
    return RateScope.AUTH if operation in AUTH_OPERATIONS else RateScope.GLOBAL


class RateLimiter:
    """Fixed-window counter per (scope, client) pair.

    Usage:
        limiter = RateLimiter(cache, window_ms=900_000, limits={RateScope.GLOBAL: 100, RateScope.AUTH: 5})
        decision = await limiter.check(RateScope.GLOBAL, "10.0.0.1")
    """

    def __init__(
        self,
        cache: SharedCache,
        window_ms: int,
        limits: dict[RateScope, int],
        clock: Callable[[], float] = time.time,
    ) -> None:
        missing = set(RateScope) - set(limits)
        if missing:
            raise ValueError(f"no limit configured for scopes: {sorted(s.value for s in missing)}")
        self._cache = cache
        self.window_ms = window_ms
        self.window_seconds = math.ceil(window_ms / 1000)
        self.limits = dict(limits)
        self._clock = clock

    @staticmethod
    def key(scope: RateScope, client_id: str) -> str:
        return f"ratelimit:{scope.value}:{client_id}"

    async def check(self, scope: RateScope, client_id: str) -> RateLimitDecision:
        """Count one request for (scope, client_id) and decide whether it may proceed."""
        key = self.key(scope, client_id)
        limit = self.limits[scope]

        count = await self._cache.hincrby(key, "count", 1)
        if count == 1:
            await self._start_window(key)

        now_ms = self._clock() * 1000
        expires_at_ms = _parse_ms(await self._cache.hget(key, "expiresAt"))
        if expires_at_ms is None:
            logger.warning("Rate counter %s had no expiresAt; re-stamping window", key)
            expires_at_ms = await self._start_window(key)

        retry_after = max(1, math.ceil((expires_at_ms - now_ms) / 1000))
        decision = RateLimitDecision(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=expires_at_ms / 1000,
            retry_after=retry_after,
        )
        if not decision.allowed:
            logger.info("Rate limit exceeded for %s (%d/%d)", key, count, limit)
        return decision

    async def _start_window(self, key: str) -> int:
        expires_at_ms = int(self._clock() * 1000) + self.window_ms
        await self._cache.expire(key, self.window_seconds)
        await self._cache.hset(key, "expiresAt", str(expires_at_ms))
        return expires_at_ms


def _parse_ms(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
