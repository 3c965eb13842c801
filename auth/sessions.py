"""
auth/sessions.py -- Revocation list for short credentials.

Logout stores a tombstone under invalidated:session:<session_id> with a TTL
equal to the maximum short-credential lifetime. Once the TTL elapses the
credential carrying that session id has expired on its own, so no explicit
cleanup is needed. Revocation is monotonic: there is no un-revoke path.
"""

from __future__ import annotations

import logging

from cache.store import SharedCache

logger = logging.getLogger("schoolgate.sessions")

_KEY_PREFIX = "invalidated:session:"
_TOMBSTONE = "1"


class SessionRegistry:
    def __init__(self, cache: SharedCache, ttl_seconds: int) -> None:
        self._cache = cache
        self.ttl_seconds = ttl_seconds

    async def revoke(self, session_id: str) -> None:
        if not session_id:
            raise ValueError("session_id is required")
        await self._cache.set(f"{_KEY_PREFIX}{session_id}", _TOMBSTONE, ttl_seconds=self.ttl_seconds)
        logger.info("Session %s... revoked", session_id[:8])

    async def is_revoked(self, session_id: str) -> bool:
        return await self._cache.get(f"{_KEY_PREFIX}{session_id}") is not None
