"""
api/pipeline.py -- Ordered request authentication chain.

Pattern: Pipeline with an explicit driver loop. Each stage is an async
function taking the RequestContext and returning either
  Continue(context)  -- carry on with an enriched copy of the context, or
  Halt(error, context) -- stop here with one terminal AuthError.
RequestAuthPipeline.run() executes stages strictly in order and stops at the
first Halt. No stage ever writes to a response; the HTTP layer renders the
single outcome the driver returns.

Standard chains (ChainKind):
  PUBLIC         rate
  LONG           rate -> long credential
  AUTHENTICATED  rate -> short credential -> revocation
  SCHOOL         rate -> short credential -> revocation -> school scope
  SUPERADMIN     rate -> short credential -> revocation -> superadmin scope

The whole chain runs under one request-level deadline. If the shared cache
(rate counters, revocation list) does not answer in time the request is
rejected with 503 -- never let through. Cache writes a route makes after
the chain (logout revocation) go through within_deadline() under the same
bound.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

from api.limiter import RateLimitDecision, RateLimiter, scope_for
from auth.errors import AuthError, ErrorKind, auth_error, forbidden, unauthenticated
from auth.models import LongClaims, ShortClaims
from auth.scope import EffectiveScope, Principal, derive_school_scope, principal_from_claims, require_superadmin
from auth.sessions import SessionRegistry
from auth.tokens import TokenClass, TokenService

logger = logging.getLogger("schoolgate.pipeline")


@dataclass(frozen=True)
class RequestContext:
    operation: str  # e.g. "auth.login", "school.getSchool"
    client_id: str
    bearer_token: str | None = None
    requested_school_id: str | None = None
    rate_limit: RateLimitDecision | None = None
    long_claims: LongClaims | None = None
    short_claims: ShortClaims | None = None
    principal: Principal | None = None
    scope: EffectiveScope | None = None


@dataclass(frozen=True)
class Continue:
    context: RequestContext


@dataclass(frozen=True)
class Halt:
    error: AuthError
    context: RequestContext


Outcome = Union[Continue, Halt]
Stage = Callable[[RequestContext], Awaitable[Outcome]]


class ChainKind(str, Enum):
    PUBLIC = "public"
    LONG = "long"
    AUTHENTICATED = "authenticated"
    SCHOOL = "school"
    SUPERADMIN = "superadmin"


class RequestAuthPipeline:
    """Composes RateLimiter, TokenService and SessionRegistry into request chains.

    Usage:
        pipeline = RequestAuthPipeline(limiter, tokens, sessions, timeout_seconds=2.0)
        outcome = await pipeline.run(context, pipeline.chain(ChainKind.SCHOOL))
    """

    def __init__(
        self,
        limiter: RateLimiter,
        tokens: TokenService,
        sessions: SessionRegistry,
        timeout_seconds: float,
    ) -> None:
        self._limiter = limiter
        self._tokens = tokens
        self._sessions = sessions
        self.timeout_seconds = timeout_seconds

    def chain(self, kind: ChainKind) -> list[Stage]:
        authenticated = [self.rate_limit, self.short_token, self.revocation]
        chains: dict[ChainKind, list[Stage]] = {
            ChainKind.PUBLIC: [self.rate_limit],
            ChainKind.LONG: [self.rate_limit, self.long_token],
            ChainKind.AUTHENTICATED: authenticated,
            ChainKind.SCHOOL: authenticated + [self.school_scope],
            ChainKind.SUPERADMIN: authenticated + [self.superadmin_scope],
        }
        return chains[kind]

    async def run(self, context: RequestContext, stages: list[Stage]) -> Outcome:
        """Drive stages in order under the request deadline; first Halt wins."""
        latest = [context]

        async def drive() -> Outcome:
            for stage in stages:
                outcome = await stage(latest[0])
                latest[0] = outcome.context
                if isinstance(outcome, Halt):
                    return outcome
            return Continue(latest[0])

        try:
            return await asyncio.wait_for(drive(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return Halt(self._timed_out(context.operation), latest[0])

    async def within_deadline(self, operation: str, work: Awaitable[object]) -> AuthError | None:
        """Await a cache side effect of an operation under the request deadline.

        Returns None once it completes, or the 503 error when the cache does
        not answer in time.
        """
        try:
            await asyncio.wait_for(work, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return self._timed_out(operation)
        return None

    def _timed_out(self, operation: str) -> AuthError:
        logger.error("Auth cache call for %s timed out after %.2fs; rejecting", operation, self.timeout_seconds)
        return auth_error(ErrorKind.SERVICE_UNAVAILABLE, "Authentication service temporarily unavailable.")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def rate_limit(self, context: RequestContext) -> Outcome:
        decision = await self._limiter.check(scope_for(context.operation), context.client_id)
        context = replace(context, rate_limit=decision)
        if not decision.allowed:
            return Halt(
                auth_error(
                    ErrorKind.RATE_LIMITED,
                    f"Rate limit exceeded. Try again in {decision.retry_after} seconds.",
                    retry_after=decision.retry_after,
                ),
                context,
            )
        return Continue(context)

    async def long_token(self, context: RequestContext) -> Outcome:
        if not context.bearer_token:
            return Halt(unauthenticated("Long token is required."), context)
        claims = self._tokens.verify(TokenClass.LONG, context.bearer_token)
        if claims is None:
            return Halt(unauthenticated("Invalid or expired token."), context)
        return Continue(replace(context, long_claims=claims))

    async def short_token(self, context: RequestContext) -> Outcome:
        if not context.bearer_token:
            return Halt(unauthenticated(), context)
        claims = self._tokens.verify(TokenClass.SHORT, context.bearer_token)
        if claims is None:
            return Halt(unauthenticated("Invalid or expired token."), context)
        return Continue(replace(context, short_claims=claims))

    async def revocation(self, context: RequestContext) -> Outcome:
        claims = context.short_claims
        if claims is None:
            return Halt(unauthenticated(), context)
        if await self._sessions.is_revoked(claims.session_id):
            return Halt(auth_error(ErrorKind.SESSION_REVOKED, "Session has been revoked."), context)
        principal = principal_from_claims(claims)
        if principal is None:
            logger.warning("Credential for user %s carries unknown role %r", claims.user_id, claims.role)
            return Halt(forbidden("Unknown role."), context)
        return Continue(replace(context, principal=principal))

    async def school_scope(self, context: RequestContext) -> Outcome:
        if context.principal is None:
            return Halt(unauthenticated(), context)
        result = derive_school_scope(context.principal, context.requested_school_id)
        if isinstance(result, AuthError):
            return Halt(result, context)
        return Continue(replace(context, scope=result))

    async def superadmin_scope(self, context: RequestContext) -> Outcome:
        if context.principal is None:
            return Halt(unauthenticated(), context)
        result = require_superadmin(context.principal)
        if isinstance(result, AuthError):
            return Halt(result, context)
        return Continue(replace(context, scope=result))
