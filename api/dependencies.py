"""
api/dependencies.py -- FastAPI Depends() adapters for the auth pipeline.

guard(operation, chain) builds a dependency that:
  1. collects the request inputs the pipeline needs (client id, bearer
     token, and for school-scoped chains the requested school id),
  2. runs the chain on app.state.auth_pipeline,
  3. records the rate-limit headers on request.state so the response
     middleware in api/main.py can attach them to whatever response goes out,
  4. returns the final RequestContext, or raises AuthRejected with the single
     terminal AuthError. The exception handler in api/main.py renders it.

Usage:
    @router.post("/auth/logout", status_code=204)
    async def logout(ctx: RequestContext = Depends(guard("auth.logout", ChainKind.AUTHENTICATED))): ...

Transport: credentials travel as "Authorization: Bearer <token>". The short
credential is expected everywhere except /auth/refresh, which takes the long
credential.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable

from fastapi import Request

from api.pipeline import ChainKind, Halt, RequestAuthPipeline, RequestContext
from auth.errors import AuthError
from auth.models import Device

_SCHOOL_ID_KEYS = ("school_id", "schoolId")


class AuthRejected(Exception):
    """Raised from a dependency when the auth chain halts."""

    def __init__(self, error: AuthError, headers: dict[str, str] | None = None) -> None:
        super().__init__(error.message)
        self.error = error
        self.headers = headers or {}


def client_id(request: Request) -> str:
    """Identify the client for rate limiting.

    X-Forwarded-For is only honoured when TRUST_FORWARDED_FOR is enabled;
    otherwise any client could pick its own rate-limit bucket.
    """
    if getattr(request.app.state, "trust_forwarded_for", False):
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def device_from_request(request: Request) -> Device:
    return Device(ip=client_id(request), user_agent=request.headers.get("User-Agent", ""))


async def requested_school_id(request: Request) -> str | None:
    """School id supplied by the caller via query string or JSON body."""
    for key in _SCHOOL_ID_KEYS:
        value = request.query_params.get(key)
        if value:
            return value
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if isinstance(body, dict):
            for key in _SCHOOL_ID_KEYS:
                value = body.get(key)
                if value:
                    return str(value)
    return None


def guard(operation: str, chain: ChainKind) -> Callable[[Request], Awaitable[RequestContext]]:
    """Return a dependency that runs the given chain for the named operation."""

    async def dependency(request: Request) -> RequestContext:
        pipeline: RequestAuthPipeline = request.app.state.auth_pipeline
        context = RequestContext(
            operation=operation,
            client_id=client_id(request),
            bearer_token=bearer_token(request),
            requested_school_id=await requested_school_id(request) if chain is ChainKind.SCHOOL else None,
        )
        outcome = await pipeline.run(context, pipeline.chain(chain))

        headers: dict[str, str] = {}
        if outcome.context.rate_limit is not None:
            headers = outcome.context.rate_limit.headers()
            request.state.rate_limit_headers = headers
        if isinstance(outcome, Halt):
            raise AuthRejected(outcome.error, headers)
        return outcome.context

    return dependency
