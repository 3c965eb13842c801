"""
api/main.py -- FastAPI application entry point for SchoolGate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost; Starlette wraps the last registered
middleware around everything registered before it):
  1. log_requests          -- one log line per request with latency
  2. rate_limit_headers    -- copies X-RateLimit-* / Retry-After from request.state
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Rate limiting, credential checks, revocation and role scoping are not
middleware: each route declares its chain via api.dependencies.guard(), so
the order of stages is explicit per route.

Lifespan builds every component once and hands them their dependencies
explicitly (install_auth). Tests call install_auth() with in-memory stores
instead of running the real lifespan.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import AuthRejected
from api.limiter import RateLimiter, RateScope
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.pipeline import RequestAuthPipeline
from api.routes.v1.auth import router as auth_router
from auth.errors import ErrorKind
from auth.lockout import LoginGuard
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import AccountStore
from auth.tokens import TokenClass, TokenService
from cache.redis_store import RedisCache
from cache.store import MemoryCache, SharedCache
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("schoolgate.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Component assembly
# ---------------------------------------------------------------------------


def install_auth(
    app: FastAPI,
    settings: Settings,
    store: AccountStore,
    cache: SharedCache,
    clock: Callable[[], float] = time.time,
) -> None:
    """Build the auth components and attach them to app.state.

    Every component receives its store, cache and limits here; none of them
    reads configuration or global state on its own.
    """
    tokens = TokenService(
        long_secret=settings.long_token_secret,
        short_secret=settings.short_token_secret,
        long_ttl_seconds=settings.long_token_expire_seconds,
        short_ttl_seconds=settings.short_token_expire_seconds,
        clock=clock,
    )
    # Tombstones must outlive any short credential that could carry the session id.
    sessions = SessionRegistry(cache, ttl_seconds=tokens.max_lifetime(TokenClass.SHORT))
    limiter = RateLimiter(
        cache,
        window_ms=settings.rate_limit_window_ms,
        limits={RateScope.GLOBAL: settings.rate_limit_global, RateScope.AUTH: settings.rate_limit_auth},
        clock=clock,
    )
    guard = LoginGuard(
        store,
        threshold=settings.max_login_attempts,
        lockout_duration=timedelta(milliseconds=settings.lockout_duration_ms),
    )

    app.state.account_store = store
    app.state.cache = cache
    app.state.trust_forwarded_for = settings.trust_forwarded_for
    app.state.auth_pipeline = RequestAuthPipeline(
        limiter,
        tokens,
        sessions,
        timeout_seconds=settings.auth_timeout_ms / 1000,
    )
    app.state.auth_service = AuthService(store, guard, tokens, sessions)

    if not store.has_accounts():
        logger.warning("Account store is empty -- run `schoolgate seed-superadmin` to create the first superadmin")


def _build_cache(settings: Settings) -> SharedCache:
    if settings.redis_url:
        return RedisCache(settings.redis_url, prefix=settings.cache_prefix)
    logger.warning("REDIS_URL not set -- using in-process cache; rate limits and revocations are per instance")
    return MemoryCache(prefix=settings.cache_prefix)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the account store and shared cache, wire components, and close both on shutdown."""
    logger.info("SchoolGate API starting up")
    store = AccountStore(_settings.database_url)
    cache = _build_cache(_settings)
    install_auth(app, _settings, store, cache)
    logger.info(
        "Auth initialized (max_login_attempts=%d, rate_limit_global=%d, rate_limit_auth=%d)",
        _settings.max_login_attempts,
        _settings.rate_limit_global,
        _settings.rate_limit_auth,
    )

    yield

    await cache.close()
    store.close()
    logger.info("SchoolGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SchoolGate API",
    description="Authentication, session and abuse control for the school management API.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Host and origin lists come from ALLOWED_HOSTS / CORS_ORIGINS.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request middleware
#
# @app.middleware("http") wraps all routes at the ASGI level. The last one
# registered runs first, so log_requests sees the final response including
# the rate-limit headers.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def rate_limit_headers(request: Request, call_next):
    """Attach the rate-limit headers recorded by the auth chain, if any."""
    response = await call_next(request)
    for name, value in getattr(request.state, "rate_limit_headers", {}).items():
        response.headers[name] = value
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthRejected)
async def auth_rejected_handler(request: Request, exc: AuthRejected) -> JSONResponse:
    """Render the single terminal outcome of an auth chain or auth flow."""
    error = exc.error
    response = JSONResponse(
        status_code=error.status,
        content=ErrorResponse(
            error=ErrorDetail(
                code=error.code,
                message=error.message,
                context=error.context or None,
            )
        ).model_dump(exclude_none=True),
    )
    for name, value in exc.headers.items():
        response.headers[name] = value
    if error.kind in (ErrorKind.UNAUTHENTICATED, ErrorKind.SESSION_REVOKED):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged, never written to the response body. This
    includes store outages during login: the attempt is rejected, not let
    through.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Not rate limited -- load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
async def health(request: Request) -> JSONResponse:
    """Report liveness of the API, the account store and the shared cache."""
    components = {"app": "ok", "database": "ok", "cache": "ok"}
    try:
        request.app.state.account_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: account store unreachable")
        components["database"] = "error"
    if not await request.app.state.cache.ping():
        components["cache"] = "error"

    healthy = all(v == "ok" for v in components.values())
    body = HealthResponse(status="healthy" if healthy else "degraded", version=VERSION, components=components)
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())
