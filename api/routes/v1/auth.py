"""
api/routes/v1/auth.py -- Authentication and account endpoints.

Routes:
  POST /api/v1/auth/login            -- username/email + password; long + short credentials
  POST /api/v1/auth/refresh          -- long credential -> new short credential
  POST /api/v1/auth/logout           -- revoke the caller's session; 204
  GET  /api/v1/auth/me               -- current account (short credential)
  POST /api/v1/auth/change-password  -- change own password (short credential)
  GET  /api/v1/auth/scope            -- effective school scope (school-scoped chain)
  POST /api/v1/auth/users            -- create an account (superadmin only)

Every route runs its auth chain through guard(); login/refresh/logout use the
stricter "auth" rate-limit tier (see api/limiter.py).

Security:
  [C1] Login never reveals whether the username or the password was wrong.
  [M5] Cache-Control: no-store on every response carrying credentials.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.dependencies import AuthRejected, device_from_request, guard
from api.models import (
    AccountSummary,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshResponse,
    ScopeResponse,
    UserCreate,
    UserCreatedResponse,
)
from api.pipeline import ChainKind, RequestContext
from auth.errors import AuthError
from auth.service import AuthService

_NO_STORE = {"Cache-Control": "no-store"}

router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Credential flows
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    ctx: RequestContext = Depends(guard("auth.login", ChainKind.PUBLIC)),
) -> LoginResponse:
    """Authenticate with username (or email) and password.

    Sync route: bcrypt is CPU-bound, so FastAPI runs this in its threadpool
    instead of blocking the event loop.
    """
    result = _service(request).login(body.username, body.password, device_from_request(request))
    if isinstance(result, AuthError):
        raise AuthRejected(result, dict(_NO_STORE))
    response.headers.update(_NO_STORE)
    return LoginResponse(
        user=AccountSummary.from_account(result.account),
        long_token=result.long_token,
        short_token=result.short_token,
    )


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(
    request: Request,
    response: Response,
    ctx: RequestContext = Depends(guard("auth.refresh", ChainKind.LONG)),
) -> RefreshResponse:
    """Exchange the long credential for a fresh short credential and session."""
    result = _service(request).refresh(ctx.long_claims, device_from_request(request))
    if isinstance(result, AuthError):
        raise AuthRejected(result, dict(_NO_STORE))
    response.headers.update(_NO_STORE)
    return RefreshResponse(short_token=result)


@router.post("/auth/logout", status_code=204)
async def logout(
    request: Request,
    ctx: RequestContext = Depends(guard("auth.logout", ChainKind.AUTHENTICATED)),
) -> Response:
    """Revoke the session carried by the caller's short credential."""
    pipeline = request.app.state.auth_pipeline
    error = await pipeline.within_deadline(ctx.operation, _service(request).logout(ctx.short_claims))
    if error is not None:
        raise AuthRejected(error)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(
    request: Request,
    ctx: RequestContext = Depends(guard("auth.me", ChainKind.AUTHENTICATED)),
) -> MeResponse:
    result = _service(request).me(ctx.short_claims)
    if isinstance(result, AuthError):
        raise AuthRejected(result)
    return MeResponse(user=AccountSummary.from_account(result))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    ctx: RequestContext = Depends(guard("auth.changePassword", ChainKind.AUTHENTICATED)),
) -> MessageResponse:
    error = _service(request).change_password(ctx.short_claims, body.current_password, body.new_password)
    if error is not None:
        raise AuthRejected(error)
    return MessageResponse(message="Password changed successfully.")


@router.get("/auth/scope", response_model=ScopeResponse)
async def scope(
    ctx: RequestContext = Depends(guard("auth.scope", ChainKind.SCHOOL)),
) -> ScopeResponse:
    """Echo the school scope the pipeline resolved for this caller.

    Superadmins must name the school (?school_id=...); school admins always
    get the school bound to their credential.
    """
    return ScopeResponse(
        user_id=ctx.scope.user_id,
        role=ctx.scope.role,
        school_id=ctx.scope.school_id,
        is_superadmin=ctx.scope.is_superadmin,
    )


# ---------------------------------------------------------------------------
# Account provisioning (superadmin only)
# ---------------------------------------------------------------------------


@router.post("/auth/users", response_model=UserCreatedResponse, status_code=201)
def create_user(
    request: Request,
    response: Response,
    body: UserCreate,
    ctx: RequestContext = Depends(guard("user.createUser", ChainKind.SUPERADMIN)),
) -> UserCreatedResponse:
    """Create a superadmin or school admin account and return its long credential."""
    result = _service(request).create_account(
        ctx.scope,
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role.value,
        school_id=body.school_id,
    )
    if isinstance(result, AuthError):
        raise AuthRejected(result)
    response.headers.update(_NO_STORE)
    return UserCreatedResponse(
        user=AccountSummary.from_account(result.account),
        long_token=result.long_token,
    )
