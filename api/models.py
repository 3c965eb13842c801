"""
API request and response models for SchoolGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    superadmin = "superadmin"
    school_admin = "school_admin"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. username may also be the email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: str = Field(default="", max_length=128)
    new_password: str = Field(default="", max_length=128)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (superadmin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=20)
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=8, max_length=128)
    role: RoleEnum = RoleEnum.school_admin
    school_id: Optional[str] = Field(default=None, max_length=64)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountSummary(BaseModel):
    """Public view of an account. Never includes password or lockout state."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    school_id: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            school_id=account.school_id,
            created_at=account.created_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: AccountSummary
    long_token: str
    short_token: str


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    short_token: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: AccountSummary


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: AccountSummary
    long_token: str


class ScopeResponse(BaseModel):
    """Effective authorization scope resolved for the caller."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str
    school_id: Optional[str]
    is_superadmin: bool


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    context: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
