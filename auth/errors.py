"""
auth/errors.py -- Structured error values for the auth subsystem.

Expected rejections (bad password, locked account, revoked session, ...) are
returned as AuthError values, never raised. Only the HTTP layer turns an
AuthError into an exception (api layer AuthRejected) so FastAPI can
short-circuit a dependency chain. Genuinely unexpected faults -- database
unreachable, programming errors -- propagate as ordinary exceptions and end
up in the generic 500 handler.

Every AuthError carries:
  kind    -- machine-checkable category (also the public "code" field)
  message -- human-readable text, safe to show to the caller
  status  -- HTTP status code
  context -- extra structured detail (remaining attempts, retry-after, ...)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_CREDENTIALS = "invalid_credentials"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    SESSION_REVOKED = "session_revoked"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVICE_UNAVAILABLE = "service_unavailable"


_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.ACCOUNT_LOCKED: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SESSION_REVOKED: 401,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
}


@dataclass(frozen=True)
class AuthError:
    kind: ErrorKind
    message: str
    status: int
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.kind.value


def auth_error(kind: ErrorKind, message: str, **context: Any) -> AuthError:
    """Build an AuthError with the default HTTP status for its kind."""
    return AuthError(kind=kind, message=message, status=_DEFAULT_STATUS[kind], context=context)


def unauthenticated(message: str = "Authentication required.") -> AuthError:
    return auth_error(ErrorKind.UNAUTHENTICATED, message)


def forbidden(message: str) -> AuthError:
    return auth_error(ErrorKind.FORBIDDEN, message)


def bad_request(message: str) -> AuthError:
    return auth_error(ErrorKind.BAD_REQUEST, message)


def not_found(message: str) -> AuthError:
    return auth_error(ErrorKind.NOT_FOUND, message)
