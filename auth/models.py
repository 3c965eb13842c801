"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, guards and
routes do the work; these classes own the domain shape.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

ROLE_SUPERADMIN = "superadmin"
ROLE_SCHOOL_ADMIN = "school_admin"
ROLES = (ROLE_SUPERADMIN, ROLE_SCHOOL_ADMIN)


@dataclass
class Account:
    """A user account that can authenticate against SchoolGate.

    failed_login_attempts / lockout_until are the lockout state owned by
    auth.lockout.LoginGuard. lockout_until is None unless the last failure
    reached the configured threshold.

    school_id is None for superadmins. is_seeded marks accounts created by
    the seed CLI; their password cannot be changed through the API.
    """

    username: str
    email: str
    role: str  # "superadmin" or "school_admin"
    id: int | None = None
    hashed_password: str | None = None
    school_id: str | None = None
    failed_login_attempts: int = 0
    lockout_until: datetime | None = None
    is_seeded: bool = False
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class LongClaims:
    """Identity carried by a long credential. Only used to mint short credentials."""

    user_id: str
    user_key: str
    role: str
    school_id: str | None = None


@dataclass(frozen=True)
class ShortClaims:
    """Identity carried by a short credential, sent with every request.

    session_id is unique per login/refresh and is the revocation handle.
    device_id is a fingerprint of the client device that requested it.
    """

    user_id: str
    user_key: str
    role: str
    session_id: str
    device_id: str
    school_id: str | None = None


@dataclass
class Device:
    """Client device description used for the short-credential fingerprint."""

    ip: str
    user_agent: str = ""
    extra: dict = field(default_factory=dict)
