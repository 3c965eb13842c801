"""
auth/scope.py -- Role-based scoping of a verified caller.

Roles are a closed set of variants rather than free-form strings:

  Superadmin   -- platform-wide. For school-scoped operations the school must be
                  named explicitly by the request; there is no implicit scope.
  SchoolAdmin  -- bound to the school in their credential. Any school id the
                  request supplies is ignored for authorization purposes, so a
                  school admin cannot act on another school by spoofing an id.

principal_from_claims() is the only place role strings are interpreted. Every
other function dispatches on the variant type, and an unhandled variant is a
programming error (TypeError), not a silent fall-through.

The EffectiveScope produced here is the only authorization context business
handlers receive; they never re-derive it from raw claims.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from auth.errors import AuthError, bad_request, forbidden
from auth.models import ROLE_SCHOOL_ADMIN, ROLE_SUPERADMIN, LongClaims, ShortClaims


@dataclass(frozen=True)
class Superadmin:
    user_id: str


@dataclass(frozen=True)
class SchoolAdmin:
    user_id: str
    school_id: str | None


Principal = Union[Superadmin, SchoolAdmin]


@dataclass(frozen=True)
class EffectiveScope:
    user_id: str
    role: str
    school_id: str | None
    is_superadmin: bool


def principal_from_claims(claims: LongClaims | ShortClaims) -> Principal | None:
    """Map the credential's role string onto a Principal; None for unknown roles."""
    if claims.role == ROLE_SUPERADMIN:
        return Superadmin(user_id=claims.user_id)
    if claims.role == ROLE_SCHOOL_ADMIN:
        return SchoolAdmin(user_id=claims.user_id, school_id=claims.school_id)
    return None


def derive_school_scope(principal: Principal, requested_school_id: str | None) -> EffectiveScope | AuthError:
    """Resolve which school a school-scoped request may act on."""
    if isinstance(principal, Superadmin):
        if not requested_school_id:
            return bad_request("school_id is required for superadmin to access school resources.")
        return EffectiveScope(
            user_id=principal.user_id,
            role=ROLE_SUPERADMIN,
            school_id=requested_school_id,
            is_superadmin=True,
        )
    if isinstance(principal, SchoolAdmin):
        if not principal.school_id:
            return forbidden("School admin is not assigned to any school.")
        return EffectiveScope(
            user_id=principal.user_id,
            role=ROLE_SCHOOL_ADMIN,
            school_id=principal.school_id,
            is_superadmin=False,
        )
    raise TypeError(f"unhandled principal variant: {principal!r}")


def require_superadmin(principal: Principal) -> EffectiveScope | AuthError:
    """Platform-wide scope for superadmin-only operations."""
    if isinstance(principal, Superadmin):
        return EffectiveScope(
            user_id=principal.user_id,
            role=ROLE_SUPERADMIN,
            school_id=None,
            is_superadmin=True,
        )
    if isinstance(principal, SchoolAdmin):
        return forbidden("Superadmin access required.")
    raise TypeError(f"unhandled principal variant: {principal!r}")
