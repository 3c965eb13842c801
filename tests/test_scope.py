"""Unit tests for auth/scope.py -- principal mapping and school scoping.

Covers:
- Role strings map onto Superadmin / SchoolAdmin; unknown roles map to None
- Superadmin must name a school; school admins are pinned to their own
- require_superadmin() rejects school admins
- Unhandled principal variants are programming errors
"""

import pytest

from auth.errors import AuthError, ErrorKind
from auth.models import LongClaims, ShortClaims
from auth.scope import (
    EffectiveScope,
    SchoolAdmin,
    Superadmin,
    derive_school_scope,
    principal_from_claims,
    require_superadmin,
)


def _short(role: str, school_id: str | None = None) -> ShortClaims:
    return ShortClaims(user_id="9", user_key="9", role=role, session_id="s", device_id="d", school_id=school_id)


def test_principal_from_claims():
    assert principal_from_claims(_short("superadmin")) == Superadmin(user_id="9")
    assert principal_from_claims(_short("school_admin", "school-1")) == SchoolAdmin(user_id="9", school_id="school-1")
    assert principal_from_claims(LongClaims(user_id="9", user_key="9", role="superadmin")) == Superadmin(user_id="9")
    assert principal_from_claims(_short("teacher")) is None


def test_superadmin_uses_requested_school():
    scope = derive_school_scope(Superadmin("1"), "school-42")
    assert scope == EffectiveScope(user_id="1", role="superadmin", school_id="school-42", is_superadmin=True)


@pytest.mark.parametrize("requested", [None, ""])
def test_superadmin_without_school_is_bad_request(requested):
    result = derive_school_scope(Superadmin("1"), requested)
    assert isinstance(result, AuthError)
    assert result.kind is ErrorKind.BAD_REQUEST
    assert result.status == 400


@pytest.mark.parametrize("requested", [None, "school-1", "school-2"])
def test_school_admin_is_pinned_to_own_school(requested):
    scope = derive_school_scope(SchoolAdmin("2", "school-1"), requested)
    assert scope.school_id == "school-1"
    assert scope.is_superadmin is False


def test_school_admin_without_school_is_forbidden():
    result = derive_school_scope(SchoolAdmin("2", None), "school-1")
    assert isinstance(result, AuthError)
    assert result.kind is ErrorKind.FORBIDDEN


def test_require_superadmin():
    assert require_superadmin(Superadmin("1")).is_superadmin
    result = require_superadmin(SchoolAdmin("2", "school-1"))
    assert isinstance(result, AuthError)
    assert result.status == 403


def test_unknown_variant_raises():
    with pytest.raises(TypeError):
        derive_school_scope("superadmin", "school-1")
    with pytest.raises(TypeError):
        require_superadmin(object())
