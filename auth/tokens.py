"""
auth/tokens.py -- Credential signing/verification and password hashing.

Security design decisions:
  Credentials: python-jose with HS256. Two classes exist, each signed with
       its own secret and stamped with a "typ" claim:
         long  -- user identity; exchanged only at /auth/refresh for short ones.
         short -- identity + session id + device fingerprint; sent on every
                  request, revocable per session.
       A leaked short credential cannot mint new short credentials because
       it never verifies under the long secret. Verification returns None on
       any failure -- the pipeline turns that into a 401. Segments must be
       canonical base64url, so any altered character is a failure.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in the login flow so response time does
       not reveal whether a username exists [C1].

  Secrets are passed to TokenService by the application assembly; this module
  never reads configuration itself.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import asdict
from enum import Enum
from typing import Union

import bcrypt
from jose import jwt
from jose.exceptions import JOSEError
from jose.utils import base64url_decode, base64url_encode

from auth.models import Device, LongClaims, ShortClaims

logger = logging.getLogger("schoolgate.auth")

_ALGORITHM = "HS256"

Claims = Union[LongClaims, ShortClaims]


class TokenClass(str, Enum):
    LONG = "long"
    SHORT = "short"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password fields at 128 characters via Pydantic.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("schoolgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session and device helpers
# ---------------------------------------------------------------------------


def new_session_id() -> str:
    """Return a fresh, URL-safe session identifier (128 bits of entropy)."""
    return secrets.token_urlsafe(16)


def device_fingerprint(device: Device) -> str:
    """Stable fingerprint of the client device description."""
    raw = json.dumps(asdict(device), sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


# ---------------------------------------------------------------------------
# TokenService
# ---------------------------------------------------------------------------


class TokenService:
    """Issue and verify long and short credentials.

    Usage:
        tokens = TokenService(long_secret, short_secret, long_ttl, short_ttl)
        raw = tokens.issue(TokenClass.SHORT, claims)
        claims = tokens.verify(TokenClass.SHORT, raw)   # None when invalid
    """

    def __init__(
        self,
        long_secret: str,
        short_secret: str,
        long_ttl_seconds: int,
        short_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secrets = {TokenClass.LONG: long_secret, TokenClass.SHORT: short_secret}
        self._ttls = {TokenClass.LONG: long_ttl_seconds, TokenClass.SHORT: short_ttl_seconds}
        self._clock = clock

    def max_lifetime(self, token_class: TokenClass) -> int:
        """Return the lifetime in seconds of a freshly issued credential."""
        return self._ttls[token_class]

    def issue(self, token_class: TokenClass, claims: Claims) -> str:
        """Sign claims as a credential of the given class. No side effects."""
        expected = LongClaims if token_class is TokenClass.LONG else ShortClaims
        if not isinstance(claims, expected):
            raise TypeError(f"{token_class.value} credentials carry {expected.__name__}, got {type(claims).__name__}")

        now = int(self._clock())
        payload = {
            "sub": claims.user_id,
            "user_key": claims.user_key,
            "role": claims.role,
            "school_id": claims.school_id,
            "typ": token_class.value,
            "iat": now,
            "exp": now + self._ttls[token_class],
        }
        if isinstance(claims, ShortClaims):
            payload["sid"] = claims.session_id
            payload["device_id"] = claims.device_id
        return jwt.encode(payload, self._secrets[token_class], algorithm=_ALGORITHM)

    def verify(self, token_class: TokenClass, token: str) -> Claims | None:
        """Verify signature, class and expiry. Returns the claims or None.

        Never raises for caller-supplied input: malformed strings, signature
        mismatches, foreign classes and expired credentials are all None.
        """
        if not isinstance(token, str) or not token:
            return None
        if not _is_canonical(token):
            return None
        try:
            payload = jwt.decode(token, self._secrets[token_class], algorithms=[_ALGORITHM])
        except JOSEError:
            return None
        if payload.get("typ") != token_class.value:
            return None
        return _payload_to_claims(token_class, payload)


def _is_canonical(token: str) -> bool:
    """True when the token is three segments, each in canonical base64url.

    jose decodes leniently: unused trailing bits of the last character and
    stray non-alphabet characters are ignored, so two different strings can
    carry the same signature. Only the canonical encoding is accepted.
    """
    segments = token.split(".")
    if len(segments) != 3:
        return False
    try:
        for segment in segments:
            raw = segment.encode("ascii")
            if base64url_encode(base64url_decode(raw)) != raw:
                return False
    except (ValueError, TypeError):
        return False
    return True


def _payload_to_claims(token_class: TokenClass, payload: dict) -> Claims | None:
    required = ["sub", "user_key", "role"]
    if token_class is TokenClass.SHORT:
        required += ["sid", "device_id"]
    if not all(isinstance(payload.get(name), str) and payload.get(name) for name in required):
        return None
    school_id = payload.get("school_id")
    if school_id is not None and not isinstance(school_id, str):
        return None

    if token_class is TokenClass.LONG:
        return LongClaims(
            user_id=payload["sub"],
            user_key=payload["user_key"],
            role=payload["role"],
            school_id=school_id,
        )
    return ShortClaims(
        user_id=payload["sub"],
        user_key=payload["user_key"],
        role=payload["role"],
        session_id=payload["sid"],
        device_id=payload["device_id"],
        school_id=school_id,
    )
