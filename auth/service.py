"""
auth/service.py -- Login, refresh, logout and account self-service flows.

AuthService is the business layer between the HTTP routes and the auth
components. Expected outcomes (bad password, locked account, unknown user,
duplicate username) come back as AuthError values; the routes decide how to
render them. Unexpected faults -- the account store being unreachable, a
lockout write that touched no row -- propagate as exceptions so the request
fails closed with a generic 500.

Security:
  [C1] Unknown identifiers still pay for a bcrypt comparison (timing
       equalization) and get the same generic message as a wrong password.
  [C2] A locked account is rejected before the password is checked, and the
       failure counter is not incremented while locked.
  [C3] Lockout bookkeeping is persisted before any token is issued.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthError, ErrorKind, auth_error, bad_request, forbidden, not_found, unauthenticated
from auth.lockout import LoginGuard, minutes_ceil
from auth.models import ROLE_SCHOOL_ADMIN, ROLE_SUPERADMIN, ROLES, Account, Device, LongClaims, ShortClaims
from auth.scope import EffectiveScope
from auth.sessions import SessionRegistry
from auth.store import AccountStore
from auth.tokens import (
    TokenClass,
    TokenService,
    burn_password_check,
    device_fingerprint,
    hash_password,
    new_session_id,
    verify_password,
)

logger = logging.getLogger("schoolgate.auth")

MIN_PASSWORD_LENGTH = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LoginResult:
    account: Account
    long_token: str
    short_token: str


@dataclass
class CreatedAccount:
    account: Account
    long_token: str


def password_problem(password: str) -> str | None:
    """Return a human-readable reason the password is too weak, or None."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
    if not (re.search(r"[A-Z]", password) and re.search(r"[a-z]", password) and re.search(r"[0-9]", password)):
        return "Password must contain at least 1 uppercase, 1 lowercase, and 1 number."
    return None


class AuthService:
    def __init__(
        self,
        store: AccountStore,
        guard: LoginGuard,
        tokens: TokenService,
        sessions: SessionRegistry,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._guard = guard
        self._tokens = tokens
        self._sessions = sessions
        self._clock = clock

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str, device: Device) -> LoginResult | AuthError:
        """Authenticate by username or email and issue long + short credentials."""
        if not identifier or not password:
            return bad_request("Username and password are required.")

        account = self._store.find_by_login(identifier)
        if account is None:
            burn_password_check(password)  # [C1]
            return _invalid_credentials()

        now = self._clock()
        if self._guard.is_locked(account, now):  # [C2]
            minutes = minutes_ceil(self._guard.remaining_lockout(account, now))
            return auth_error(
                ErrorKind.ACCOUNT_LOCKED,
                f"Account is locked. Try again in {minutes} minute(s).",
                minutes_remaining=minutes,
            )

        if not verify_password(password, account.hashed_password or ""):
            attempts = self._guard.record_failure(account, now)
            remaining = self._guard.remaining_attempts(attempts)
            if remaining <= 0:
                minutes = self._guard.lockout_minutes
                return auth_error(
                    ErrorKind.ACCOUNT_LOCKED,
                    f"Account locked due to too many failed attempts. Try again in {minutes} minutes.",
                    minutes_remaining=minutes,
                )
            return _invalid_credentials(remaining)

        self._guard.record_success(account)  # [C3]
        logger.info("Login succeeded for account %s", account.id)
        return LoginResult(
            account=account,
            long_token=self._tokens.issue(TokenClass.LONG, _long_claims(account)),
            short_token=self._issue_short(_long_claims(account), device),
        )

    def refresh(self, claims: LongClaims, device: Device) -> str | AuthError:
        """Mint a new short credential, bound to a new session id."""
        if self._store.get_by_id(claims.user_id) is None:
            return unauthenticated("User not found.")
        return self._issue_short(claims, device)

    async def logout(self, claims: ShortClaims) -> None:
        """Revoke the caller's session. The credential stays unusable until it expires."""
        await self._sessions.revoke(claims.session_id)
        logger.info("Account %s logged out", claims.user_id)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def me(self, claims: ShortClaims) -> Account | AuthError:
        account = self._store.get_by_id(claims.user_id)
        if account is None:
            return not_found("User not found.")
        return account

    def change_password(self, claims: ShortClaims, current_password: str, new_password: str) -> AuthError | None:
        """Replace the caller's password. Returns None on success."""
        if not current_password or not new_password:
            return bad_request("Current password and new password are required.")
        problem = password_problem(new_password)
        if problem:
            return bad_request(problem)

        account = self._store.get_by_id(claims.user_id)
        if account is None:
            return not_found("User not found.")
        if account.is_seeded:
            return forbidden("Cannot change password for this account.")
        if not verify_password(current_password, account.hashed_password or ""):
            return auth_error(ErrorKind.INVALID_CREDENTIALS, "Current password is incorrect.")

        self._store.update_account(account.id, hashed_password=hash_password(new_password))
        logger.info("Password changed for account %s", account.id)
        return None

    # ------------------------------------------------------------------
    # Account provisioning (superadmin)
    # ------------------------------------------------------------------

    def create_account(
        self,
        scope: EffectiveScope,
        username: str,
        email: str,
        password: str,
        role: str = ROLE_SCHOOL_ADMIN,
        school_id: str | None = None,
    ) -> CreatedAccount | AuthError:
        """Create a superadmin or school admin account and return its long credential.

        School existence is owned by the school service; only presence of the
        id is checked here.
        """
        if not scope.is_superadmin:
            return forbidden("Superadmin access required.")
        if role not in ROLES:
            return bad_request(f"role must be one of {', '.join(ROLES)}.")
        if role == ROLE_SCHOOL_ADMIN and not school_id:
            return bad_request("school_id is required for school_admin role.")
        problem = password_problem(password)
        if problem:
            return bad_request(problem)

        existing = self._store.exists(username, email)
        if existing is not None:
            message = "Username already exists." if existing.username == username else "Email already exists."
            return auth_error(ErrorKind.CONFLICT, message)

        account = Account(
            username=username,
            email=email,
            role=role,
            hashed_password=hash_password(password),
            school_id=None if role == ROLE_SUPERADMIN else school_id,
        )
        try:
            account.id = self._store.create_account(account)
        except IntegrityError:
            # Lost a race against a concurrent create with the same username/email.
            return auth_error(ErrorKind.CONFLICT, "Username or email already exists.")

        created = self._store.get_by_id(account.id) or account
        logger.info("Account %s (%s) created by %s", created.id, role, scope.user_id)
        return CreatedAccount(
            account=created,
            long_token=self._tokens.issue(TokenClass.LONG, _long_claims(created)),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_short(self, claims: LongClaims, device: Device) -> str:
        return self._tokens.issue(
            TokenClass.SHORT,
            ShortClaims(
                user_id=claims.user_id,
                user_key=claims.user_key,
                role=claims.role,
                session_id=new_session_id(),
                device_id=device_fingerprint(device),
                school_id=claims.school_id,
            ),
        )


def _long_claims(account: Account) -> LongClaims:
    account_id = str(account.id)
    return LongClaims(
        user_id=account_id,
        user_key=account_id,
        role=account.role,
        school_id=account.school_id,
    )


def _invalid_credentials(remaining: int | None = None) -> AuthError:
    if remaining is None:
        return auth_error(ErrorKind.INVALID_CREDENTIALS, "Invalid credentials.")
    return auth_error(
        ErrorKind.INVALID_CREDENTIALS,
        f"Invalid credentials. {remaining} attempt(s) remaining.",
        remaining_attempts=remaining,
    )
