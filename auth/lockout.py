"""
auth/lockout.py -- Per-account failed-attempt counter with time-boxed lockout.

State machine per account (state lives on the account record):

  Normal --failure, count+1 <  threshold--> Normal  (persist count)
  Normal --failure, count+1 >= threshold--> Locked  (persist count + lockout_until)
  Locked --attempt before expiry--------->  Locked  (reject, no password check, no increment)
  Locked --attempt after expiry---------->  Normal  (stale expiry ignored)
  any    --success----------------------->  Normal  (count 0, expiry cleared)

The decision logic depends only on the stored count/expiry and the configured
threshold/duration. remaining_attempts() and remaining_lockout() are derived
values for user-facing messages.

Persistence is part of the decision: a write that fails raises, and a write
that touches no row raises LockoutPersistenceError. Either way the login is
rejected -- the guard never fails open.

Concurrent failures for the same account race the read-modify-write and may
under-count by one. The lockout check itself is still enforced once tripped.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from auth.models import Account
from auth.store import AccountStore

logger = logging.getLogger("schoolgate.lockout")


class LockoutPersistenceError(RuntimeError):
    """The lockout counter could not be written for an existing account."""


class LoginGuard:
    """Brute-force guard backed by the account store.

    Usage:
        guard = LoginGuard(store, threshold=5, lockout_duration=timedelta(minutes=15))
        if guard.is_locked(account, now): ...
        attempts = guard.record_failure(account, now)
        guard.record_success(account)
    """

    def __init__(self, store: AccountStore, threshold: int, lockout_duration: timedelta) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._store = store
        self.threshold = threshold
        self.lockout_duration = lockout_duration

    def is_locked(self, account: Account, now: datetime) -> bool:
        """True while now is strictly before the stored lockout expiry."""
        if account.lockout_until is None:
            return False
        return _aware(now) < _aware(account.lockout_until)

    def record_failure(self, account: Account, now: datetime) -> int:
        """Count one failed attempt and lock the account at the threshold.

        Returns the number of failed attempts so far, including this one.
        The account object is updated in place to mirror the stored state.
        """
        attempts = account.failed_login_attempts + 1
        lockout_until = None
        if attempts >= self.threshold:
            lockout_until = _aware(now) + self.lockout_duration

        if not self._store.update_lockout(account.id, attempts, lockout_until):
            raise LockoutPersistenceError(f"lockout state for account {account.id} was not persisted")

        account.failed_login_attempts = attempts
        account.lockout_until = lockout_until
        if lockout_until is not None:
            logger.warning(
                "Account %s locked after %d failed attempts (until %s)",
                account.id,
                attempts,
                lockout_until.isoformat(),
            )
        return attempts

    def record_success(self, account: Account) -> None:
        """Reset the counter and clear any lockout after a successful login."""
        if account.failed_login_attempts == 0 and account.lockout_until is None:
            return
        if not self._store.update_lockout(account.id, 0, None):
            raise LockoutPersistenceError(f"lockout reset for account {account.id} was not persisted")
        account.failed_login_attempts = 0
        account.lockout_until = None

    def remaining_attempts(self, attempts: int) -> int:
        return max(0, self.threshold - attempts)

    def remaining_lockout(self, account: Account, now: datetime) -> timedelta:
        """Time left on the lockout, zero when the account is not locked."""
        if not self.is_locked(account, now):
            return timedelta(0)
        return _aware(account.lockout_until) - _aware(now)

    @property
    def lockout_minutes(self) -> int:
        return minutes_ceil(self.lockout_duration)


def minutes_ceil(delta: timedelta) -> int:
    """Whole minutes, rounded up, for messages like 'try again in N minutes'."""
    return math.ceil(delta.total_seconds() / 60)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
