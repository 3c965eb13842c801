"""Unit tests for auth/lockout.py -- LoginGuard state machine.

Covers:
- Failures below the threshold only count
- The threshold-th failure locks for exactly the configured duration
- Locked until strictly before expiry; unlocked at and after expiry
- Success resets count and expiry
- A lockout write that touches no row raises instead of failing open
- Derived values (remaining attempts, remaining time, minutes) for messages
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.lockout import LockoutPersistenceError, LoginGuard, minutes_ceil
from auth.models import Account
from auth.store import AccountStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
DURATION = timedelta(minutes=15)

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def guard(store):
    return LoginGuard(store, threshold=5, lockout_duration=DURATION)


@pytest.fixture
def account(store):
    account_id = store.create_account(
        Account(username="principal", email="p@schoolgate.test", role="school_admin", hashed_password="x")
    )
    return store.get_by_id(account_id)


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


def test_failures_below_threshold_do_not_lock(guard, store, account):
    for expected in range(1, 5):
        assert guard.record_failure(account, NOW) == expected
        assert not guard.is_locked(account, NOW)

    stored = store.get_by_id(account.id)
    assert stored.failed_login_attempts == 4
    assert stored.lockout_until is None


def test_threshold_failure_locks(guard, store, account):
    for _ in range(5):
        guard.record_failure(account, NOW)

    stored = store.get_by_id(account.id)
    assert stored.failed_login_attempts == 5
    assert stored.lockout_until == NOW + DURATION
    assert guard.is_locked(stored, NOW)
    assert guard.is_locked(stored, NOW + DURATION - timedelta(seconds=1))


def test_lock_expires_at_boundary(guard, account):
    for _ in range(5):
        guard.record_failure(account, NOW)
    assert not guard.is_locked(account, NOW + DURATION)
    assert not guard.is_locked(account, NOW + DURATION + timedelta(minutes=1))


def test_success_resets_state(guard, store, account):
    for _ in range(5):
        guard.record_failure(account, NOW)
    guard.record_success(account)

    stored = store.get_by_id(account.id)
    assert stored.failed_login_attempts == 0
    assert stored.lockout_until is None
    assert not guard.is_locked(stored, NOW)


def test_stale_count_relocks_after_expiry(guard, account):
    """The counter survives an expired lockout, so the next failure locks again."""
    for _ in range(5):
        guard.record_failure(account, NOW)
    later = NOW + DURATION + timedelta(minutes=1)
    assert guard.record_failure(account, later) == 6
    assert guard.is_locked(account, later)


def test_threshold_of_one(store, account):
    strict = LoginGuard(store, threshold=1, lockout_duration=DURATION)
    strict.record_failure(account, NOW)
    assert strict.is_locked(account, NOW)


def test_invalid_threshold(store):
    with pytest.raises(ValueError):
        LoginGuard(store, threshold=0, lockout_duration=DURATION)


# ---------------------------------------------------------------------------
# Persistence failures
# ---------------------------------------------------------------------------


def test_missing_row_raises(guard):
    ghost = Account(username="ghost", email="g@schoolgate.test", role="school_admin", id=999)
    with pytest.raises(LockoutPersistenceError):
        guard.record_failure(ghost, NOW)


def test_failed_write_leaves_account_untouched(guard):
    ghost = Account(username="ghost", email="g@schoolgate.test", role="school_admin", id=999)
    with pytest.raises(LockoutPersistenceError):
        guard.record_failure(ghost, NOW)
    assert ghost.failed_login_attempts == 0


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


def test_remaining_attempts(guard):
    assert guard.remaining_attempts(0) == 5
    assert guard.remaining_attempts(4) == 1
    assert guard.remaining_attempts(7) == 0


def test_remaining_lockout(guard, account):
    assert guard.remaining_lockout(account, NOW) == timedelta(0)
    for _ in range(5):
        guard.record_failure(account, NOW)
    assert guard.remaining_lockout(account, NOW + timedelta(minutes=5)) == timedelta(minutes=10)


def test_minutes_round_up():
    assert minutes_ceil(timedelta(seconds=61)) == 2
    assert minutes_ceil(timedelta(minutes=15)) == 15
    assert LoginGuard(None, threshold=5, lockout_duration=timedelta(minutes=15)).lockout_minutes == 15
