"""
tests/conftest.py -- Shared test fixtures for SchoolGate integration tests.

This module provides:
  - FakeClock: steppable epoch clock shared by the cache, limiter and tokens
  - make_store(): isolated named shared-memory account store
  - seed_account(): insert an account with a pre-computed bcrypt hash
  - api: Harness around a TestClient wired to in-memory components

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates the signing secrets in dev mode rather than raising
ValueError.

The api fixture is function-scoped: every test gets a fresh cache, so the
auth-tier budget (5 per window per client) starts from zero each time.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate the signing secrets instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_auth
from auth.models import ROLE_SCHOOL_ADMIN, ROLE_SUPERADMIN, Account
from auth.store import AccountStore
from auth.tokens import hash_password
from cache.store import MemoryCache
from core.config import Settings

ROOT_PASSWORD = "RootPass123"
PRINCIPAL_PASSWORD = "Principal123"

# bcrypt is deliberately slow; hash the fixture passwords once per session.
_HASHES = {
    ROOT_PASSWORD: hash_password(ROOT_PASSWORD),
    PRINCIPAL_PASSWORD: hash_password(PRINCIPAL_PASSWORD),
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_store(name: str = "") -> AccountStore:
    """Create an isolated named shared-memory AccountStore."""
    name = name or uuid.uuid4().hex[:12]
    return AccountStore(f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def seed_account(
    store: AccountStore,
    username: str,
    password: str,
    role: str = ROLE_SCHOOL_ADMIN,
    school_id: str | None = None,
    **fields,
) -> Account:
    """Insert an account and return it as stored."""
    hashed = _HASHES.get(password) or hash_password(password)
    account = Account(
        username=username,
        email=f"{username}@schoolgate.test",
        role=role,
        hashed_password=hashed,
        school_id=school_id,
        **fields,
    )
    account_id = store.create_account(account)
    return store.get_by_id(account_id)


def make_settings(**overrides) -> Settings:
    """Settings with dev secrets; overrides replace individual limits."""
    return Settings(debug=True, **overrides)


def _patch_lifespan(settings: Settings, store: AccountStore, cache: MemoryCache, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and in-memory cache into app.state through the same
    install_auth() the production lifespan uses, so routes see the real
    components with isolated state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_auth(app, settings, store, cache, clock=clock)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    store: AccountStore
    cache: MemoryCache
    clock: FakeClock
    superadmin: Account
    principal: Account

    def login(self, username: str, password: str, **headers: str):
        return self.client.post(
            "/api/v1/auth/login",
            json={"username": username, "password": password},
            headers=headers,
        )

    def tokens_for(self, username: str, password: str) -> tuple[str, str]:
        """Log in and return (long_token, short_token); fails the test on error."""
        resp = self.login(username, password)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        return data["long_token"], data["short_token"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def start_harness(cache_cls: type[MemoryCache] = MemoryCache, **overrides) -> Generator[Harness, None, None]:
    settings = make_settings(**overrides)
    store = make_store()
    clock = FakeClock()
    cache = cache_cls(prefix="test", clock=clock)

    superadmin = seed_account(store, "root", ROOT_PASSWORD, role=ROLE_SUPERADMIN)
    principal = seed_account(store, "principal", PRINCIPAL_PASSWORD, school_id="school-1")

    app.router.lifespan_context = _patch_lifespan(settings, store, cache, clock)

    # base_url must satisfy TrustedHostMiddleware's default allowed hosts.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield Harness(
            client=client,
            store=store,
            cache=cache,
            clock=clock,
            superadmin=superadmin,
            principal=principal,
        )

    store.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api() -> Generator[Harness, None, None]:
    """Harness with default limits: 5 login attempts, 100 global / 5 auth per window."""
    yield from start_harness()
