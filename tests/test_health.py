"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database and components.cache report 'ok'
  - No authentication required
  - 503 with status 'degraded' when the shared cache stops answering
  - App assembly warns when the account store has no accounts yet
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from api.main import install_auth
from cache.store import MemoryCache
from conftest import ROOT_PASSWORD, Harness, make_settings, make_store, seed_account


def test_health_returns_200_with_components(api: Harness):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"
    assert data["components"]["cache"] == "ok"


def test_health_no_auth_required(api: Harness):
    """Health endpoint is accessible without any authentication headers."""
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_reports_cache_outage(api: Harness, monkeypatch):
    async def unreachable() -> bool:
        return False

    monkeypatch.setattr(api.cache, "ping", unreachable)
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 503
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["cache"] == "error"
    assert data["components"]["database"] == "ok"


def test_empty_account_store_is_reported(caplog):
    """Assembling the app on a store with no accounts warns the operator to seed one."""
    store = make_store()
    with caplog.at_level(logging.WARNING, logger="schoolgate.api"):
        install_auth(FastAPI(), make_settings(), store, MemoryCache())
    store.close()
    assert "seed-superadmin" in caplog.text


def test_seeded_account_store_is_quiet(caplog):
    store = make_store()
    seed_account(store, "root", ROOT_PASSWORD, role="superadmin")
    with caplog.at_level(logging.WARNING, logger="schoolgate.api"):
        install_auth(FastAPI(), make_settings(), store, MemoryCache())
    store.close()
    assert "seed-superadmin" not in caplog.text
