"""
tests/test_health.py -- Integration tests for GET /health and the API root.

Covers:
  - 200 response with status, uptime, environment and components
  - database component reports 'ok' against a live store
  - 503 error envelope marked 'degraded' when the database ping fails
  - API root echoes the caller only when a valid token is sent
  - lifespan cancels and awaits the session sweep task on shutdown
  - No authentication required
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

from conftest import auth_headers, make_service, register_user
from sqlalchemy.exc import OperationalError

import api.main as api_main
from auth.service import AuthService


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, uptime, environment and components."""
    client, _ = api_client
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "healthy"
    assert data["environment"] == "development"
    assert data["uptime"] >= 0
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_degraded_database(api_client):
    """A failing ping turns the response into 503 rather than a 500 error."""
    client, service = api_client
    with patch.object(service.store, "ping", side_effect=OperationalError("SELECT 1", {}, Exception("down"))):
        resp = client.get("/health")
    assert resp.status_code == 503
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Server is degraded"
    assert body["error"]["code"] == "SERVICE_UNAVAILABLE"
    assert body["error"]["details"]["status"] == "degraded"
    assert body["error"]["details"]["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/health", headers={})
    assert resp.status_code == 200


def test_api_root_lists_endpoint_groups(api_client):
    client, _ = api_client
    resp = client.get("/api/v1/")
    assert resp.status_code == 200
    endpoints = resp.json()["data"]["endpoints"]
    assert endpoints["auth"] == "/api/v1/auth"
    assert endpoints["health"] == "/health"
    assert resp.json()["data"]["authenticatedAs"] is None


def test_api_root_echoes_authenticated_caller(api_client):
    client, _ = api_client
    token = register_user(client)["tokens"]["accessToken"]
    assert client.get("/api/v1/", headers=auth_headers(token)).json()["data"]["authenticatedAs"] == "alice@example.com"
    # A bad token is ignored rather than rejected.
    resp = client.get("/api/v1/", headers=auth_headers("garbage"))
    assert resp.status_code == 200
    assert resp.json()["data"]["authenticatedAs"] is None


def test_lifespan_awaits_cancelled_sweep_task(monkeypatch):
    svc = make_service()
    closed = []
    monkeypatch.setattr(svc, "close", lambda: closed.append(True))
    monkeypatch.setattr(AuthService, "from_settings", staticmethod(lambda settings: svc))
    monkeypatch.setattr(api_main.settings, "session_sweep_interval_seconds", 3600)

    async def run() -> asyncio.Task:
        async with api_main.lifespan(api_main.app):
            task = api_main.app.state.sweep_task
            assert not task.done()
        return task

    task = asyncio.run(run())
    assert task.cancelled()
    assert closed == [True]
    svc.store.close()
