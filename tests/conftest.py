"""
tests/conftest.py -- Shared test fixtures for Gatekeeper unit and integration tests.

This module provides:
  - make_service(): an AuthService on an isolated in-memory DB
  - service:        function-scoped AuthService for unit tests
  - api_client:     TestClient over the real app with a patched lifespan
  - register_user / auth_headers helpers for HTTP tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Each fixture gets a unique name so tests never see each other's rows.

DEBUG and BCRYPT_ROUNDS must be set before any core/auth import so
get_settings() auto-generates SECRET_KEY and hashing stays fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set env before any core/auth import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SESSION_SWEEP_INTERVAL_SECONDS", "0")
# TestClient sends Host: testserver.
os.environ.setdefault("ALLOWED_HOSTS", '["localhost", "127.0.0.1", "testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.seed import seed_roles
from auth.service import AuthService
from auth.sessions import SessionLedger
from auth.store import UserStore
from auth.tokens import TokenIssuer

TEST_SECRET = "test-secret-key-with-at-least-32-characters!"
TEST_PASSWORD = "Str0ngPassw0rd!"

# Rate limits are exercised explicitly in test_auth_routes.py; everywhere
# else they would make results depend on test order.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Service helpers
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    """Return a UserStore on a fresh named shared-memory SQLite database."""
    name = f"test_auth_{uuid.uuid4().hex}"
    return UserStore(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_service(store: UserStore | None = None, access_ttl: int = 900) -> AuthService:
    store = store or make_store()
    return AuthService(
        store,
        SessionLedger(store, default_ttl=timedelta(days=7), remember_me_ttl=timedelta(days=30)),
        TokenIssuer(TEST_SECRET, access_ttl),
        bcrypt_rounds=4,
    )


@pytest.fixture()
def service() -> Generator[AuthService, None, None]:
    svc = make_service()
    seed_roles(svc)
    yield svc
    svc.close()


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test service into app.state so routes see the isolated test DB
    rather than the configured database. No sweep task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.started_at = 0.0
        app.state.sweep_task = None
        yield

    return test_lifespan


@pytest.fixture()
def api_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for HTTP integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, middleware and exception handlers.
    System roles are seeded; no users exist yet.
    """
    svc = make_service()
    seed_roles(svc)
    app.router.lifespan_context = _patch_lifespan(svc)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, svc
    svc.close()


def register_user(client: TestClient, email: str = "alice@example.com", password: str = TEST_PASSWORD, **extra) -> dict:
    """POST /auth/register and return the envelope's data payload."""
    body = {"email": email, "password": password, "confirmPassword": password, **extra}
    resp = client.post("/api/v1/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def make_admin(service: AuthService, email: str = "admin@example.com") -> tuple[int, str]:
    """Provision an admin user and return (user_id, access_token)."""
    user = service.provision_user(email, TEST_PASSWORD, role_names=["admin"])
    return user.id, service.issuer.issue(user).access_token
