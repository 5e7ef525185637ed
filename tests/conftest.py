"""
tests/conftest.py -- Shared test fixtures for Warden unit and integration tests.

This module provides:
  - settings / clock: per-test Settings (fresh DB) and a FakeClock
  - service: AuthService on an isolated in-memory DB, driven by FakeClock
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Role
from auth.service import AuthService
from core.config import Settings
from tests.helpers import PASSWORD, FakeClock, create_identity, make_settings

# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def service(settings: Settings, clock: FakeClock) -> Generator[AuthService, None, None]:
    svc = AuthService.from_settings(settings, clock=clock)
    yield svc
    svc.close()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test AuthService into app.state so routes use the isolated DB.
    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class ApiHarness:
    client: TestClient
    service: AuthService

    def login(self, email: str, password: str = PASSWORD, device_id: str = "test-device") -> dict:
        """Log in and return the token body. Drops the cookie so later calls use only explicit headers."""
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password, "device_id": device_id})
        assert resp.status_code == 200, resp.text
        self.client.cookies.clear()
        return resp.json()

    def headers(self, email: str, password: str = PASSWORD) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.login(email, password)['access_token']}"}


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, dependencies and exception handlers.
    The coarse slowapi limiter is disabled; the identity-aware limits in
    AuthService stay on.

    Seeded identities (all with PASSWORD):
      root@example.com    SUPER_ADMIN
      admin@example.com   ADMIN
      mod@example.com     MODERATOR
      user@example.com    USER
    """
    service = AuthService.from_settings(make_settings(login_rate_limit_attempts=1000, anonymous_rate_limit=1000))
    for email, role in (
        ("root@example.com", Role.SUPER_ADMIN),
        ("admin@example.com", Role.ADMIN),
        ("mod@example.com", Role.MODERATOR),
        ("user@example.com", Role.USER),
    ):
        create_identity(service, email, role)

    app.router.lifespan_context = _patch_lifespan(service)
    limiter.enabled = False

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, service=service)

    limiter.enabled = True
    service.close()
