"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the live store
  - No authentication required
  - A dead store reports 'degraded' with 503
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_health_degraded_when_store_unreachable(api_client):
    engine = api_client.service.state.engine
    with patch.object(engine, "connect", side_effect=OperationalError("SELECT 1", {}, Exception("unable to open database"))):
        resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["database"] == "error"


def test_store_failure_on_protected_route_fails_closed(api_client):
    """A store error during the revocation check is a 503, never an allow."""
    headers = api_client.headers("user@example.com")
    with patch.object(
        api_client.service.state, "get_session", side_effect=OperationalError("SELECT", {}, Exception("database is locked"))
    ):
        resp = api_client.client.get("/api/v1/auth/me", headers=headers)
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "unavailable"
    assert resp.headers["Retry-After"] == "5"
