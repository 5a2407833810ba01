"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database key present and reports 'ok'
  - database probe failure reported as 'degraded', not a 500
  - No authentication required
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


def test_health_reports_database_failure(api_client):
    """A failing database probe degrades the status instead of raising."""
    store = api_client.harness.store
    with patch.object(store, "ping", side_effect=OperationalError("SELECT 1", {}, Exception("down"))):
        resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unknown_route_uses_error_envelope(api_client):
    """Starlette 404s are rendered with the same envelope as engine errors."""
    resp = api_client.client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"
