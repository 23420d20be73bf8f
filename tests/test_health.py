"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the store answers, 'error' otherwise
  - Never rate limited
"""

from __future__ import annotations

from unittest.mock import patch


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_database_error(api_client, user_store):
    """A failing datastore ping is reported, not raised."""
    with patch.object(user_store, "ping", return_value=False):
        data = api_client.get("/api/v1/health").json()
    assert data["status"] == "healthy"
    assert data["components"]["database"] == "error"


def test_health_not_rate_limited(api_client):
    """Probes may poll as often as they like."""
    statuses = {api_client.get("/api/v1/health").status_code for _ in range(40)}
    assert statuses == {200}
