"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status and version
  - No authentication required
  - TrustedHostMiddleware rejects unexpected Host headers before routing
  - Unrouted paths and wrong methods still answer with the error envelope
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_200_with_version(api_client):
    """Health endpoint returns 200 with status and version."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _, _ = api_client
    # Explicitly make request with no auth headers
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_untrusted_host_rejected(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400


def test_unknown_path_uses_error_envelope(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/no-such-route")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_wrong_method_uses_error_envelope(api_client):
    client, _, _ = api_client
    resp = client.delete("/api/v1/health")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "http_405"
    assert "GET" in resp.headers["allow"]
