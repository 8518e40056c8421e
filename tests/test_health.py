"""
tests/test_health.py -- Integration tests for GET /api/health and app-wide plumbing.

Covers:
  - Health: 200 with status and version, no authentication required
  - Docs are served only to signed-in users
  - Error envelope for unknown routes, malformed bodies, bad Host headers
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.main import VERSION


def test_health_returns_status_and_version(client: TestClient) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_no_auth_required(client: TestClient) -> None:
    resp = client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_docs_require_session(client: TestClient, login_as) -> None:
    assert client.get("/docs").status_code == 401
    assert client.get("/redoc").status_code == 401

    headers = login_as("viewer@example.com", "viewerpass123")
    resp = client.get("/docs", headers=headers)
    assert resp.status_code == 200
    assert "swagger" in resp.text.lower()


def test_unknown_route_uses_error_envelope(client: TestClient) -> None:
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "HTTP_404"


def test_malformed_json_is_validation_error(client: TestClient) -> None:
    resp = client.post(
        "/api/auth/login",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_untrusted_host_is_rejected(client: TestClient) -> None:
    resp = client.get("/api/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
