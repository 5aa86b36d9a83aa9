"""
tests/test_health.py -- GET /api/v1/health for the identity service.

The endpoint answers without a bearer token and reports the credential store as
the "database" component. A failing store ping degrades the overall status
instead of turning the check into a 500.
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

HEALTH = "/api/v1/health"


def test_health_reports_store_component(api_client):
    client, _, _ = api_client
    resp = client.get(HEALTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == "1.0.0"
    assert body["components"] == {"app": "ok", "database": "ok"}


def test_health_needs_no_bearer_token(api_client):
    client, _, _ = api_client
    assert client.get(HEALTH, headers={"Authorization": "Bearer not-a-token"}).status_code == 200


def test_health_degraded_when_store_ping_fails(api_client, monkeypatch):
    client, _, _ = api_client

    def failing_ping():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(client.app.state.credential_store, "ping", failing_ping)
    body = client.get(HEALTH).json()
    assert body["status"] == "degraded"
    assert body["components"]["database"] == "error"


def test_unknown_host_rejected(api_client):
    """Host headers outside ALLOWED_HOSTS never reach the routes."""
    client, _, _ = api_client
    assert client.get(HEALTH, headers={"Host": "evil.example.com"}).status_code == 400
