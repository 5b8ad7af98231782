"""
Tests for admin core API routes.

Tests the dashboard, /api/status, /api/health, progress and error
reporting endpoints, plus the session gate in front of /api/*.
"""

from __future__ import annotations

import pytest

pytest.importorskip("flask")

from catechesis_admin.reliability.circuit_breaker import get_registry


@pytest.fixture(autouse=True)
def closed_circuits():
    get_registry().reset_all()
    yield


# ── Dashboard ────────────────────────────────────────────────────────


class TestIndex:

    def test_serves_dashboard(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"<html" in resp.data.lower()

    def test_missing_page_is_not_json(self, client):
        resp = client.get("/nao-existe")
        assert resp.status_code == 404
        assert not resp.is_json


# ── Status & health ──────────────────────────────────────────────────


class TestApiStatus:

    def test_open_without_login(self, client):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["github_configured"] is True
        assert data["login_configured"] is True
        assert data["settings_cached"] is False
        assert data["roster_loaded"] is False
        assert data["commit_queue"] == 0
        assert data["config"]["github_repository"] == "paroquia/catequese"
        assert "github_token" not in data["config"]

    def test_reports_cached_settings(self, client, state_dir):
        (state_dir / "settings.json").write_text("{}")
        assert client.get("/api/status").get_json()["settings_cached"] is True


class TestApiHealth:

    def test_degraded_without_local_settings(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "degraded"
        components = {c["name"]: c["status"] for c in data["components"]}
        assert components["settings"] == "degraded"
        assert components["github"] == "healthy"
        assert components["admin_login"] == "healthy"

    def test_bad_token_is_unhealthy(self, client, fake_github):
        fake_github.fail_next(401, {"message": "Bad credentials"})
        resp = client.get("/api/health")
        assert resp.status_code == 503
        assert resp.get_json()["healthy"] is False


# ── Session gate ─────────────────────────────────────────────────────


class TestSessionGate:

    def test_login_required(self, client):
        resp = client.get("/api/progress")
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "AUTH_REQUIRED"

    def test_unknown_session(self, client):
        resp = client.get("/api/progress", headers={"X-Session-Id": "f" * 64})
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "SESSION_EXPIRED"

    def test_cookie_is_accepted(self, client):
        from tests.conftest import PASSWORD

        resp = client.post("/api/auth/login", json={"username": "admin", "password": PASSWORD})
        assert resp.status_code == 200
        # The test client keeps the cookie set by the login response
        assert client.get("/api/progress").status_code == 200

    def test_unknown_api_endpoint(self, auth_client):
        resp = auth_client.get("/api/nao-existe")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    def test_method_not_allowed(self, client):
        resp = client.delete("/api/status")
        assert resp.status_code == 405
        assert resp.get_json()["code"] == "METHOD_NOT_ALLOWED"


# ── Progress ─────────────────────────────────────────────────────────


class TestApiProgress:

    def test_active_operations(self, app, auth_client):
        from catechesis_admin.admin.helpers import services

        with app.app_context():
            services().progress.start_operation("op_1", title="Enviando planilha")

        data = auth_client.get("/api/progress").get_json()
        assert [op["id"] for op in data["operations"]] == ["op_1"]
        assert data["stats"]["running"] == 1

    def test_single_and_cancel(self, app, auth_client):
        from catechesis_admin.admin.helpers import services

        with app.app_context():
            services().progress.start_operation("op_2")

        assert auth_client.get("/api/progress/op_2").get_json()["status"] == "running"
        resp = auth_client.delete("/api/progress/op_2")
        assert resp.get_json()["status"] == "cancelled"

    def test_unknown_operation(self, auth_client):
        resp = auth_client.get("/api/progress/op_nope")
        assert resp.status_code == 404


# ── Errors ───────────────────────────────────────────────────────────


class TestApiErrors:

    def test_submit_and_report(self, auth_client):
        resp = auth_client.post("/api/errors", json={
            "message": "Falha ao ler planilha",
            "type": "TypeError",
            "details": {"url": "/roster"},
        })
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "alerts": []}

        report = auth_client.get("/api/errors").get_json()
        assert report["summary"]["total_reported"] == 1
        assert report["recent"][0]["message"] == "Falha ao ler planilha"

    def test_message_required(self, auth_client):
        resp = auth_client.post("/api/errors", json={"message": "  "})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "message"

    def test_github_errors_are_reported(self, auth_client, fake_github):
        fake_github.fail_next(403, {"message": "Resource not accessible"})
        resp = auth_client.get("/api/github/commits")
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "PERMISSION_DENIED"

        report = auth_client.get("/api/errors").get_json()
        assert report["summary"]["total_reported"] == 1
        assert report["recent"][0]["type"] == "PermissionDeniedError"
        assert report["recent"][0]["details"]["path"] == "/api/github/commits"

    def test_clear(self, auth_client):
        auth_client.post("/api/errors", json={"message": "x"})
        assert auth_client.delete("/api/errors").get_json() == {"success": True}
        assert auth_client.get("/api/errors").get_json()["summary"]["total_reported"] == 0

    def test_history(self, auth_client):
        data = auth_client.get("/api/errors/history?limit=5").get_json()
        assert data["history"] == []
        assert data["stats"]["total"] == 0
