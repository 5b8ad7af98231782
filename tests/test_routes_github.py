"""
Tests for admin GitHub API routes.

Connection checks, commits, Pages deployment, and the commit retry
queue, all against the in-memory GitHub from conftest.
"""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest

pytest.importorskip("flask")

from catechesis_admin.errors import NetworkError
from catechesis_admin.reliability.retry_queue import RetryQueue


def wait_for_operation(client, operation_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        op = client.get(f"/api/progress/{operation_id}").get_json()
        if op["status"] != "running":
            return op
        time.sleep(0.02)
    raise AssertionError(f"operation {operation_id} still running")


# ── Connection ───────────────────────────────────────────────────────


class TestConnection:

    def test_connected(self, auth_client):
        resp = auth_client.get("/api/github/connection")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["message"] == "Conectado a paroquia/catequese"

    def test_bad_token(self, auth_client, fake_github):
        fake_github.fail_next(401, {"message": "Bad credentials"})
        resp = auth_client.get("/api/github/connection")
        assert resp.status_code == 502
        assert resp.get_json()["code"] == "INVALID_TOKEN"

    def test_access(self, auth_client):
        data = auth_client.get("/api/github/access").get_json()
        assert data["valid"] is True
        assert data["user"] == "secretaria"
        assert data["can_push"] is True

    def test_read_only_token(self, auth_client, fake_github):
        fake_github.permissions = {"admin": False, "push": False, "pull": True}
        data = auth_client.get("/api/github/access").get_json()
        assert data["valid"] is False
        assert data["message"] == "Token sem permissão de escrita no repositório"

    def test_rate_limit(self, auth_client):
        assert auth_client.get("/api/github/rate-limit").get_json()["remaining"] is None
        data = auth_client.get("/api/github/rate-limit?refresh=1").get_json()
        assert data["remaining"] == 4990
        assert data["limit"] == 5000

    def test_commits(self, auth_client, fake_github):
        data = auth_client.get("/api/github/commits?limit=3&path=config/settings.json").get_json()
        assert len(data["commits"]) == 3
        first = data["commits"][0]
        assert first["short_sha"] == first["sha"][:7]
        assert first["author"] == "Secretaria"
        assert fake_github.calls("GET", "/commits")[0].url.params["path"] == "config/settings.json"

    def test_commit_limit_is_clamped(self, auth_client):
        assert len(auth_client.get("/api/github/commits?limit=0").get_json()["commits"]) == 1

    def test_request_queue_stats(self, auth_client):
        data = auth_client.get("/api/github/requests").get_json()
        assert data["total_pending"] == 0
        assert data["pending"] == {"high": 0, "normal": 0, "low": 0}


class TestWithoutGitHub:

    @pytest.fixture
    def admin_config(self, admin_config):
        admin_config.github_token = None
        return admin_config

    def test_missing_configuration(self, auth_client):
        resp = auth_client.get("/api/github/connection")
        data = resp.get_json()
        assert data["code"] == "MISSING_CONFIG"
        assert "GITHUB_TOKEN" in data["error"]

    def test_status_reports_it(self, client):
        assert client.get("/api/status").get_json()["github_configured"] is False


# ── Deployment ───────────────────────────────────────────────────────


class TestDeployment:

    def test_status(self, auth_client):
        data = auth_client.get("/api/github/deployment").get_json()
        assert data["status"] == "built"
        assert data["last_deployment"]["commit"] == "abc1234def5678"

    def test_latest(self, auth_client, fake_github):
        fake_github.latest_build = None
        assert auth_client.get("/api/github/deployment/latest").get_json() == {"deployment": None}

    def test_monitor_requires_commit(self, auth_client):
        resp = auth_client.post("/api/github/deployment/monitor", json={})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "commit_sha"

    def test_monitor_in_background(self, auth_client, state_dir):
        resp = auth_client.post("/api/github/deployment/monitor", json={"commit_sha": "abc1234" + "0" * 33})
        assert resp.status_code == 202
        operation_id = resp.get_json()["operation_id"]

        op = wait_for_operation(auth_client, operation_id)
        assert op["status"] == "completed"
        assert op["progress"] == 100

        logs = auth_client.get("/api/logs?type=deploy").get_json()["logs"]
        assert logs[0]["status"] == "success"

    def test_monitor_failed_build(self, auth_client, fake_github):
        fake_github.latest_build.update(status="errored", error={"message": "Page build failed."})
        operation_id = auth_client.post(
            "/api/github/deployment/monitor", json={"commit_sha": "abc1234"},
        ).get_json()["operation_id"]

        op = wait_for_operation(auth_client, operation_id)
        assert op["status"] == "error"
        assert op["error"] == "Deploy falhou: Page build failed."

    def test_verify(self, auth_client):
        result = {"verified": True, "message": "Site publicado e acessível", "response_time": 12}
        with patch(
            "catechesis_admin.github.deployment.DeploymentMonitor.verify_deployment",
            return_value=result,
        ) as verify:
            resp = auth_client.post("/api/github/verify", json={"expected_content": "Turmas", "path": "turmas.html"})
        assert resp.get_json() == result
        verify.assert_called_once_with(expected_content="Turmas", test_path="turmas.html")


# ── Commit retry queue ───────────────────────────────────────────────


class TestCommitQueue:

    @pytest.fixture
    def queued(self, state_dir):
        queue = RetryQueue(state_dir / "commit_queue.json")
        queue.enqueue("config/settings.json", '{"paroquia": {}}', "Salvar", NetworkError("Erro de rede"))
        return queue

    def test_empty(self, auth_client):
        data = auth_client.get("/api/github/queue").get_json()
        assert data["total_items"] == 0

    def test_status(self, auth_client, queued):
        data = auth_client.get("/api/github/queue").get_json()
        assert data["total_items"] == 1
        assert data["items"][0]["path"] == "config/settings.json"

    def test_forced_flush(self, auth_client, queued, fake_github):
        data = auth_client.post("/api/github/queue/flush?force=1").get_json()
        assert data["success"] is True
        assert data["succeeded"] == ["config/settings.json"]
        assert fake_github.text("config/settings.json") == '{"paroquia": {}}'
        assert auth_client.get("/api/github/queue").get_json()["total_items"] == 0

        logs = auth_client.get("/api/logs?type=commit").get_json()["logs"]
        assert logs[0]["files"] == ["config/settings.json"]

    def test_flush_respects_backoff(self, auth_client, queued, fake_github):
        data = auth_client.post("/api/github/queue/flush").get_json()
        assert data["attempted"] == 0
        assert fake_github.calls("PUT") == []

    def test_clear(self, auth_client, queued):
        assert auth_client.delete("/api/github/queue").get_json() == {"success": True, "cleared": 1}
        assert auth_client.get("/api/github/queue").get_json()["total_items"] == 0
