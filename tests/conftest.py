"""
Shared fixtures.

Provides an in-memory GitHub (served through ``httpx.MockTransport``),
a Flask test app with a temporary project root, a logged-in client and
a small catechesis workbook.
"""

from __future__ import annotations

import base64
import io
import json
import time
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest

from catechesis_admin.auth.session import hash_password
from catechesis_admin.config.loader import AdminConfig
from catechesis_admin.github.client import GitHubClient
from catechesis_admin.reliability.circuit_breaker import CircuitBreaker

PASSWORD = "segredo-123"
TOKEN = "ghp_" + "a" * 36
REPOSITORY = "paroquia/catequese"
SITE_URL = "https://paroquia.github.io/catequese"

WORKBOOK_HEADERS = [
    "Nome", "Data de Nascimento", "Centro", "Etapa", "Sala",
    "Horário", "Catequistas", "Resultado", "Nome do Pai", "Observações",
]
WORKBOOK_ROWS = [
    ["Ana Souza", date(2015, 3, 10), "Matriz", "1ª Etapa", "Sala 1", "Sábado 9h", "Maria|José", "Aprovado", "Carlos Souza", "Alergia a amendoim"],
    ["Bruno Lima", "2014-07-22", "Matriz", "1ª Etapa", "Sala 1", "Sábado 9h", "Maria|José", None, None, None],
    [None, None, "Matriz", None, None, None, None, None, None, None],
    ["Carla Dias", "05/11/2013", "São José", "2ª Etapa", "Sala 3", "Domingo 8h", "Pedro", "Aprovado", None, None],
]


# ── Fake GitHub ──────────────────────────────────────────────────────


class FakeGitHub:
    """
    Just enough of the GitHub REST API for the client: contents,
    repository, user, rate limit, commits and Pages.

    Responses queued in ``failures`` are served first, in order.
    """

    def __init__(self, repository: str = REPOSITORY):
        self.repository = repository
        self.files: Dict[str, Tuple[bytes, str]] = {}
        self.requests: List[httpx.Request] = []
        self.failures: List[httpx.Response] = []
        self.permissions = {"admin": False, "push": True, "pull": True}
        self.pages: Optional[Dict[str, Any]] = {
            "status": "built",
            "html_url": SITE_URL + "/",
            "source": {"branch": "main", "path": "/"},
            "build_type": "legacy",
        }
        self.latest_build: Optional[Dict[str, Any]] = {
            "status": "built",
            "commit": "abc1234def5678",
            "created_at": "2026-10-17T12:00:00Z",
            "updated_at": "2026-10-17T12:01:00Z",
            "duration": 42000,
            "error": {"message": None},
        }
        self.commit_count = 0
        self.transport = httpx.MockTransport(self.handle)

    # Helpers for tests

    def put_file(self, path: str, content: Any) -> str:
        if isinstance(content, (dict, list)):
            content = json.dumps(content, ensure_ascii=False)
        raw = content.encode("utf-8") if isinstance(content, str) else content
        sha = f"seed{len(self.files):04d}"
        self.files[path] = (raw, sha)
        return sha

    def text(self, path: str) -> str:
        return self.files[path][0].decode("utf-8")

    def json(self, path: str) -> Any:
        return json.loads(self.text(path))

    def fail_next(self, status: int, body: Optional[dict] = None, headers: Optional[dict] = None, times: int = 1) -> None:
        for _ in range(times):
            self.failures.append(httpx.Response(status, json=body or {"message": "boom"}, headers=headers))

    def calls(self, method: str, path_suffix: str = "") -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(path_suffix)]

    # Transport

    def _headers(self) -> Dict[str, str]:
        return {
            "x-ratelimit-limit": "5000",
            "x-ratelimit-remaining": "4990",
            "x-ratelimit-reset": str(int(time.time()) + 3600),
            "x-ratelimit-used": "10",
        }

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            return self.failures.pop(0)

        path = request.url.path
        prefix = f"/repos/{self.repository}"
        headers = self._headers()

        if path == "/user":
            return httpx.Response(200, json={"login": "secretaria"}, headers=headers)

        if path == "/rate_limit":
            core = {"limit": 5000, "remaining": 4990, "reset": int(time.time()) + 3600, "used": 10}
            return httpx.Response(200, json={"resources": {"core": core}, "rate": core}, headers=headers)

        if path == prefix:
            owner, name = self.repository.split("/")
            return httpx.Response(200, json={
                "name": name,
                "full_name": self.repository,
                "private": False,
                "default_branch": "main",
                "has_pages": True,
                "owner": {"login": owner},
                "updated_at": "2026-10-17T12:00:00Z",
                "permissions": self.permissions,
            }, headers=headers)

        if path.startswith(prefix + "/contents/"):
            return self._contents(request, unquote(path[len(prefix + "/contents/"):]), headers)

        if path == prefix + "/commits":
            return httpx.Response(200, json=[
                {
                    "sha": f"{i:02d}" + "f" * 38,
                    "html_url": f"https://github.com/{self.repository}/commit/{i}",
                    "commit": {"message": f"Commit {i}\n\nbody", "author": {"name": "Secretaria", "date": "2026-10-17T12:00:00Z"}},
                }
                for i in range(int(request.url.params.get("per_page", 10)))
            ], headers=headers)

        if path == prefix + "/pages":
            if self.pages is None:
                return httpx.Response(404, json={"message": "Not Found"}, headers=headers)
            return httpx.Response(200, json=self.pages, headers=headers)

        if path == prefix + "/pages/builds/latest":
            if self.latest_build is None:
                return httpx.Response(404, json={"message": "Not Found"}, headers=headers)
            return httpx.Response(200, json=self.latest_build, headers=headers)

        return httpx.Response(404, json={"message": "Not Found"}, headers=headers)

    def _contents(self, request: httpx.Request, repo_path: str, headers: Dict[str, str]) -> httpx.Response:
        stored = self.files.get(repo_path)

        if request.method == "GET":
            if stored is None:
                return httpx.Response(404, json={"message": "Not Found"}, headers=headers)
            raw, sha = stored
            return httpx.Response(200, json={
                "type": "file",
                "path": repo_path,
                "sha": sha,
                "size": len(raw),
                "encoding": "base64",
                "content": base64.encodebytes(raw).decode("ascii"),
                "download_url": f"https://raw.githubusercontent.com/{self.repository}/main/{repo_path}",
            }, headers=headers)

        if request.method == "PUT":
            body = json.loads(request.content)
            if stored is not None and body.get("sha") != stored[1]:
                return httpx.Response(409, json={"message": f"{repo_path} does not match"}, headers=headers)
            self.commit_count += 1
            sha = f"blob{self.commit_count:04d}"
            self.files[repo_path] = (base64.b64decode(body["content"]), sha)
            commit_sha = f"c{self.commit_count:03d}" + "0" * 36
            return httpx.Response(201 if stored is None else 200, json={
                "content": {"path": repo_path, "sha": sha},
                "commit": {"sha": commit_sha, "html_url": f"https://github.com/{self.repository}/commit/{commit_sha}"},
            }, headers=headers)

        return httpx.Response(405, json={"message": "Method Not Allowed"}, headers=headers)


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def github_client(fake_github: FakeGitHub) -> GitHubClient:
    """Client wired to the fake, with no real sleeping."""
    client = GitHubClient(
        TOKEN,
        fake_github.repository,
        transport=fake_github.transport,
        sleep=lambda seconds: None,
        circuit_breaker=CircuitBreaker("test-github"),
    )
    yield client
    client.close()


@pytest.fixture
def admin_config() -> AdminConfig:
    # Few iterations keep the tests fast
    return AdminConfig(
        admin_password_hash=hash_password(PASSWORD, iterations=1000),
        secret_key="test-secret",
        github_token=TOKEN,
        github_repository=REPOSITORY,
        site_url=SITE_URL,
    )


# ── Workbook ─────────────────────────────────────────────────────────


def build_workbook(headers: List[Any], rows: List[List[Any]]) -> bytes:
    import openpyxl

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def workbook_bytes() -> bytes:
    """Three catechumens in two classes, plus a row without a name."""
    return build_workbook(WORKBOOK_HEADERS, WORKBOOK_ROWS)


@pytest.fixture
def make_workbook():
    return build_workbook


# ── Images ───────────────────────────────────────────────────────────


def build_image(size=(64, 48), fmt="PNG", color=(200, 30, 30)) -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return build_image()


@pytest.fixture
def make_image():
    return build_image


# ── Flask app ────────────────────────────────────────────────────────


@pytest.fixture
def app(tmp_path: Path, fake_github: FakeGitHub, admin_config: AdminConfig):
    """Create a Flask test app with temp project root."""
    pytest.importorskip("flask")
    from catechesis_admin.admin.server import create_app

    app = create_app()
    app.config["PROJECT_ROOT"] = tmp_path
    app.config["TESTING"] = True
    app.config["ADMIN_CONFIG"] = admin_config
    app.config["GITHUB_TRANSPORT"] = fake_github.transport
    app.config["GITHUB_SLEEP"] = lambda seconds: None
    app.config["GITHUB_CIRCUIT_BREAKER"] = CircuitBreaker("test-github")

    (tmp_path / "state").mkdir()

    return app


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def auth_client(client):
    """Test client holding a logged-in admin session."""
    resp = client.post("/api/auth/login", json={"username": "admin", "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    client.environ_base["HTTP_X_SESSION_ID"] = resp.get_json()["session_id"]
    return client


@pytest.fixture
def state_dir(app) -> Path:
    """Path to state/ inside the temp project."""
    return app.config["PROJECT_ROOT"] / "state"
