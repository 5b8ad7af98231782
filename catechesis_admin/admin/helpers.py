"""
Admin server shared helpers.

The admin app keeps one ``Services`` container per Flask app (in
``app.extensions``), built lazily from ``app.config``:

    PROJECT_ROOT             Directory holding ``state/``
    ADMIN_CONFIG             AdminConfig (defaults to the environment)
    GITHUB_TRANSPORT         Optional httpx transport (tests)
    GITHUB_SLEEP             Optional sleep callable (tests)
    GITHUB_CIRCUIT_BREAKER   Optional CircuitBreaker (tests)

Sessions live in that container, so they last as long as the process.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from threading import Lock
from typing import Optional

from flask import current_app, g, request

from ..analytics.tracker import VisitTracker
from ..auth.session import SessionManager
from ..config.loader import AdminConfig, get_config
from ..config.settings_manager import SettingsManager
from ..errors import AuthenticationError, MissingConfigurationError, SessionExpiredError
from ..github.client import GitHubClient
from ..github.deployment import DeploymentMonitor
from ..github.optimizer import RequestQueue
from ..observability.error_handler import ErrorHandler
from ..observability.error_reporter import ErrorReporter
from ..observability.progress import ProgressTracker
from ..persistence.operation_log import OperationLog
from ..reliability.retry_queue import RetryQueue
from ..roster.excel import RosterManager

logger = logging.getLogger(__name__)

EXTENSION_KEY = "catechesis_admin"
SESSION_COOKIE = "admin_session"
SESSION_HEADER = "X-Session-Id"

# Reachable without a session
OPEN_ENDPOINTS = {
    "/api/auth/login",
    "/api/auth/status",
    "/api/status",
    "/api/health",
    "/api/analytics/visit",
    "/api/analytics/time",
}


class Services:
    """Long-lived objects shared by the route blueprints."""

    def __init__(self, app_config: dict):
        self.root: Path = Path(app_config["PROJECT_ROOT"])
        self.config: AdminConfig = app_config.get("ADMIN_CONFIG") or get_config()
        self._github_options = {
            key: app_config[name]
            for key, name in (
                ("transport", "GITHUB_TRANSPORT"),
                ("sleep", "GITHUB_SLEEP"),
                ("circuit_breaker", "GITHUB_CIRCUIT_BREAKER"),
            )
            if app_config.get(name) is not None
        }

        self.sessions = SessionManager(self.config)
        self.progress = ProgressTracker()
        self.error_handler = ErrorHandler()
        self.error_reporter = ErrorReporter()
        self.visits = VisitTracker(self.state_dir / "analytics.json")
        self.roster_lock = Lock()

        self._lock = Lock()
        self._client: Optional[GitHubClient] = None
        self._queue: Optional[RequestQueue] = None
        self._settings: Optional[SettingsManager] = None

    @property
    def state_dir(self) -> Path:
        return self.root / "state"

    @property
    def roster_path(self) -> Path:
        return self.state_dir / "roster.json"

    def oplog(self) -> OperationLog:
        return OperationLog(self.state_dir / "operations.json", user=self.config.admin_username)

    def retry_queue(self) -> RetryQueue:
        return RetryQueue(self.state_dir / "commit_queue.json")

    def github(self, required: bool = True) -> Optional[GitHubClient]:
        """
        The shared GitHub client.

        Raises MissingConfigurationError when GitHub is not configured
        and ``required`` is set; otherwise returns None in that case.
        """
        with self._lock:
            if self._client is None and self.config.has_github():
                self._client = GitHubClient.from_config(self.config, **self._github_options)
        if self._client is None and required:
            raise MissingConfigurationError("GITHUB_TOKEN")
        return self._client

    def request_queue(self) -> RequestQueue:
        client = self.github()
        with self._lock:
            if self._queue is None:
                self._queue = RequestQueue(client, sleep=self._github_options.get("sleep", time.sleep))
            return self._queue

    def deployment(self) -> DeploymentMonitor:
        return DeploymentMonitor(
            self.github(),
            site_url=self.config.site_url,
            sleep=self._github_options.get("sleep", time.sleep),
        )

    def settings(self) -> SettingsManager:
        with self._lock:
            if self._settings is None:
                self._settings = SettingsManager(
                    self.state_dir,
                    client=None,
                    oplog=self.oplog(),
                    retry_queue=self.retry_queue(),
                    repository=self.config.github_repository or "",
                    branch=self.config.github_branch,
                )
        # Attach the client outside the lock; github() takes it too
        if self._settings.client is None:
            self._settings.client = self.github(required=False)
            if self._settings.client is not None:
                self._settings.requests = self.request_queue()
        return self._settings

    def roster(self) -> RosterManager:
        return RosterManager.from_state(self.roster_path)


def services() -> Services:
    """Services of the current app, created on first use."""
    ext = current_app.extensions
    if EXTENSION_KEY not in ext:
        ext[EXTENSION_KEY] = Services(current_app.config)
    return ext[EXTENSION_KEY]


def project_root() -> Path:
    return Path(current_app.config["PROJECT_ROOT"])


def request_session_id() -> Optional[str]:
    return request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)


def authenticate_request() -> None:
    """
    Gate for ``/api/*``: every endpoint outside ``OPEN_ENDPOINTS`` needs
    a valid session. Stores the (possibly rotated) id in ``g.session_id``.
    """
    if not request.path.startswith("/api/") or request.path in OPEN_ENDPOINTS:
        return
    if request.method == "OPTIONS":
        return

    session_id = request_session_id()
    svc = services()
    current = svc.sessions.touch(
        session_id,
        user_agent=request.user_agent.string,
        remote_addr=request.remote_addr or "",
    )
    if current is None:
        if session_id:
            raise SessionExpiredError()
        raise AuthenticationError("Autenticação necessária", code="AUTH_REQUIRED")

    g.session_id = current
    g.session_rotated = current != session_id


def query_bool(name: str, default: bool = True) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() not in ("0", "false", "no", "off")
