"""
Local Admin Server — Flask-based web interface.

Serves the catechesis admin panel and its JSON API. Meant for the
parish secretary's machine; it should NEVER be exposed to the internet.
"""

from __future__ import annotations

import logging
import time
import webbrowser
from pathlib import Path
from threading import Timer

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from ..config.validator import check_config_on_startup
from ..errors import AppError, GitHubAPIError, NetworkError
from ..logging_config import setup_logging
from .helpers import SESSION_COOKIE, SESSION_HEADER, authenticate_request, services
from .routes_analytics import analytics_bp
from .routes_auth import auth_bp
from .routes_config import config_bp
from .routes_core import core_bp
from .routes_files import files_bp
from .routes_github import github_bp
from .routes_logs import logs_bp
from .routes_roster import roster_bp

logger = logging.getLogger(__name__)

# Max upload size; the largest accepted file kind is 100 MB
MAX_CONTENT_LENGTH = 100 * 1024 * 1024

POLL_ENDPOINTS = (
    "/api/status",
    "/api/auth/status",
    "/api/progress/",
    "/api/github/rate-limit",
)


def create_app() -> Flask:
    """Create the Flask application."""

    project_root = Path.cwd()
    static_folder = Path(__file__).parent / "static"

    app = Flask(
        __name__,
        static_folder=str(static_folder),
        static_url_path="/static",
    )

    # Directory holding state/; tests point this at tmp_path
    app.config["PROJECT_ROOT"] = project_root
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
    app.config["JSON_AS_ASCII"] = False
    app.json.ensure_ascii = False

    # ── Register Blueprints ───────────────────────────────────────
    app.register_blueprint(core_bp)                                     # / + /api/status, /api/health, ...
    app.register_blueprint(auth_bp, url_prefix="/api/auth")             # /api/auth/*
    app.register_blueprint(config_bp, url_prefix="/api/config")         # /api/config/*
    app.register_blueprint(roster_bp, url_prefix="/api/roster")         # /api/roster/*
    app.register_blueprint(files_bp, url_prefix="/api/files")           # /api/files/*
    app.register_blueprint(github_bp, url_prefix="/api/github")         # /api/github/*
    app.register_blueprint(logs_bp, url_prefix="/api/logs")             # /api/logs/*
    app.register_blueprint(analytics_bp, url_prefix="/api/analytics")   # /api/analytics/*

    # ── Error Handlers ────────────────────────────────────────────

    @app.errorhandler(AppError)
    def app_error(e: AppError):
        if e.http_status >= 500 or isinstance(e, (GitHubAPIError, NetworkError)):
            services().error_reporter.report_error(
                e.message,
                error_type=type(e).__name__,
                details={"path": request.path, "code": e.code},
            )
        log_fn = logger.warning if e.http_status >= 500 else logger.debug
        log_fn(f"{request.method} {request.path}: {e.code} {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(404)
    def not_found(e):
        if not request.path.startswith("/api/"):
            return e
        return jsonify({"success": False, "error": "Endpoint não encontrado", "code": "NOT_FOUND"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Método não permitido", "code": "METHOD_NOT_ALLOWED"}), 405

    @app.errorhandler(413)
    def request_entity_too_large(e):
        """Return JSON for 413 so the upload form gets a parseable response."""
        max_mb = app.config.get("MAX_CONTENT_LENGTH", 0) / (1024 * 1024)
        return jsonify({
            "success": False,
            "error": f"Arquivo muito grande (máximo {max_mb:.0f} MB)",
            "code": "FILE_TOO_LARGE",
        }), 413

    @app.errorhandler(500)
    def internal_server_error(e):
        """Catch-all: return JSON for any unhandled 500 so the panel never sees raw HTML."""
        original = getattr(e, "original_exception", None) or e
        if isinstance(original, HTTPException):
            return original
        svc = services()
        body = svc.error_handler.handle(original, {"operation": request.path, "method": request.method})
        svc.error_reporter.report_error(
            str(original) or type(original).__name__,
            error_type=type(original).__name__,
            details={"path": request.path},
        )
        return jsonify(body), 500

    # ── Request hooks ─────────────────────────────────────────────

    @app.before_request
    def log_request_start():
        """Record request start time and check the admin session."""
        request._start_time = time.time()
        authenticate_request()

    @app.after_request
    def log_request_end(response):
        """Refresh a rotated session id and log API calls with duration."""
        if getattr(g, "session_rotated", False):
            response.headers[SESSION_HEADER] = g.session_id
            response.set_cookie(SESSION_COOKIE, g.session_id, httponly=True, samesite="Strict")

        duration_ms = 0
        if hasattr(request, "_start_time"):
            duration_ms = int((time.time() - request._start_time) * 1000)

        if request.path.startswith("/api/"):
            # Demote frequent polling endpoints to DEBUG to reduce noise
            is_poll = any(request.path.endswith(ep) or ep in request.path for ep in POLL_ENDPOINTS)
            log_fn = logger.debug if is_poll else logger.info
            log_fn(f"{request.method} {request.path} → {response.status_code} ({duration_ms}ms)")
        return response

    logger.info(f"Admin server initialized (project_root={project_root})")

    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 5050,
    open_browser: bool = True,
    debug: bool = False,
) -> None:
    """
    Run the admin server.

    Args:
        host: Bind address (default: localhost only)
        port: Port to run on
        open_browser: Whether to open browser automatically
        debug: Enable Flask debug mode
    """
    setup_logging(level="DEBUG" if debug else None)
    # werkzeug repeats what after_request already logs
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    check_config_on_startup()
    app = create_app()

    url = f"http://{host}:{port}"
    debug_tag = " [DEBUG]" if debug else ""

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║              CATECHESIS ADMIN{debug_tag:<33} ║
╠══════════════════════════════════════════════════════════════╣
║                                                              ║
║  Admin panel running at:                                     ║
║  → {url:<54} ║
║                                                              ║
║  Press Ctrl+C to stop                                        ║
║                                                              ║
║  ⚠️  This server is for LOCAL USE ONLY                       ║
║     Never expose to the internet!                            ║
║                                                              ║
╚══════════════════════════════════════════════════════════════╝
""")

    if open_browser:
        Timer(1.5, lambda: webbrowser.open(url)).start()

    # The reloader forks, which would drop in-memory sessions
    app.run(host=host, port=port, debug=debug, use_reloader=False)


if __name__ == "__main__":
    run_server()
