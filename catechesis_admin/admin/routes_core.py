"""
Admin API — Dashboard, status, health and error reporting endpoints.

Blueprint: core_bp
Prefix: (none)
Routes:
    /                       (index, serves dashboard HTML)
    /api/status
    /api/health
    /api/progress
    /api/progress/<operation_id>
    /api/errors             (GET report, POST client-side error)
    /api/errors/history
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Blueprint, jsonify, request, send_from_directory

from ..errors import ValidationError
from ..observability.health import HealthChecker, HealthStatus
from .helpers import project_root, services

logger = logging.getLogger(__name__)

core_bp = Blueprint("core", __name__)


def _static_folder() -> Path:
    return Path(__file__).parent / "static"


@core_bp.route("/")
def index():
    """Serve the admin dashboard."""
    static = _static_folder()
    if (static / "index.html").exists():
        return send_from_directory(str(static), "index.html")
    return "Admin panel not found. Please ensure static/index.html exists.", 404


@core_bp.route("/api/status")
def api_status():
    """Public configuration summary for the login screen and header."""
    svc = services()
    settings_file = svc.state_dir / "settings.json"
    return jsonify({
        "success": True,
        "config": svc.config.to_public_dict(),
        "github_configured": svc.config.has_github(),
        "login_configured": svc.config.has_login(),
        "settings_cached": settings_file.exists(),
        "roster_loaded": svc.roster_path.exists(),
        "commit_queue": len(svc.retry_queue()),
    })


@core_bp.route("/api/health")
def api_health():
    svc = services()
    checker = HealthChecker(project_root(), svc.config, client=svc.github(required=False))
    health = checker.check()
    status_code = 503 if health.status == HealthStatus.UNHEALTHY else 200
    return jsonify(health.to_dict()), status_code


@core_bp.route("/api/progress")
def api_progress_active():
    tracker = services().progress
    return jsonify({"operations": tracker.get_active(), "stats": tracker.get_stats()})


@core_bp.route("/api/progress/<operation_id>")
def api_progress(operation_id: str):
    return jsonify(services().progress.get(operation_id))


@core_bp.route("/api/progress/<operation_id>", methods=["DELETE"])
def api_progress_cancel(operation_id: str):
    tracker = services().progress
    tracker.cancel_operation(operation_id)
    return jsonify(tracker.get(operation_id))


@core_bp.route("/api/errors")
def api_errors_report():
    return jsonify(services().error_reporter.generate_report())


@core_bp.route("/api/errors", methods=["POST"])
def api_errors_submit():
    """Errors caught by the panel's JavaScript."""
    data = request.get_json(silent=True) or {}
    message = (data.get("message") or "").strip()
    if not message:
        raise ValidationError("Mensagem de erro obrigatória", field="message")

    alerts = services().error_reporter.report_error(
        message[:500],
        error_type=str(data.get("type", ""))[:50],
        details=data.get("details") if isinstance(data.get("details"), dict) else None,
    )
    return jsonify({"success": True, "alerts": alerts})


@core_bp.route("/api/errors", methods=["DELETE"])
def api_errors_clear():
    svc = services()
    svc.error_reporter.clear()
    svc.error_handler.clear_history()
    return jsonify({"success": True})


@core_bp.route("/api/errors/history")
def api_errors_history():
    handler = services().error_handler
    limit = request.args.get("limit", 20, type=int)
    return jsonify({"history": handler.get_history(limit), "stats": handler.get_statistics()})
