"""
Admin API — GitHub connection, deployment and commit queue endpoints.

Blueprint: github_bp
Prefix: /api/github
Routes:
    /api/github/connection
    /api/github/access
    /api/github/rate-limit
    /api/github/commits
    /api/github/requests             (request queue stats)
    /api/github/deployment
    /api/github/deployment/latest
    /api/github/deployment/monitor   (POST, returns an operation id)
    /api/github/verify               (POST)
    /api/github/queue                (GET, DELETE)
    /api/github/queue/flush          (POST)
"""

from __future__ import annotations

import logging
import threading

from flask import Blueprint, jsonify, request

from ..errors import AppError, RequiredFieldError
from .helpers import query_bool, services

logger = logging.getLogger(__name__)

github_bp = Blueprint("github", __name__)


@github_bp.route("/connection")
def connection():
    result = services().github().test_connection()
    return jsonify(result), 200 if result["success"] else 502


@github_bp.route("/access")
def access():
    return jsonify(services().github().validate_access())


@github_bp.route("/rate-limit")
def rate_limit():
    client = services().github()
    if query_bool("refresh", default=False):
        return jsonify(client.check_rate_limit())
    return jsonify(client.rate_limit.to_dict())


@github_bp.route("/commits")
def commits():
    limit = max(1, min(request.args.get("limit", 10, type=int), 100))
    items = services().github().get_recent_commits(limit=limit, path=request.args.get("path"))
    return jsonify({"success": True, "commits": items})


@github_bp.route("/requests")
def request_stats():
    return jsonify(services().request_queue().get_queue_stats())


# ── Deployment ───────────────────────────────────────────────────


@github_bp.route("/deployment")
def deployment_status():
    return jsonify(services().deployment().check_deployment_status())


@github_bp.route("/deployment/latest")
def deployment_latest():
    return jsonify({"deployment": services().deployment().get_latest_deployment()})


@github_bp.route("/deployment/monitor", methods=["POST"])
def deployment_monitor():
    """
    Follow the Pages build of a commit in the background.

    The panel polls ``/api/progress/<operation_id>`` for updates.
    """
    data = request.get_json(silent=True) or {}
    commit_sha = (data.get("commit_sha") or "").strip()
    if not commit_sha:
        raise RequiredFieldError("commit_sha")

    svc = services()
    monitor = svc.deployment()
    tracker = svc.progress
    oplog = svc.oplog()
    max_wait = float(data.get("max_wait", 300))
    poll_interval = float(data.get("poll_interval", 10))
    operation_id = tracker.start_operation(
        title="Publicação do site",
        message="Aguardando o GitHub Pages...",
    )

    def run():
        try:
            result = monitor.monitor_deployment(
                commit_sha,
                progress_callback=lambda pct, msg: tracker.update_progress(operation_id, pct, msg),
                max_wait=max_wait,
                poll_interval=poll_interval,
            )
        except AppError as e:
            oplog.log_error("deploy", f"Monitoramento falhou: {e.message}", details={"commit_sha": commit_sha})
            tracker.fail_operation(operation_id, e.message)
            return

        if result["success"]:
            oplog.log_success("deploy", result["message"], details={"commit_sha": commit_sha}, duration=result["duration"])
            tracker.complete_operation(operation_id, result["message"])
        else:
            oplog.log_warning("deploy", result["message"], details={"commit_sha": commit_sha}, duration=result["duration"])
            tracker.fail_operation(operation_id, result["message"])

    threading.Thread(target=run, name=f"deploy-monitor-{commit_sha[:7]}", daemon=True).start()
    return jsonify({"success": True, "operation_id": operation_id}), 202


@github_bp.route("/verify", methods=["POST"])
def verify():
    data = request.get_json(silent=True) or {}
    result = services().deployment().verify_deployment(
        expected_content=data.get("expected_content"),
        test_path=data.get("path", ""),
    )
    return jsonify(result)


# ── Commit retry queue ───────────────────────────────────────────


@github_bp.route("/queue", methods=["GET"])
def queue_status():
    return jsonify(services().retry_queue().get_stats())


@github_bp.route("/queue/flush", methods=["POST"])
def queue_flush():
    svc = services()
    result = svc.retry_queue().flush(svc.github(), force=query_bool("force", default=False))
    if result["succeeded"]:
        queue = svc.request_queue()
        for path in result["succeeded"]:
            queue.invalidate(path)
        svc.oplog().log_success(
            "commit",
            f"{len(result['succeeded'])} commit(s) pendente(s) enviado(s)",
            files=result["succeeded"],
        )
    return jsonify({"success": not result["failed"], **result})


@github_bp.route("/queue", methods=["DELETE"])
def queue_clear():
    svc = services()
    cleared = svc.retry_queue().clear()
    svc.oplog().log_warning("commit", f"Fila de commits descartada ({cleared} itens)")
    return jsonify({"success": True, "cleared": cleared})
