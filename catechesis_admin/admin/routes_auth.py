"""
Admin API — Login, logout and session endpoints.

Blueprint: auth_bp
Prefix: /api/auth
Routes:
    /api/auth/login       (POST)
    /api/auth/logout      (POST)
    /api/auth/status
    /api/auth/extend      (POST)
    /api/auth/security
    /api/auth/unlock      (POST)
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from ..errors import AuthenticationError, RequiredFieldError
from .helpers import SESSION_COOKIE, SESSION_HEADER, request_session_id, services

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def _public_session(session: dict, remaining: int) -> dict:
    return {
        "username": session["username"],
        "login_time": session["login_time"],
        "last_activity": session["last_activity"],
        "minutes_remaining": remaining,
    }


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username:
        raise RequiredFieldError("username")
    if not password:
        raise RequiredFieldError("password")

    svc = services()
    oplog = svc.oplog()
    try:
        session = svc.sessions.login(
            username,
            password,
            user_agent=request.user_agent.string,
            remote_addr=request.remote_addr or "",
        )
    except AuthenticationError as e:
        oplog.log_warning("auth", f"Falha de login: {e.message}", details={"username": username, "code": e.code})
        raise

    oplog.log_success("auth", "Login realizado", details={"username": username})
    session_id = session["session_id"]
    remaining = svc.sessions.get_session_time_remaining(session_id)
    response = jsonify({
        "success": True,
        "session_id": session_id,
        "session": _public_session(session, remaining),
    })
    response.headers[SESSION_HEADER] = session_id
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="Strict")
    return response


@auth_bp.route("/logout", methods=["POST"])
def logout():
    svc = services()
    ended = svc.sessions.logout(g.get("session_id"))
    if ended:
        svc.oplog().log_info("auth", "Logout realizado")
    response = jsonify({"success": True})
    response.delete_cookie(SESSION_COOKIE)
    # The session is gone; after_request must not re-set the cookie
    g.session_rotated = False
    return response


@auth_bp.route("/status")
def status():
    """Session state without refreshing the idle timer."""
    sessions = services().sessions
    session = sessions.get_session(request_session_id())
    if session is None:
        return jsonify({"authenticated": False})
    remaining = sessions.get_session_time_remaining(session["session_id"])
    if remaining <= 0:
        return jsonify({"authenticated": False, "reason": "expired"})
    return jsonify({"authenticated": True, "session": _public_session(session, remaining)})


@auth_bp.route("/extend", methods=["POST"])
def extend():
    sessions = services().sessions
    session_id = g.session_id
    sessions.extend_session(session_id)
    return jsonify({
        "success": True,
        "minutes_remaining": sessions.get_session_time_remaining(session_id),
    })


@auth_bp.route("/security")
def security():
    sessions = services().sessions
    return jsonify({
        "security": sessions.get_security_status(),
        "diagnostics": sessions.get_diagnostics(),
    })


@auth_bp.route("/unlock", methods=["POST"])
def unlock():
    """Clear the lockout of one username."""
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    if not username:
        raise RequiredFieldError("username")
    svc = services()
    svc.sessions.reset_auth_state(username)
    svc.oplog().log_info("auth", f"Bloqueio removido: {username}")
    return jsonify({"success": True})
