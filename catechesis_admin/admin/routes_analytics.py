"""
Admin API — Public site visit analytics.

Blueprint: analytics_bp
Prefix: /api/analytics
Routes:
    /api/analytics/visit    (POST, open, called by the public pages)
    /api/analytics/time     (POST, open)
    /api/analytics/summary  (?days=7)
    /api/analytics/daily    (?date=YYYY-MM-DD)
    /api/analytics/cleanup  (POST)
"""

from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, request

from ..errors import RequiredFieldError, ValidationError
from .helpers import services

analytics_bp = Blueprint("analytics", __name__)


def _json_body() -> dict:
    """Request JSON as a dict; beacons with other payloads count as empty."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@analytics_bp.after_request
def cors(response):
    """The public site lives on another origin."""
    if request.endpoint in ("analytics.visit", "analytics.time_spent"):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


@analytics_bp.route("/visit", methods=["POST"])
def visit():
    data = _json_body()
    session = services().visits.record_visit(
        page=str(data.get("page") or "/")[:200],
        visitor_id=data.get("visitor_id") or None,
        user_agent=request.user_agent.string,
        referrer=data.get("referrer") or request.referrer or "",
    )
    return jsonify({"success": True, "visitor_id": session["visitor_id"]})


@analytics_bp.route("/time", methods=["POST"])
def time_spent():
    data = _json_body()
    visitor_id = data.get("visitor_id")
    if not visitor_id:
        raise RequiredFieldError("visitor_id")
    try:
        seconds = float(data.get("seconds", 0))
    except (TypeError, ValueError) as e:
        raise ValidationError("Tempo inválido", field="seconds") from e
    updated = services().visits.update_time_spent(visitor_id, seconds)
    return jsonify({"success": updated})


@analytics_bp.route("/summary")
def summary():
    days = request.args.get("days", 7, type=int)
    if not 1 <= days <= 365:
        raise ValidationError("days deve estar entre 1 e 365", field="days")
    return jsonify(services().visits.get_summary(days))


@analytics_bp.route("/daily")
def daily():
    raw = request.args.get("date")
    try:
        day = date.fromisoformat(raw) if raw else None
    except ValueError as e:
        raise ValidationError("Data deve estar no formato AAAA-MM-DD", field="date") from e
    return jsonify(services().visits.get_daily_summary(day))


@analytics_bp.route("/cleanup", methods=["POST"])
def cleanup():
    data = _json_body()
    try:
        keep_days = int(data.get("keep_days", 90))
    except (TypeError, ValueError) as e:
        raise ValidationError("keep_days deve ser um número inteiro", field="keep_days") from e
    if keep_days < 1:
        raise ValidationError("keep_days deve ser maior que zero", field="keep_days")
    removed = services().visits.cleanup(keep_days)
    return jsonify({"success": True, "removed_days": removed})
