"""
Admin API — Operation log endpoints.

Blueprint: logs_bp
Prefix: /api/logs
Routes:
    /api/logs               (GET with filters, DELETE all)
    /api/logs/stats
    /api/logs/export        (?format=json|csv)
    /api/logs/<log_id>      (DELETE)

Filters: type, status, from, to, search, limit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from flask import Blueprint, Response, jsonify, request

from ..errors import ValidationError
from .helpers import services

logs_bp = Blueprint("logs", __name__)


def _filters() -> Dict[str, Any]:
    try:
        return {
            "op_type": request.args.get("type") or None,
            "status": request.args.get("status") or None,
            "date_from": request.args.get("from") or None,
            "date_to": request.args.get("to") or None,
            "search": request.args.get("search") or None,
            "limit": request.args.get("limit", type=int),
        }
    except ValueError as e:
        raise ValidationError(f"Filtro inválido: {e}") from e


def _dated(query, **filters):
    """Run an oplog query, turning unparseable from/to dates into a 400."""
    try:
        return query(**filters)
    except ValueError as e:
        raise ValidationError(f"Data inválida: {e}") from e


@logs_bp.route("", methods=["GET"])
def list_logs():
    logs = _dated(services().oplog().get_logs, **_filters())
    return jsonify({"success": True, "logs": logs, "count": len(logs)})


@logs_bp.route("/stats")
def stats():
    return jsonify(services().oplog().get_statistics())


@logs_bp.route("/export")
def export():
    fmt = request.args.get("format", "json").lower()
    filters = _filters()
    oplog = services().oplog()
    stamp = datetime.now().strftime("%Y-%m-%d")
    if fmt == "csv":
        body, mimetype = _dated(oplog.export_csv, **filters), "text/csv"
    elif fmt == "json":
        body, mimetype = _dated(oplog.export_json, **filters), "application/json"
    else:
        raise ValidationError(f"Formato não suportado: {fmt}", field="format")
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename=operacoes-{stamp}.{fmt}"},
    )


@logs_bp.route("", methods=["DELETE"])
def clear():
    cleared = services().oplog().clear()
    return jsonify({"success": True, "cleared": cleared})


@logs_bp.route("/<log_id>", methods=["DELETE"])
def delete(log_id: str):
    services().oplog().delete(log_id)
    return jsonify({"success": True})
