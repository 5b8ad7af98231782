"""
Admin API — Catechesis roster (Excel spreadsheet) endpoints.

Blueprint: roster_bp
Prefix: /api/roster
Routes:
    /api/roster/upload                  (POST multipart, field "file")
    /api/roster/statistics
    /api/roster/catechumens             (GET, POST)
    /api/roster/catechumens/<id>        (GET, PUT, DELETE)
    /api/roster/classes
    /api/roster/catechists
    /api/roster/reports/<kind>
    /api/roster/export                  (xlsx download)
    /api/roster/push                    (POST, publish JSON to GitHub)

The roster survives restarts in ``state/roster.json``.
"""

from __future__ import annotations

import io
import logging
import time
from datetime import datetime

from flask import Blueprint, jsonify, request, send_file

from ..errors import AppError, NotFoundError, RequiredFieldError, ValidationError
from ..files.upload import FileUploader
from ..roster.excel import DEFAULT_JSON_PATH, RosterManager
from .helpers import query_bool, services

logger = logging.getLogger(__name__)

roster_bp = Blueprint("roster", __name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _loaded_roster() -> RosterManager:
    roster = services().roster()
    if roster.loaded_at is None:
        raise NotFoundError("Nenhuma planilha carregada", code="ROSTER_NOT_LOADED")
    return roster


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Corpo da requisição deve ser um objeto JSON")
    return data


@roster_bp.route("/upload", methods=["POST"])
def upload():
    """
    Load a workbook into the roster.

    ``?push=true`` also commits the workbook and the JSON built from it.
    """
    upload_file = request.files.get("file")
    if upload_file is None or not upload_file.filename:
        raise RequiredFieldError("file")

    svc = services()
    oplog = svc.oplog()
    filename = upload_file.filename
    content = upload_file.read()
    started = time.monotonic()

    checked = FileUploader(None, oplog).check(filename, content, "excel")

    roster = RosterManager()
    try:
        stats = roster.load_workbook(content, name=filename)
    except AppError as e:
        oplog.log_error("upload", f"Planilha inválida ({filename}): {e.message}")
        raise

    with svc.roster_lock:
        roster.save_state(svc.roster_path)

    result = {
        "success": True,
        "filename": filename,
        "statistics": stats,
        "warnings": checked.warnings,
        "commits": [],
    }
    if query_bool("push", default=False):
        client = svc.github()
        uploaded = FileUploader(client, oplog).upload(filename, content, kind="excel")
        commit = roster.save_to_github(client)
        result["commits"] = [uploaded["commit"], commit.to_dict()]

    oplog.log_success(
        "upload",
        f"Planilha carregada: {filename} ({stats['total_catechumens']} catecúmenos)",
        duration=time.monotonic() - started,
    )
    return jsonify(result)


@roster_bp.route("/statistics")
def statistics():
    roster = _loaded_roster()
    return jsonify({
        "success": True,
        "source": roster.source_name,
        "loaded_at": roster.loaded_at,
        "statistics": roster.get_statistics(),
    })


# ── Catechumens ──────────────────────────────────────────────────


@roster_bp.route("/catechumens", methods=["GET"])
def list_catechumens():
    roster = _loaded_roster()
    search = request.args.get("search", "").strip().lower()
    center = request.args.get("center")
    stage = request.args.get("stage")

    items = [
        c.to_dict() for c in roster.catechumens
        if (not search or search in c.name.lower())
        and (not center or c.center == center)
        and (not stage or c.stage == stage)
    ]
    return jsonify({"success": True, "catechumens": items, "count": len(items)})


@roster_bp.route("/catechumens", methods=["POST"])
def add_catechumen():
    data = _json_body()
    svc = services()
    with svc.roster_lock:
        roster = _loaded_roster()
        catechumen = roster.add_catechumen(data)
        roster.save_state(svc.roster_path)
    svc.oplog().log_success("roster", f"Catecúmeno adicionado: {catechumen['name']}")
    return jsonify({"success": True, "catechumen": catechumen}), 201


@roster_bp.route("/catechumens/<catechumen_id>", methods=["GET"])
def get_catechumen(catechumen_id: str):
    return jsonify({"success": True, "catechumen": _loaded_roster().get_catechumen(catechumen_id)})


@roster_bp.route("/catechumens/<catechumen_id>", methods=["PUT"])
def update_catechumen(catechumen_id: str):
    data = _json_body()
    svc = services()
    with svc.roster_lock:
        roster = _loaded_roster()
        catechumen = roster.update_catechumen(catechumen_id, data)
        roster.save_state(svc.roster_path)
    svc.oplog().log_success("roster", f"Catecúmeno atualizado: {catechumen['name']}")
    return jsonify({"success": True, "catechumen": catechumen})


@roster_bp.route("/catechumens/<catechumen_id>", methods=["DELETE"])
def remove_catechumen(catechumen_id: str):
    svc = services()
    with svc.roster_lock:
        roster = _loaded_roster()
        roster.remove_catechumen(catechumen_id)
        roster.save_state(svc.roster_path)
    svc.oplog().log_success("roster", f"Catecúmeno removido: {catechumen_id}")
    return jsonify({"success": True})


# ── Derived views ────────────────────────────────────────────────


@roster_bp.route("/classes")
def classes():
    roster = _loaded_roster()
    items = sorted(roster.classes.values(), key=lambda k: (k["center"], k["stage"], k["schedule"]))
    return jsonify({"success": True, "classes": items, "count": len(items)})


@roster_bp.route("/catechists")
def catechists():
    roster = _loaded_roster()
    items = sorted(roster.catechists.values(), key=lambda p: p["name"])
    return jsonify({"success": True, "catechists": items, "count": len(items)})


@roster_bp.route("/reports/<kind>")
def report(kind: str):
    return jsonify({"success": True, "report": _loaded_roster().generate_report(kind)})


# ── Export / publish ─────────────────────────────────────────────


@roster_bp.route("/export")
def export():
    roster = _loaded_roster()
    content = roster.export_to_excel()
    filename = f"catequese-{datetime.now().strftime('%Y-%m-%d')}.xlsx"
    return send_file(
        io.BytesIO(content),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=filename,
    )


@roster_bp.route("/push", methods=["POST"])
def push():
    """Publish the roster JSON the public pages read."""
    svc = services()
    roster = _loaded_roster()
    data = request.get_json(silent=True) or {}
    path = data.get("path") or DEFAULT_JSON_PATH
    started = time.monotonic()
    oplog = svc.oplog()
    try:
        commit = roster.save_to_github(svc.github(), path=path, message=data.get("message"))
    except AppError as e:
        oplog.log_error("commit", f"Falha ao publicar dados: {e.message}", files=[path])
        raise
    oplog.log_success(
        "commit",
        f"Dados publicados ({len(roster.catechumens)} registros)",
        details={"commit_sha": commit.commit_sha},
        duration=time.monotonic() - started,
        files=[path],
    )
    return jsonify({"success": True, "path": path, "commit": commit.to_dict()})
