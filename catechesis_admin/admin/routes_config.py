"""
Admin API — Site settings endpoints.

Blueprint: config_bp
Prefix: /api/config
Routes:
    /api/config                     (GET, PUT)
    /api/config/validate            (POST)
    /api/config/diff                (POST)
    /api/config/export
    /api/config/import              (POST)
    /api/config/reset               (POST)
    /api/config/reload              (POST)
    /api/config/backups             (GET, POST)
    /api/config/backups/<id>        (GET, DELETE)
    /api/config/backups/<id>/restore (POST)
    /api/config/value               (GET, PUT)

PUT and the other write routes accept ``?push=false`` to keep the change
local instead of committing it to the site repository.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime

from flask import Blueprint, Response, jsonify, request

from ..config.settings_manager import get_config_differences, validate_settings
from ..errors import RequiredFieldError, ValidationError
from ..validation import get_path
from .helpers import query_bool, services

logger = logging.getLogger(__name__)

config_bp = Blueprint("config", __name__)

TOKEN_MASK = "••••••••"


def _masked(config: dict) -> dict:
    """Settings as shown in the panel: the token is never sent back."""
    masked = copy.deepcopy(config)
    github = masked.get("github")
    if isinstance(github, dict) and github.get("token"):
        github["token"] = TOKEN_MASK
    return masked


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Corpo da requisição deve ser um objeto JSON")
    return data


def _unmask(new_config: dict, current: dict) -> dict:
    """A masked token in the form means "keep the stored one"."""
    github = new_config.get("github")
    if isinstance(github, dict) and github.get("token") == TOKEN_MASK:
        stored = get_path(current, "github.token")
        if stored:
            github["token"] = stored
        else:
            github.pop("token")
    return new_config


def _result(result: dict) -> dict:
    return {**result, "config": _masked(result["config"])}


@config_bp.route("", methods=["GET"])
def get_settings():
    manager = services().settings()
    config = manager.load(force=query_bool("refresh", default=False))
    return jsonify({"success": True, "config": _masked(config), "source": manager.source})


@config_bp.route("", methods=["PUT"])
def put_settings():
    manager = services().settings()
    data = _json_body()
    new_config = _unmask(data.get("config", data), manager.load())
    result = manager.update_settings(new_config, push=query_bool("push"), message=data.get("message"))
    return jsonify(_result(result))


@config_bp.route("/validate", methods=["POST"])
def validate():
    manager = services().settings()
    data = _json_body()
    config = _unmask(data.get("config", data), manager.load())
    return jsonify(validate_settings(config).to_dict())


@config_bp.route("/diff", methods=["POST"])
def diff():
    manager = services().settings()
    current = manager.load()
    data = _json_body()
    proposed = _unmask(data.get("config", data), current)
    differences = get_config_differences(_masked(current), _masked(proposed))
    return jsonify({
        "success": True,
        "differences": differences,
        "has_changes": any(differences.values()),
    })


@config_bp.route("/export")
def export():
    body = services().settings().export_config()
    filename = f"configuracoes-{datetime.now().strftime('%Y-%m-%d')}.json"
    return Response(
        body,
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@config_bp.route("/import", methods=["POST"])
def import_settings():
    upload = request.files.get("file")
    text = upload.read().decode("utf-8-sig") if upload else request.get_data(as_text=True)
    if not text.strip():
        raise RequiredFieldError("file")
    result = services().settings().import_config(text, push=query_bool("push"))
    return jsonify(_result(result))


@config_bp.route("/reset", methods=["POST"])
def reset():
    result = services().settings().reset_to_defaults(push=query_bool("push"))
    return jsonify(_result(result))


@config_bp.route("/reload", methods=["POST"])
def reload_settings():
    manager = services().settings()
    manager.invalidate_cache()
    config = manager.load(force=True)
    return jsonify({"success": True, "config": _masked(config), "source": manager.source})


# ── Backups ──────────────────────────────────────────────────────


@config_bp.route("/backups", methods=["GET"])
def list_backups():
    backups = services().settings().list_backups()
    return jsonify({"success": True, "backups": backups, "count": len(backups)})


@config_bp.route("/backups", methods=["POST"])
def create_backup():
    data = request.get_json(silent=True) or {}
    backup = services().settings().create_backup(description=data.get("description") or "Backup manual")
    return jsonify({"success": True, "backup": {k: v for k, v in backup.items() if k != "config"}})


@config_bp.route("/backups/<backup_id>", methods=["GET"])
def get_backup(backup_id: str):
    backup = services().settings().get_backup(backup_id)
    return jsonify({"success": True, "backup": {**backup, "config": _masked(backup["config"])}})


@config_bp.route("/backups/<backup_id>/restore", methods=["POST"])
def restore_backup(backup_id: str):
    result = services().settings().restore_backup(backup_id, push=query_bool("push"))
    return jsonify(_result(result))


@config_bp.route("/backups/<backup_id>", methods=["DELETE"])
def delete_backup(backup_id: str):
    services().settings().delete_backup(backup_id)
    return jsonify({"success": True})


# ── Single values ────────────────────────────────────────────────


@config_bp.route("/value", methods=["GET"])
def get_value():
    path = request.args.get("path", "").strip()
    if not path:
        raise RequiredFieldError("path")
    if path == "github.token":
        raise ValidationError("O token não pode ser lido pela API", field=path)
    return jsonify({"success": True, "path": path, "value": services().settings().get_value(path)})


@config_bp.route("/value", methods=["PUT"])
def set_value():
    data = _json_body()
    path = (data.get("path") or "").strip()
    if not path:
        raise RequiredFieldError("path")
    if "value" not in data:
        raise RequiredFieldError("value")
    result = services().settings().set_value(path, data["value"], push=query_bool("push"))
    return jsonify(_result(result))
