"""
Admin API — Generic file upload to the site repository.

Blueprint: files_bp
Prefix: /api/files
Routes:
    /api/files/upload       (POST multipart, fields "file" and optional "kind")
    /api/files/batch        (POST multipart, repeated "files" and optional "kind")
    /api/files/kinds
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..errors import RequiredFieldError
from ..files.upload import FILE_KINDS, FileUploader, format_file_size
from .helpers import services

files_bp = Blueprint("files", __name__)


@files_bp.route("/upload", methods=["POST"])
def upload():
    upload_file = request.files.get("file")
    if upload_file is None or not upload_file.filename:
        raise RequiredFieldError("file")

    svc = services()
    uploader = FileUploader(svc.github(), svc.oplog())
    result = uploader.upload(
        upload_file.filename,
        upload_file.read(),
        kind=request.form.get("kind") or None,
        message=request.form.get("message") or None,
    )
    return jsonify(result)


@files_bp.route("/batch", methods=["POST"])
def batch():
    uploads = [f for f in request.files.getlist("files") if f.filename]
    if not uploads:
        raise RequiredFieldError("files")

    kind = request.form.get("kind") or None
    svc = services()
    uploader = FileUploader(svc.github(), svc.oplog())
    result = uploader.batch_upload(
        [(f.filename, f.read(), kind) for f in uploads],
        message=request.form.get("message") or None,
    )
    return jsonify(result), 200 if result["success"] else 400


@files_bp.route("/kinds")
def kinds():
    return jsonify({
        name: {
            "extensions": list(kind.extensions),
            "max_size": kind.max_size,
            "max_size_formatted": format_file_size(kind.max_size),
        }
        for name, kind in FILE_KINDS.items()
    })
