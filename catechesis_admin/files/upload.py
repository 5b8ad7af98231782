"""
File uploads — Validate admin uploads and commit them to the site repository.

Three kinds of file reach the site:

- excel: the roster workbook, always stored as ``data/dados-catequese.xlsx``
- template: the export template, ``data/template-export.xlsx``
- image: logos and photos under ``assets/images/``

Before anything is committed the content itself is checked: workbooks
must carry a ZIP (``.xlsx``) or OLE (``.xls``) signature and ``.xlsx``
files must open in openpyxl; images must decode in Pillow as the format
their extension claims. Images wider or taller than
``MAX_IMAGE_DIMENSION`` are scaled down before the commit.
"""

from __future__ import annotations

import io
import logging
import re
import time
import zipfile
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from PIL import Image

from ..errors import (
    AppError,
    CorruptedFileError,
    FileTooLargeError,
    FileUploadError,
    InvalidFileTypeError,
    ValidationError,
)
from ..validation import ValidationResult

if TYPE_CHECKING:
    from ..github.client import GitHubClient
    from ..persistence.operation_log import OperationLog

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True)
class FileKind:
    extensions: tuple
    max_size: int


FILE_KINDS: Dict[str, FileKind] = {
    "excel": FileKind((".xlsx", ".xls"), 10 * MB),
    "image": FileKind((".jpg", ".jpeg", ".png"), 5 * MB),
    "template": FileKind((".xlsx",), 5 * MB),
}

MIN_EXCEL_SIZE = 1024
SUSPICIOUS_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
MAX_STEM_LENGTH = 50

ZIP_SIGNATURE = b"PK\x03\x04"
OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

IMAGE_FORMATS = {".png": "PNG", ".jpg": "JPEG", ".jpeg": "JPEG"}
MAX_IMAGE_DIMENSION = 1200   # px, longest side after optimization
MIN_IMAGE_DIMENSION = 10
JPEG_QUALITY = 80


def format_file_size(size: int) -> str:
    """``1536`` → ``"1.50 KB"``."""
    if size < 1024:
        return f"{size} B"
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024 or unit == "GB":
            return f"{size:.2f} {unit}"
    return f"{size:.2f} GB"


def file_extension(filename: str) -> str:
    return PurePosixPath(filename).suffix.lower()


def detect_kind(filename: str) -> Optional[str]:
    """Guess the upload kind from the name; templates say so in their name."""
    ext = file_extension(filename)
    if ext in FILE_KINDS["excel"].extensions:
        return "template" if "template" in filename.lower() else "excel"
    if ext in FILE_KINDS["image"].extensions:
        return "image"
    return None


def sanitize_filename(filename: Optional[str]) -> str:
    """Repository-safe lowercase name: ``"Logo Paróquia.PNG"`` → ``"logo-par-quia.png"``."""
    if not filename or not isinstance(filename, str):
        return "unnamed-file"

    path = PurePosixPath(filename.replace("\\", "/").split("/")[-1])
    stem = path.stem if path.suffix else path.name
    ext = re.sub(r"[^a-z0-9.]", "", path.suffix.lower()) if path.suffix else ""

    stem = re.sub(r"[^a-z0-9]+", "-", stem.lower()).strip("-")[:MAX_STEM_LENGTH].strip("-")
    if not stem:
        stem = "file"
    return stem + ext


def validate_upload(filename: str, size: int, kind: str) -> ValidationResult:
    """Check name, extension and size of an upload before reading it."""
    result = ValidationResult()
    spec = FILE_KINDS.get(kind)
    if spec is None:
        result.add_error("kind", f"Tipo de upload desconhecido: {kind}")
        return result

    if not filename:
        result.add_error("filename", "Nome do arquivo ausente")
        return result

    if SUSPICIOUS_CHARS_RE.search(filename):
        result.add_error("filename", "Nome do arquivo contém caracteres não permitidos")

    ext = file_extension(filename)
    if ext not in spec.extensions:
        result.add_error(
            "filename",
            f"Tipo de arquivo não permitido. Permitidos: {', '.join(spec.extensions)}",
        )

    if size <= 0:
        result.add_error("size", "Arquivo vazio")
    elif size > spec.max_size:
        result.add_error("size", f"Arquivo muito grande. Tamanho máximo: {format_file_size(spec.max_size)}")
    elif kind == "excel" and size < MIN_EXCEL_SIZE:
        result.add_warning("size", "Arquivo Excel muito pequeno, verifique se contém dados")

    return result


def get_target_path(filename: str, kind: str) -> str:
    """Where an upload of ``kind`` lives in the site repository."""
    if kind == "excel":
        return "data/dados-catequese.xlsx"
    if kind == "template":
        return "data/template-export.xlsx"
    if kind == "image":
        return f"assets/images/{sanitize_filename(filename)}"
    raise ValidationError(f"Tipo de upload desconhecido: {kind}", field="kind")


# ── Content checks ───────────────────────────────────────────────


def check_workbook_integrity(filename: str, content: bytes) -> ValidationResult:
    """Signature check for workbooks; ``.xlsx`` files are also opened."""
    result = ValidationResult()
    if file_extension(filename) == ".xls":
        if not content.startswith(OLE_SIGNATURE):
            result.add_error("file", "Assinatura de arquivo Excel não encontrada")
        return result

    if not content.startswith(ZIP_SIGNATURE):
        result.add_error("file", "Assinatura de arquivo Excel não encontrada")
        return result

    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        result.add_error("file", f"Estrutura da planilha corrompida: {e}")
        return result
    try:
        if not workbook.sheetnames:
            result.add_error("file", "A planilha não contém abas")
    finally:
        workbook.close()
    return result


def check_image_integrity(filename: str, content: bytes) -> ValidationResult:
    """Decode the image and compare its real format with the extension."""
    result = ValidationResult()
    try:
        with Image.open(io.BytesIO(content)) as img:
            actual = img.format
            width, height = img.size
            img.verify()
    except Exception as e:
        logger.warning(f"Unreadable image {filename}: {e}")
        result.add_error("file", "Não foi possível carregar a imagem")
        return result

    expected = IMAGE_FORMATS.get(file_extension(filename))
    if expected and actual != expected:
        result.add_error("file", f"Conteúdo {actual} não corresponde à extensão ({expected} esperado)")
    if width == 0 or height == 0:
        result.add_error("file", "Imagem com dimensões inválidas")
    elif min(width, height) < MIN_IMAGE_DIMENSION:
        result.add_warning("file", "Imagem muito pequena")
    elif max(width, height) > MAX_IMAGE_DIMENSION:
        result.add_warning("file", f"Imagem será redimensionada para no máximo {MAX_IMAGE_DIMENSION}px")
    return result


def check_integrity(filename: str, content: bytes, kind: str) -> ValidationResult:
    if kind in ("excel", "template"):
        return check_workbook_integrity(filename, content)
    if kind == "image":
        return check_image_integrity(filename, content)
    return ValidationResult()


def optimize_image(
    content: bytes,
    max_dimension: int = MAX_IMAGE_DIMENSION,
    quality: int = JPEG_QUALITY,
) -> Tuple[bytes, Optional[Dict[str, Any]]]:
    """
    Scale an image down so its longest side fits ``max_dimension``.

    The format is kept so the repository path stays valid. Images that
    already fit are returned unchanged with ``None`` as the info dict.
    """
    with Image.open(io.BytesIO(content)) as img:
        fmt = img.format
        original_dims = img.size
        if max(original_dims) <= max_dimension:
            return content, None

        resized = img.copy()
        resized.thumbnail((max_dimension, max_dimension), Image.LANCZOS)

    save_kwargs: Dict[str, Any] = {"optimize": True}
    if fmt == "JPEG":
        if resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")
        save_kwargs["quality"] = quality
    buf = io.BytesIO()
    resized.save(buf, format=fmt, **save_kwargs)
    optimized = buf.getvalue()

    logger.info(
        f"Optimized image: {original_dims[0]}x{original_dims[1]} → "
        f"{resized.size[0]}x{resized.size[1]}, {len(content):,} → {len(optimized):,} bytes"
    )
    return optimized, {
        "original_size": len(content),
        "optimized_size": len(optimized),
        "original_dimensions": list(original_dims),
        "dimensions": list(resized.size),
    }


class FileUploader:
    """Validate an upload and commit it through the GitHub client."""

    def __init__(self, client: "GitHubClient", oplog: Optional["OperationLog"] = None):
        self.client = client
        self.oplog = oplog

    def check(self, filename: str, content: bytes, kind: str) -> ValidationResult:
        """
        Validate and raise the most specific error for the first problem.

        Returns the result so callers can surface warnings.
        """
        result = validate_upload(filename, len(content), kind)
        if result.is_valid:
            return result

        spec = FILE_KINDS.get(kind)
        if spec and file_extension(filename or "") not in spec.extensions:
            raise InvalidFileTypeError(filename, list(spec.extensions))
        if spec and len(content) > spec.max_size:
            raise FileTooLargeError(len(content), spec.max_size)
        raise FileUploadError(
            "; ".join(result.errors),
            details=result.to_dict(),
        )

    def check_content(self, filename: str, content: bytes, kind: str) -> ValidationResult:
        """``check`` plus the content checks; raises CorruptedFileError on bad content."""
        result = self.check(filename, content, kind)
        integrity = check_integrity(filename, content, kind)
        if not integrity.is_valid:
            raise CorruptedFileError("; ".join(integrity.errors), details=integrity.to_dict())
        return result.merge(integrity)

    def upload(
        self,
        filename: str,
        content: bytes,
        kind: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        kind = kind or detect_kind(filename) or ""
        started = time.monotonic()
        try:
            result = self.check_content(filename, content, kind)
        except FileUploadError as e:
            self._log("error", f"Upload rejeitado ({filename}): {e.message}", started, [])
            raise

        original_size = len(content)
        optimized = None
        if kind == "image":
            content, optimized = optimize_image(content)

        path = get_target_path(filename, kind)
        message = message or f"Upload de {kind}: {sanitize_filename(filename)}"
        try:
            commit = self.client.commit_file_with_retry(path, content, message)
        except Exception as e:
            self._log("error", f"Falha no upload de {filename}: {e}", started, [path])
            raise

        self._log("success", f"Arquivo enviado: {filename} ({format_file_size(len(content))})", started, [path], commit.commit_sha)
        logger.info(f"Uploaded {filename} → {path}")
        return {
            "success": True,
            "path": path,
            "kind": kind,
            "size": len(content),
            "size_formatted": format_file_size(len(content)),
            "original_size": original_size,
            "optimized": optimized,
            "commit": commit.to_dict(),
            "warnings": result.warnings,
        }

    def batch_upload(
        self,
        files: Sequence[Tuple[str, bytes, Optional[str]]],
        progress_callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upload ``(filename, content, kind)`` triples, one commit each.

        Every file is checked first; if any fails, nothing is committed
        and the result lists the rejected files.
        """
        if not files:
            raise ValidationError("Nenhum arquivo enviado", field="files")

        started = time.monotonic()
        total = len(files)
        prepared: List[Tuple[str, bytes, str]] = []
        rejected: List[Dict[str, Any]] = []
        for filename, content, kind in files:
            kind = kind or detect_kind(filename) or ""
            try:
                self.check_content(filename, content, kind)
            except FileUploadError as e:
                rejected.append({"filename": filename, "kind": kind, "success": False, "code": e.code, "error": e.message})
                continue
            prepared.append((filename, content, kind))

        if rejected:
            self._log("error", f"Lote rejeitado: {len(rejected)} de {total} arquivo(s) inválido(s)", started, [])
            return {
                "success": False,
                "message": "Validação prévia falhou",
                "results": rejected,
                "summary": {"total": total, "success": 0, "warnings": 0, "errors": len(rejected)},
            }

        results: List[Dict[str, Any]] = []
        for index, (filename, content, kind) in enumerate(prepared, 1):
            if progress_callback:
                progress_callback({
                    "current": index,
                    "total": total,
                    "percentage": round(index / total * 100),
                    "current_file": filename,
                })
            try:
                results.append({"filename": filename, **self.upload(filename, content, kind, message)})
            except AppError as e:
                results.append({"filename": filename, "kind": kind, "success": False, "code": e.code, "error": e.message})

        succeeded = [r for r in results if r["success"]]
        summary = {
            "total": total,
            "success": len(succeeded),
            "warnings": sum(1 for r in succeeded if r["warnings"]),
            "errors": total - len(succeeded),
        }
        logger.info(f"Batch upload: {summary['success']}/{total} files committed")
        return {"success": summary["errors"] == 0, "results": results, "summary": summary}

    def _log(self, status: str, message: str, started: float, files: List[str], commit_sha: Optional[str] = None) -> None:
        if self.oplog is None:
            return
        self.oplog.add(
            "upload",
            status,
            message,
            details={"commit_sha": commit_sha} if commit_sha else {},
            duration=time.monotonic() - started,
            files=files,
        )
