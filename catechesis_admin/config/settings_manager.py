"""
Settings Manager — Load, validate, back up and publish the site settings.

The settings document (``config/settings.json`` in the site repository)
drives the public pages: parish name, school year, data file paths,
export cells, validation rules. The manager keeps a local copy in
``state/settings.json`` and up to ``MAX_BACKUPS`` earlier versions in
``state/settings_backups.json``.

Load order: memory cache → GitHub → local copy → defaults. A document
that fails validation is merged over the defaults and validated again;
if that still fails the defaults win.

The GitHub token is never written to the repository, even when the
administrator typed it into the settings form.
"""

from __future__ import annotations

import copy
import json
import logging
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..errors import AppError, NotFoundError, ValidationError, is_retryable
from ..models.settings import default_settings
from ..persistence.state_file import load_json, path_lock, save_json
from ..validation import (
    ValidationResult,
    get_path,
    github_token_problems,
    validate_iso_date,
    validate_numeric_range,
    validate_repository,
    validate_required_fields,
)

if TYPE_CHECKING:
    from ..github.client import GitHubClient
    from ..github.optimizer import RequestQueue
    from ..persistence.operation_log import OperationLog
    from ..reliability.retry_queue import RetryQueue

logger = logging.getLogger(__name__)

SETTINGS_REPO_PATH = "config/settings.json"
MAX_BACKUPS = 10

REQUIRED_FIELDS = [
    "paroquia.nome",
    "paroquia.secretariado",
    "paroquia.ano_catequetico",
    "arquivos.dados_principais",
    "arquivos.template_export",
]

RANGES = [
    ("validacao.idade_minima", 0, 100),
    ("validacao.idade_maxima", 0, 150),
    ("interface.items_por_pagina", 1, 1000),
    ("interface.backup_intervalo_horas", 1, 168),
]


# ── Pure helpers ─────────────────────────────────────────────────


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` over ``base`` into a new dict."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Write a dot path, creating intermediate dicts."""
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """``{"a": {"b": 1}}`` → ``{"a.b": 1}``. Lists stay values."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            flat.update(flatten(value, full_key))
        else:
            flat[full_key] = value
    return flat


def unflatten(flat: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in flat.items():
        set_path(data, key, value)
    return data


def get_config_differences(old: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """Added, removed and modified dot paths between two documents."""
    a, b = flatten(old), flatten(new)
    return {
        "added": {k: b[k] for k in b.keys() - a.keys()},
        "removed": {k: a[k] for k in a.keys() - b.keys()},
        "modified": {
            k: {"old": a[k], "new": b[k]}
            for k in a.keys() & b.keys()
            if a[k] != b[k]
        },
    }


def sanitize_config(value: Any) -> Any:
    """Trim strings and strip angle brackets, recursively."""
    if isinstance(value, str):
        return value.replace("<", "").replace(">", "").strip()
    if isinstance(value, dict):
        return {k: sanitize_config(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_config(v) for v in value]
    return value


def validate_settings(config: Dict[str, Any]) -> ValidationResult:
    """Structural and value checks for a settings document."""
    result = validate_required_fields(config, REQUIRED_FIELDS)

    data_inicio = get_path(config, "paroquia.data_inicio")
    if data_inicio and not validate_iso_date(data_inicio):
        result.add_error("paroquia.data_inicio", "Data deve estar no formato AAAA-MM-DD")

    token = get_path(config, "github.token")
    if token:
        for problem in github_token_problems(token):
            result.add_error("github.token", problem)

    repository = get_path(config, "github.repository")
    if repository and not validate_repository(repository):
        result.add_error("github.repository", "Formato inválido (esperado: owner/repo)")
    elif not repository:
        result.add_warning("github.repository", "Repositório não configurado")

    campos = get_path(config, "validacao.campos_obrigatorios")
    if campos is not None and not isinstance(campos, list):
        result.add_error("validacao.campos_obrigatorios", "Deve ser uma lista")

    for path, low, high in RANGES:
        value = get_path(config, path)
        if value is not None:
            result.merge(validate_numeric_range(value, path, low, high))

    minima = get_path(config, "validacao.idade_minima")
    maxima = get_path(config, "validacao.idade_maxima")
    if isinstance(minima, int) and isinstance(maxima, int) and minima > maxima:
        result.add_error("validacao.idade_minima", "Idade mínima maior que a máxima")

    return result


def format_start_date(iso_date: str) -> str:
    """``2026-02-01`` → ``01/02/2026``."""
    year, month, day = iso_date.split("-")
    return f"{day}/{month}/{year}"


# ── Manager ──────────────────────────────────────────────────────


class SettingsManager:
    """
    Settings document lifecycle.

    ``client`` is optional: without it the manager works purely on the
    local copy (useful offline and in tests).
    """

    def __init__(
        self,
        state_dir: Path,
        client: Optional["GitHubClient"] = None,
        oplog: Optional["OperationLog"] = None,
        retry_queue: Optional["RetryQueue"] = None,
        repository: str = "",
        branch: str = "main",
        requests: Optional["RequestQueue"] = None,
    ):
        self.local_path = state_dir / "settings.json"
        self.backups_path = state_dir / "settings_backups.json"
        self.client = client
        self.oplog = oplog
        self.retry_queue = retry_queue
        self.requests = requests
        self.repository = repository or (client.repository if client else "")
        self.branch = branch
        self._cache: Optional[Dict[str, Any]] = None
        self.source: Optional[str] = None

    def get_default_config(self) -> Dict[str, Any]:
        return default_settings(repository=self.repository, branch=self.branch)

    # ── Load ─────────────────────────────────────────────────────

    def _fetch_remote(self, force: bool = False) -> Optional[Dict[str, Any]]:
        if self.client is None:
            return None
        try:
            if self.requests is None:
                data = self.client.get_json(SETTINGS_REPO_PATH)
            else:
                if force:
                    self.requests.invalidate(SETTINGS_REPO_PATH)
                remote = self.requests.cached_get(SETTINGS_REPO_PATH)
                data = json.loads(remote.text) if remote is not None else None
        except AppError as e:
            logger.warning(f"Could not load settings from GitHub: {e.message}")
            return None
        except ValueError as e:
            logger.warning(f"{SETTINGS_REPO_PATH} on GitHub is not valid JSON: {e}")
            return None
        return data if isinstance(data, dict) else None

    def _accept(self, data: Dict[str, Any], source: str) -> Optional[Dict[str, Any]]:
        if validate_settings(data).is_valid:
            return data
        merged = deep_merge(self.get_default_config(), data)
        if validate_settings(merged).is_valid:
            logger.warning(f"Settings from {source} were incomplete, merged with defaults")
            return merged
        logger.warning(f"Settings from {source} are invalid, ignoring them")
        return None

    def load(self, force: bool = False) -> Dict[str, Any]:
        """Current settings, following the cache → GitHub → local → defaults order."""
        if self._cache is not None and not force:
            return copy.deepcopy(self._cache)

        candidates: List[Tuple[str, Optional[Dict[str, Any]]]] = [
            ("github", self._fetch_remote(force)),
            ("local", load_json(self.local_path, default=None)),
        ]

        config: Optional[Dict[str, Any]] = None
        for source, data in candidates:
            if not isinstance(data, dict):
                continue
            config = self._accept(data, source)
            if config is not None:
                self.source = source
                break

        if config is None:
            logger.warning("Using default settings")
            config = self.get_default_config()
            self.source = "defaults"

        self._cache = config
        if self.source == "github":
            save_json(config, self.local_path)
        return copy.deepcopy(config)

    def validate(self, config: Optional[Dict[str, Any]] = None) -> ValidationResult:
        return validate_settings(config if config is not None else self.load())

    # ── Save ─────────────────────────────────────────────────────

    @staticmethod
    def _public_copy(config: Dict[str, Any]) -> Dict[str, Any]:
        public = copy.deepcopy(config)
        github = public.get("github")
        if isinstance(github, dict):
            github.pop("token", None)
        return public

    def update_settings(
        self,
        new_config: Dict[str, Any],
        push: bool = True,
        message: Optional[str] = None,
        backup: bool = True,
        backup_description: str = "Backup automático antes da atualização",
    ) -> Dict[str, Any]:
        """
        Validate, back up the current version, publish and store.

        Returns a dict with the stored config, the commit (if any),
        whether the commit was queued for retry, and validation warnings.
        """
        started = time.monotonic()
        config = sanitize_config(new_config)
        result = validate_settings(config)
        result.raise_if_invalid()

        data_inicio = get_path(config, "paroquia.data_inicio")
        if data_inicio:
            set_path(config, "paroquia.data_inicio_formatada", format_start_date(data_inicio))

        if backup:
            self.create_backup(self.load(), backup_description)

        commit = None
        queued = False
        if push and self.client is not None:
            message = message or (
                f"Atualizar configurações da paróquia - {datetime.now().strftime('%d/%m/%Y')}"
            )
            body = json.dumps(self._public_copy(config), indent=2, ensure_ascii=False) + "\n"
            try:
                commit = self.client.commit_file_with_retry(SETTINGS_REPO_PATH, body, message)
                if self.requests is not None:
                    self.requests.invalidate(SETTINGS_REPO_PATH)
            except AppError as e:
                if self.retry_queue is not None and is_retryable(e):
                    self.retry_queue.enqueue(SETTINGS_REPO_PATH, body, message, e)
                    queued = True
                    self._log("warning", f"Configurações salvas localmente; envio ao GitHub adiado ({e.message})", started)
                else:
                    self._log("error", f"Falha ao salvar configurações: {e.message}", started)
                    raise

        save_json(config, self.local_path)
        self._cache = config
        if not queued:
            self._log("success", "Configurações atualizadas", started, commit)

        return {
            "success": True,
            "config": copy.deepcopy(config),
            "commit": commit.to_dict() if commit else None,
            "queued": queued,
            "warnings": result.warnings,
        }

    def _log(self, status: str, message: str, started: float, commit=None) -> None:
        if self.oplog is None:
            return
        self.oplog.add(
            "config",
            status,
            message,
            details={"commit_sha": commit.commit_sha} if commit else {},
            duration=time.monotonic() - started,
            files=[SETTINGS_REPO_PATH],
        )

    # ── Backups ──────────────────────────────────────────────────

    def _load_backups(self) -> List[Dict[str, Any]]:
        data = load_json(self.backups_path, default=[])
        return data if isinstance(data, list) else []

    def create_backup(
        self,
        config: Optional[Dict[str, Any]] = None,
        description: str = "Backup manual",
    ) -> Dict[str, Any]:
        config = copy.deepcopy(config if config is not None else self.load())
        now = datetime.now(timezone.utc)
        backup = {
            "id": f"backup_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}",
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "description": description,
            "config": config,
            "size": len(json.dumps(config, ensure_ascii=False).encode("utf-8")),
        }
        with path_lock(self.backups_path):
            backups = self._load_backups()
            backups.insert(0, backup)
            save_json(backups[:MAX_BACKUPS], self.backups_path)
        logger.info(f"Settings backup created: {backup['id']} ({description})")
        return backup

    def list_backups(self) -> List[Dict[str, Any]]:
        """Backup metadata, newest first (without the documents)."""
        return [
            {k: v for k, v in b.items() if k != "config"}
            for b in self._load_backups()
        ]

    def get_backup(self, backup_id: str) -> Dict[str, Any]:
        for backup in self._load_backups():
            if backup["id"] == backup_id:
                return backup
        raise NotFoundError(f"Backup não encontrado: {backup_id}")

    def restore_backup(self, backup_id: str, push: bool = True) -> Dict[str, Any]:
        """Restore a backup, keeping the current version as a new backup first."""
        backup = self.get_backup(backup_id)
        return self.update_settings(
            backup["config"],
            push=push,
            message=f"Restaurar configurações do backup de {backup['timestamp'][:10]}",
            backup_description="Backup antes da restauração",
        )

    def delete_backup(self, backup_id: str) -> None:
        with path_lock(self.backups_path):
            backups = self._load_backups()
            kept = [b for b in backups if b["id"] != backup_id]
            if len(kept) == len(backups):
                raise NotFoundError(f"Backup não encontrado: {backup_id}")
            save_json(kept, self.backups_path)

    # ── Import / export ──────────────────────────────────────────

    def export_config(self) -> str:
        return json.dumps(
            {
                "version": 1,
                "exported_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                "config": self._public_copy(self.load()),
            },
            indent=2,
            ensure_ascii=False,
        )

    def import_config(self, text: str, push: bool = True) -> Dict[str, Any]:
        """Apply an exported document (or a bare settings object)."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"JSON inválido: {e}") from e
        if isinstance(data, dict) and isinstance(data.get("config"), dict):
            data = data["config"]
        if not isinstance(data, dict):
            raise ValidationError("O arquivo não contém um objeto de configurações")
        return self.update_settings(
            deep_merge(self.get_default_config(), data),
            push=push,
            message="Importar configurações",
            backup_description="Backup antes da importação",
        )

    def reset_to_defaults(self, push: bool = True) -> Dict[str, Any]:
        defaults = self.get_default_config()
        current = self.load()
        # Parish identity survives a reset; everything else goes back to defaults.
        defaults["paroquia"] = deep_merge(defaults["paroquia"], current.get("paroquia", {}))
        return self.update_settings(
            defaults,
            push=push,
            message="Restaurar configurações padrão",
            backup_description="Backup antes de restaurar padrões",
        )

    # ── Dot-path access ──────────────────────────────────────────

    def get_value(self, path: str, default: Any = None) -> Any:
        return get_path(self.load(), path, default)

    def set_value(self, path: str, value: Any, push: bool = True) -> Dict[str, Any]:
        config = self.load()
        set_path(config, path, value)
        return self.update_settings(config, push=push, message=f"Atualizar {path}")

    def invalidate_cache(self) -> None:
        self._cache = None
        if self.requests is not None:
            self.requests.invalidate(SETTINGS_REPO_PATH)
