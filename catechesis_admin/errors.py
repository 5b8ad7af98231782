"""
Errors — Application exception hierarchy.

Every error raised by the managers derives from AppError, which carries
a stable machine code and the HTTP status the admin server answers with.

## Usage

    from catechesis_admin.errors import AppError, ValidationError

    try:
        manager.update_settings(data)
    except ValidationError as e:
        print(e.field, e.message)
    except AppError as e:
        return jsonify(e.to_dict()), e.http_status
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for all application errors."""

    code = "APP_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "code": self.code,
            "type": type(self).__name__,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# ── Authentication ───────────────────────────────────────────────


class AuthenticationError(AppError):
    code = "AUTH_ERROR"
    http_status = 401


class SessionExpiredError(AuthenticationError):
    code = "SESSION_EXPIRED"

    def __init__(self, message: str = "Sessão expirada. Faça login novamente.", **kw):
        super().__init__(message, **kw)


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Credenciais inválidas", attempts_remaining: Optional[int] = None, **kw):
        self.attempts_remaining = attempts_remaining
        super().__init__(message, **kw)
        if attempts_remaining is not None:
            self.details.setdefault("attempts_remaining", attempts_remaining)


class AccountLockedError(AuthenticationError):
    code = "ACCOUNT_LOCKED"
    http_status = 429

    def __init__(self, minutes_remaining: int, **kw):
        self.minutes_remaining = minutes_remaining
        super().__init__(
            f"Conta bloqueada. Tente novamente em {minutes_remaining} minutos.",
            **kw,
        )
        self.details.setdefault("minutes_remaining", minutes_remaining)


# ── Validation ───────────────────────────────────────────────────


class ValidationError(AppError):
    """Raised when validation fails."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        self.field = field
        super().__init__(message, code=code, details=details)

    def _format_message(self) -> str:
        if self.field:
            return f"{self.field}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class RequiredFieldError(ValidationError):
    code = "REQUIRED_FIELD"

    def __init__(self, field: str, **kw):
        super().__init__("Campo obrigatório", field=field, **kw)


class InvalidFormatError(ValidationError):
    code = "INVALID_FORMAT"

    def __init__(self, field: str, expected: str, **kw):
        super().__init__(f"Formato inválido (esperado: {expected})", field=field, **kw)


class NotFoundError(AppError):
    code = "NOT_FOUND"
    http_status = 404


# ── Network ──────────────────────────────────────────────────────


class NetworkError(AppError):
    code = "NETWORK_ERROR"
    http_status = 502


class NetworkTimeoutError(NetworkError):
    code = "NETWORK_TIMEOUT"
    http_status = 504


class OfflineError(NetworkError):
    code = "OFFLINE"
    http_status = 503


# ── File upload ──────────────────────────────────────────────────


class FileUploadError(AppError):
    code = "FILE_UPLOAD_ERROR"
    http_status = 400


class InvalidFileTypeError(FileUploadError):
    code = "INVALID_FILE_TYPE"

    def __init__(self, filename: str, allowed: list, **kw):
        super().__init__(
            f"Tipo de arquivo não permitido: {filename}. Permitidos: {', '.join(allowed)}",
            **kw,
        )
        self.details.setdefault("allowed", allowed)


class FileTooLargeError(FileUploadError):
    code = "FILE_TOO_LARGE"
    http_status = 413

    def __init__(self, size: int, max_size: int, **kw):
        super().__init__(
            f"Arquivo muito grande ({size} bytes, máximo {max_size} bytes)",
            **kw,
        )
        self.details.update({"size": size, "max_size": max_size})


class CorruptedFileError(FileUploadError):
    code = "CORRUPTED_FILE"


# ── GitHub API ───────────────────────────────────────────────────


class GitHubAPIError(AppError):
    code = "GITHUB_API_ERROR"
    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None, **kw):
        self.status_code = status_code
        super().__init__(message, **kw)
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class RateLimitError(GitHubAPIError):
    code = "RATE_LIMIT"
    http_status = 429

    def __init__(self, message: str = "Limite de requisições da API do GitHub excedido", reset_at: Optional[float] = None, **kw):
        self.reset_at = reset_at
        super().__init__(message, **kw)
        if reset_at is not None:
            self.details.setdefault("reset_at", reset_at)


class PermissionDeniedError(GitHubAPIError):
    code = "PERMISSION_DENIED"
    http_status = 403


class RepositoryNotFoundError(GitHubAPIError):
    code = "REPOSITORY_NOT_FOUND"
    http_status = 404


class InvalidTokenError(GitHubAPIError):
    code = "INVALID_TOKEN"
    http_status = 401


class ConflictError(GitHubAPIError):
    code = "CONFLICT"
    http_status = 409


# ── Configuration ────────────────────────────────────────────────


class ConfigurationError(AppError):
    """Raised when configuration is missing or invalid."""

    code = "CONFIG_ERROR"


class MissingConfigurationError(ConfigurationError):
    code = "MISSING_CONFIG"

    def __init__(self, key: str, **kw):
        self.key = key
        super().__init__(f"Configuração ausente: {key}", **kw)


class InvalidConfigurationError(ConfigurationError):
    code = "INVALID_CONFIG"
    http_status = 400


# ── System ───────────────────────────────────────────────────────


class InternalError(AppError):
    code = "SYSTEM_ERROR"


class ComponentInitializationError(InternalError):
    code = "COMPONENT_INIT"

    def __init__(self, component: str, reason: str, **kw):
        self.component = component
        super().__init__(f"Falha ao inicializar {component}: {reason}", **kw)


class TemporaryError(AppError):
    """A transient failure that is expected to succeed on retry."""

    code = "TEMPORARY_ERROR"
    http_status = 503


class CriticalError(AppError):
    code = "CRITICAL_ERROR"


def is_retryable(exc: BaseException) -> bool:
    """Transient failures worth another attempt: network, rate limit, 5xx."""
    if isinstance(exc, (NetworkError, RateLimitError, TemporaryError)):
        return True
    if isinstance(exc, GitHubAPIError) and exc.status_code and exc.status_code >= 500:
        return True
    return False
