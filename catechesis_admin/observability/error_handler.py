"""
Error Handler — Classify failures and turn them into user-facing answers.

Routes and CLI commands hand unexpected exceptions here. The handler
decides the error type and severity, picks a Portuguese message and
recovery suggestions for the panel, logs at a level matching the
severity and keeps a short history for the error report.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from ..errors import (
    AppError,
    AuthenticationError,
    ConfigurationError,
    CriticalError,
    FileUploadError,
    GitHubAPIError,
    InternalError,
    NetworkError,
    NotFoundError,
    TemporaryError,
    ValidationError,
    is_retryable,
)

logger = logging.getLogger(__name__)

ERROR_TYPES = (
    "authentication",
    "validation",
    "network",
    "file_upload",
    "github_api",
    "config",
    "system",
    "user_input",
)
SEVERITIES = ("low", "medium", "high", "critical")

_CLASS_TYPES = [
    (AuthenticationError, "authentication"),
    (ValidationError, "validation"),
    (NetworkError, "network"),
    (FileUploadError, "file_upload"),
    (GitHubAPIError, "github_api"),
    (ConfigurationError, "config"),
    (NotFoundError, "user_input"),
    (InternalError, "system"),
    (TemporaryError, "system"),
]

# Checked against the lowercased message when the class says nothing
_KEYWORD_TYPES = [
    (("sessão", "session", "login", "senha"), "authentication"),
    (("inválid", "invalid", "obrigatório", "required"), "validation"),
    (("timeout", "connection", "conexão", "network"), "network"),
    (("arquivo", "file", "upload"), "file_upload"),
    (("github", "api", "token"), "github_api"),
    (("configuração", "config"), "config"),
]

_OPERATION_TYPES = {
    "login": "authentication",
    "file_upload": "file_upload",
    "upload": "file_upload",
    "config": "config",
    "github": "github_api",
}

USER_MESSAGES: Dict[str, str] = {
    "authentication": "Erro de autenticação. Verifique suas credenciais.",
    "validation": "Dados inválidos. Verifique os campos preenchidos.",
    "network": "Erro de conexão. Verifique sua internet.",
    "file_upload": "Erro no upload do arquivo. Verifique o arquivo e tente novamente.",
    "github_api": "Erro na sincronização com GitHub. Verifique as configurações.",
    "config": "Erro na configuração. Verifique os dados inseridos.",
    "system": "Erro interno do sistema. Tente novamente.",
    "user_input": "O item solicitado não foi encontrado.",
}

# Error code → more specific message
CODE_MESSAGES: Dict[str, str] = {
    "SESSION_EXPIRED": "Sua sessão expirou. Faça login novamente.",
    "INVALID_CREDENTIALS": "Credenciais inválidas. Verifique usuário e senha.",
    "ACCOUNT_LOCKED": "Conta temporariamente bloqueada devido a múltiplas tentativas.",
    "REQUIRED_FIELD": "Campos obrigatórios não preenchidos.",
    "INVALID_FORMAT": "Formato de dados inválido.",
    "NETWORK_TIMEOUT": "Operação demorou muito para responder. Tente novamente.",
    "OFFLINE": "Sem conexão. Verifique sua rede.",
    "INVALID_FILE_TYPE": "Tipo de arquivo não permitido.",
    "FILE_TOO_LARGE": "Arquivo muito grande.",
    "CORRUPTED_FILE": "Arquivo pode estar corrompido.",
    "RATE_LIMIT": "Limite de requisições atingido. Aguarde alguns minutos.",
    "PERMISSION_DENIED": "Permissões insuficientes no GitHub.",
    "REPOSITORY_NOT_FOUND": "Repositório não encontrado.",
    "INVALID_TOKEN": "Token GitHub inválido ou expirado.",
    "CONFLICT": "O arquivo foi alterado por outra pessoa. Recarregue e tente novamente.",
    "MISSING_CONFIG": "Configurações obrigatórias não preenchidas.",
    "COMPONENT_INIT": "Falha na inicialização do sistema.",
}

SUGGESTIONS: Dict[str, List[str]] = {
    "authentication": [
        "Verifique se o usuário e senha estão corretos",
        "Aguarde alguns minutos se a conta estiver bloqueada",
        "Tente fazer login novamente",
    ],
    "validation": [
        "Verifique se todos os campos obrigatórios estão preenchidos",
        "Confirme se os dados estão no formato correto",
        "Remova caracteres especiais desnecessários",
    ],
    "network": [
        "Verifique sua conexão com a internet",
        "Aguarde alguns minutos e tente novamente",
        "Verifique se não há bloqueios de firewall",
    ],
    "file_upload": [
        "Verifique se o arquivo não está corrompido",
        "Confirme se o tipo de arquivo é permitido",
        "Reduza o tamanho do arquivo se necessário",
    ],
    "github_api": [
        "Verifique se o token GitHub está correto",
        "Confirme se o repositório existe e está acessível",
        "Aguarde alguns minutos se atingiu o limite de requisições",
        "Verifique as permissões do token",
    ],
    "config": [
        "Verifique se todos os campos obrigatórios estão preenchidos",
        "Tente restaurar um backup anterior",
    ],
    "system": [
        "Tente novamente em alguns minutos",
        "Consulte os logs do servidor se o problema persistir",
    ],
    "user_input": [
        "Atualize a lista e tente novamente",
    ],
}

_LOG_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


@dataclass
class Classification:
    type: str
    severity: str
    category: str = "unknown"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "severity": self.severity, "category": self.category}


@dataclass
class HandledError:
    error: str
    code: str
    classification: Classification
    user_message: str
    suggestions: List[str]
    can_retry: bool
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.user_message,
            "detail": self.error,
            "code": self.code,
            "classification": self.classification.to_dict(),
            "suggestions": self.suggestions,
            "can_retry": self.can_retry,
            "timestamp": self.timestamp,
        }


class ErrorHandler:
    """
    Usage:
        handler = ErrorHandler()
        try:
            ...
        except Exception as e:
            return jsonify(handler.handle(e, {"operation": "upload"})), 500
    """

    MAX_HISTORY = 50

    def __init__(self):
        self._history: Deque[HandledError] = deque(maxlen=self.MAX_HISTORY)
        self._lock = Lock()

    def classify(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> Classification:
        context = context or {}
        message = str(exc).lower()

        error_type = None
        for cls, name in _CLASS_TYPES:
            if isinstance(exc, cls):
                error_type = name
                break
        if error_type is None:
            error_type = _OPERATION_TYPES.get(context.get("operation", ""))
        if error_type is None:
            for keywords, name in _KEYWORD_TYPES:
                if any(k in message for k in keywords):
                    error_type = name
                    break
        if error_type is None:
            error_type = "system"

        if isinstance(exc, CriticalError) or "crítico" in message or "critical" in message:
            severity = "critical"
        elif isinstance(exc, InternalError) or not isinstance(exc, AppError) or "falha" in message or "fatal" in message:
            severity = "high"
        elif error_type in ("validation", "user_input") or "aviso" in message or "warning" in message:
            severity = "low"
        else:
            severity = "medium"

        category = {"authentication": "auth", "file_upload": "file", "github_api": "github"}.get(error_type, error_type)
        return Classification(error_type, severity, category)

    def is_retryable(self, exc: BaseException) -> bool:
        return is_retryable(exc) or isinstance(exc, (TimeoutError, ConnectionError))

    def can_retry(self, exc: BaseException, classification: Optional[Classification] = None) -> bool:
        classification = classification or self.classify(exc)
        if classification.type == "validation":
            return False
        if classification.type == "authentication":
            message = str(exc).lower()
            return "sessão" in message or "session" in message
        return self.is_retryable(exc) or classification.type in ("network", "github_api")

    def user_message(self, exc: BaseException, classification: Classification) -> str:
        code = getattr(exc, "code", None)
        if isinstance(code, str) and code in CODE_MESSAGES:
            return CODE_MESSAGES[code]
        return USER_MESSAGES.get(classification.type, USER_MESSAGES["system"])

    def suggestions(self, classification: Classification) -> List[str]:
        return list(SUGGESTIONS.get(classification.type, SUGGESTIONS["system"]))

    def handle(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Classify, log and remember ``exc``; returns the JSON body for the panel."""
        context = context or {}
        classification = self.classify(exc, context)
        handled = HandledError(
            error=exc.message if isinstance(exc, AppError) else str(exc) or type(exc).__name__,
            code=exc.code if isinstance(exc, AppError) else type(exc).__name__,
            classification=classification,
            user_message=self.user_message(exc, classification),
            suggestions=self.suggestions(classification),
            can_retry=self.can_retry(exc, classification),
            context=context,
        )

        level = _LOG_LEVELS[classification.severity]
        operation = context.get("operation", "unknown")
        logger.log(
            level,
            f"{classification.type} error in {operation}: {handled.error}",
            exc_info=level >= logging.ERROR and not isinstance(exc, AppError),
        )

        with self._lock:
            self._history.append(handled)
        return handled.to_dict()

    def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self._history)[::-1]
        items = items[:limit] if limit else items
        return [{**h.to_dict(), "context": h.context} for h in items]

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            items = list(self._history)
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {s: 0 for s in SEVERITIES}
        for h in items:
            by_type[h.classification.type] = by_type.get(h.classification.type, 0) + 1
            by_severity[h.classification.severity] += 1
        return {"total": len(items), "by_type": by_type, "by_severity": by_severity}

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
