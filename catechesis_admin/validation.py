"""
Validation — Input validation helpers shared by the managers.

Provides consistent validation patterns across the codebase. Checks that
collect several problems return a ValidationResult; single-value checks
raise ValidationError.

## Usage

    from catechesis_admin.validation import ValidationResult, validate_repository

    result = ValidationResult()
    if not validate_repository(repo):
        result.add_error("github.repository", "Formato inválido (owner/repo)")
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)
REPOSITORY_RE = re.compile(r"^[a-zA-Z0-9._-]+/[a-zA-Z0-9._-]+$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
BR_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
TOKEN_PREFIXES = ("ghp_", "gho_", "ghu_", "ghs_", "ghr_")
TOKEN_CHARS_RE = re.compile(r"^[A-Za-z0-9_]+$")
MIN_TOKEN_LENGTH = 40


@dataclass
class ValidationResult:
    """Outcome of a multi-field validation."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add_error(self, field_path: str, message: str) -> None:
        self.errors.append(f"{field_path}: {message}" if field_path else message)

    def add_warning(self, field_path: str, message: str) -> None:
        self.warnings.append(f"{field_path}: {message}" if field_path else message)

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def raise_if_invalid(self) -> None:
        """Raise ValidationError carrying every collected error."""
        if self.errors:
            raise ValidationError(
                self.errors[0],
                details={"errors": self.errors, "warnings": self.warnings},
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def validate_email(value: str) -> bool:
    return bool(value) and bool(EMAIL_RE.match(value.strip()))


def validate_url(value: str) -> bool:
    return bool(value) and bool(URL_RE.match(value.strip()))


def validate_repository(value: str) -> bool:
    """Check an ``owner/name`` repository slug."""
    return bool(value) and bool(REPOSITORY_RE.match(value.strip()))


def validate_iso_date(value: str) -> bool:
    """Check a ``YYYY-MM-DD`` string that is also a real calendar date."""
    if not value or not ISO_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def validate_br_date(value: str) -> bool:
    """Check a ``DD/MM/YYYY`` string that is also a real calendar date."""
    if not value or not BR_DATE_RE.match(value):
        return False
    day, month, year = (int(p) for p in value.split("/"))
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


def github_token_problems(token: str) -> List[str]:
    """
    List what is wrong with a GitHub personal access token.

    Returns an empty list for a well-formed token.
    """
    problems = []
    if len(token) < MIN_TOKEN_LENGTH:
        problems.append(f"Token deve ter pelo menos {MIN_TOKEN_LENGTH} caracteres")
    if not token.startswith(TOKEN_PREFIXES):
        problems.append(f"Token deve começar com {', '.join(TOKEN_PREFIXES)}")
    if not TOKEN_CHARS_RE.match(token):
        problems.append("Token contém caracteres inválidos")
    return problems


def get_path(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dot-separated path from nested dicts."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def validate_required_fields(data: Dict[str, Any], paths: List[str]) -> ValidationResult:
    """Every dot path must resolve to a non-blank value."""
    result = ValidationResult()
    for path in paths:
        value = get_path(data, path)
        if value is None or (isinstance(value, str) and not value.strip()):
            result.add_error(path, "Campo obrigatório")
    return result


def validate_string_length(
    value: str,
    field_path: str,
    min_length: int = 0,
    max_length: Optional[int] = None,
) -> ValidationResult:
    """Length bounds; warns once a value is past 90% of the maximum."""
    result = ValidationResult()
    length = len(value or "")
    if length < min_length:
        result.add_error(field_path, f"Mínimo de {min_length} caracteres")
    if max_length is not None:
        if length > max_length:
            result.add_error(field_path, f"Máximo de {max_length} caracteres")
        elif length > max_length * 0.9:
            result.add_warning(field_path, f"Próximo do limite de {max_length} caracteres")
    return result


def validate_numeric_range(
    value: Any,
    field_path: str,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> ValidationResult:
    result = ValidationResult()
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        result.add_error(field_path, "Deve ser um número")
        return result
    if min_value is not None and value < min_value:
        result.add_error(field_path, f"Deve ser no mínimo {min_value}")
    if max_value is not None and value > max_value:
        result.add_error(field_path, f"Deve ser no máximo {max_value}")
    return result


def validate_json_file(path: Path, description: str = "JSON file") -> Dict[str, Any]:
    """Validate and load a JSON file."""
    if not path.exists():
        raise ValidationError(f"{description} does not exist: {path}")
    if not path.is_file():
        raise ValidationError(f"{description} is not a file: {path}")

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(
            f"Invalid JSON in {description}",
            details={"path": str(path), "error": str(e), "line": e.lineno},
        )
    except OSError as e:
        raise ValidationError(f"{description} cannot be read: {e}")
