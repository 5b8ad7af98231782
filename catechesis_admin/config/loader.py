"""
Config Loader — Admin server settings from a master key or individual env vars.

Supports two modes:
1. Master JSON key: Single CATECHESIS_ADMIN_CONFIG env var
2. Individual keys: Separate env vars for each setting (fallback)

## Usage

    # Option 1: Master config
    export CATECHESIS_ADMIN_CONFIG='{"github_token": "ghp_xxx", "github_repository": "paroquia/catequese"}'

    # Option 2: Individual keys (usually from .env)
    export GITHUB_TOKEN="ghp_xxx"
    export GITHUB_REPOSITORY="paroquia/catequese"

The loader tries master config first, then fills the gaps from
individual keys. Values that are missing everywhere keep the defaults.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MASTER_ENV_VAR = "CATECHESIS_ADMIN_CONFIG"

# field name → environment variable
ENV_VARS = {
    "admin_username": "ADMIN_USERNAME",
    "admin_password_hash": "ADMIN_PASSWORD_HASH",
    "secret_key": "SECRET_KEY",
    "github_token": "GITHUB_TOKEN",
    "github_repository": "GITHUB_REPOSITORY",
    "github_branch": "GITHUB_BRANCH",
    "site_url": "SITE_URL",
    "session_timeout_minutes": "SESSION_TIMEOUT_MINUTES",
    "max_login_attempts": "MAX_LOGIN_ATTEMPTS",
    "lockout_minutes": "LOCKOUT_MINUTES",
}


@dataclass
class AdminConfig:
    """Everything the admin server needs from its environment."""

    # Login
    admin_username: str = "admin"
    admin_password_hash: Optional[str] = None
    secret_key: Optional[str] = None

    # GitHub
    github_token: Optional[str] = None
    github_repository: Optional[str] = None
    github_branch: str = "main"

    # Published site (GitHub Pages URL), used for deployment checks
    site_url: Optional[str] = None

    # Session policy
    session_timeout_minutes: int = 30
    max_login_attempts: int = 5
    lockout_minutes: int = 15

    def has_github(self) -> bool:
        return bool(self.github_token and self.github_repository)

    def has_login(self) -> bool:
        return bool(self.admin_username and self.admin_password_hash)

    def to_env_dict(self) -> Dict[str, str]:
        """Convert to environment variable format."""
        result = {}
        for name, env_name in ENV_VARS.items():
            value = getattr(self, name)
            if value not in (None, ""):
                result[env_name] = str(value)
        return result

    def to_public_dict(self) -> Dict[str, Any]:
        """Non-secret view for status pages."""
        return {
            "admin_username": self.admin_username,
            "has_password": bool(self.admin_password_hash),
            "github_repository": self.github_repository,
            "github_branch": self.github_branch,
            "has_github_token": bool(self.github_token),
            "site_url": self.site_url,
            "session_timeout_minutes": self.session_timeout_minutes,
            "max_login_attempts": self.max_login_attempts,
            "lockout_minutes": self.lockout_minutes,
        }


def _coerce(name: str, value: Any) -> Any:
    """Convert env strings to the dataclass field type."""
    defaults = AdminConfig()
    if isinstance(getattr(defaults, name), int) and not isinstance(value, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-integer {ENV_VARS[name]}={value!r}")
            return getattr(defaults, name)
    return value


def load_config(environ: Optional[Dict[str, str]] = None) -> AdminConfig:
    """
    Load configuration from master key or individual env vars.

    Priority:
    1. CATECHESIS_ADMIN_CONFIG (master JSON, lower- or upper-case keys)
    2. Individual environment variables
    3. Dataclass defaults
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    master_config = env.get(MASTER_ENV_VAR)
    if master_config:
        try:
            data = json.loads(master_config)
            for name, env_name in ENV_VARS.items():
                value = data.get(name, data.get(env_name))
                if value not in (None, ""):
                    values[name] = value
            logger.info(f"Loaded configuration from {MASTER_ENV_VAR}")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid {MASTER_ENV_VAR} JSON: {e}")
        except AttributeError:
            logger.error(f"{MASTER_ENV_VAR} must be a JSON object")

    for name, env_name in ENV_VARS.items():
        if name not in values and env.get(env_name):
            values[name] = env[env_name]

    known = {f.name for f in fields(AdminConfig)}
    return AdminConfig(**{k: _coerce(k, v) for k, v in values.items() if k in known})


def generate_master_config_template() -> str:
    """Generate a template for CATECHESIS_ADMIN_CONFIG."""
    template = {
        "admin_username": "admin",
        "admin_password_hash": "pbkdf2_sha256$...  (catechesis-admin hash-password)",
        "secret_key": "change-me",
        "github_token": "ghp_xxxxx",
        "github_repository": "paroquia/catequese",
        "github_branch": "main",
        "site_url": "https://paroquia.github.io/catequese",
    }
    return json.dumps(template, indent=2)


# Global config instance (loaded on first access)
_config: Optional[AdminConfig] = None


def get_config() -> AdminConfig:
    """Get the global configuration (loads on first access)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> AdminConfig:
    """Drop the cached configuration and read the environment again."""
    global _config
    _config = None
    return get_config()
