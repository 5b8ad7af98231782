"""
Configuration Validator — Check the admin server's environment.

Reports, per area, which environment variables are present or missing
and how to fix the gaps. Well-formedness of the GitHub token and
repository slug is checked too, since a typo there only shows up later
as a confusing 401/404.

## Usage

    from catechesis_admin.config.validator import ConfigValidator

    validator = ConfigValidator()
    for area, result in validator.validate_all().items():
        if not result.configured:
            print(f"{area}: Missing {result.missing}")
            print(f"  → {result.guidance}")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from ..validation import github_token_problems, validate_repository, validate_url

logger = logging.getLogger(__name__)


@dataclass
class ConfigStatus:
    """Status of a configuration check."""

    area: str
    configured: bool
    missing: List[str] = field(default_factory=list)
    present: List[str] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)
    guidance: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "area": self.area,
            "configured": self.configured,
            "missing": self.missing,
            "present": self.present,
            "problems": self.problems,
            "guidance": self.guidance,
        }


CONFIG_REQUIREMENTS = {
    "admin": {
        "required": ["ADMIN_PASSWORD_HASH"],
        "optional": ["ADMIN_USERNAME", "SECRET_KEY", "SESSION_TIMEOUT_MINUTES"],
        "guidance": "Generate a hash with `catechesis-admin hash-password` and put it in .env",
    },
    "github": {
        "required": ["GITHUB_TOKEN", "GITHUB_REPOSITORY"],
        "optional": ["GITHUB_BRANCH"],
        "guidance": "Create a token with `repo` scope at https://github.com/settings/tokens",
    },
    "site": {
        "required": [],
        "optional": ["SITE_URL"],
        "guidance": "Set SITE_URL to the GitHub Pages address to enable deployment checks",
    },
}


class ConfigValidator:
    """
    Validate the admin server's environment.

    ``environ`` defaults to ``os.environ``; the admin routes pass the
    freshly parsed ``.env`` instead.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.requirements = CONFIG_REQUIREMENTS

    def validate_area(self, area: str) -> ConfigStatus:
        if area not in self.requirements:
            return ConfigStatus(
                area=area,
                configured=False,
                guidance=f"Unknown configuration area: {area}",
            )

        reqs = self.requirements[area]
        missing = [v for v in reqs["required"] if not self.environ.get(v)]
        present = [
            v for v in reqs["required"] + reqs["optional"] if self.environ.get(v)
        ]
        problems = self._check_values(area)

        return ConfigStatus(
            area=area,
            configured=not missing and not problems,
            missing=missing,
            present=present,
            problems=problems,
            guidance=reqs["guidance"] if missing or problems else None,
        )

    def _check_values(self, area: str) -> List[str]:
        problems: List[str] = []
        if area == "github":
            token = self.environ.get("GITHUB_TOKEN")
            if token:
                problems.extend(github_token_problems(token))
            repo = self.environ.get("GITHUB_REPOSITORY")
            if repo and not validate_repository(repo):
                problems.append("GITHUB_REPOSITORY must look like owner/repo")
        elif area == "admin":
            pw_hash = self.environ.get("ADMIN_PASSWORD_HASH")
            if pw_hash and not pw_hash.startswith("pbkdf2_sha256$"):
                problems.append("ADMIN_PASSWORD_HASH is not a pbkdf2_sha256 hash")
        elif area == "site":
            url = self.environ.get("SITE_URL")
            if url and not validate_url(url):
                problems.append("SITE_URL is not a valid http(s) URL")
        return problems

    def validate_all(self) -> Dict[str, ConfigStatus]:
        return {area: self.validate_area(area) for area in self.requirements}

    def log_status(self) -> None:
        """Log configuration status for all areas."""
        for name, status in self.validate_all().items():
            if status.configured:
                logger.info(f"✓ {name}: configured")
            else:
                details = status.missing + status.problems
                logger.warning(f"✗ {name}: not configured ({'; '.join(details)})")

    def get_setup_guide(self) -> str:
        """Generate a setup guide for missing configuration."""
        lines = [
            "# Configuration Setup Guide",
            "",
        ]
        for name, status in self.validate_all().items():
            if status.configured:
                continue
            lines.append(f"## {name}")
            lines.append("")
            for var in status.missing:
                lines.append(f"- missing `{var}`")
            for problem in status.problems:
                lines.append(f"- {problem}")
            lines.append("")
            if status.guidance:
                lines.append(f"**Setup:** {status.guidance}")
                lines.append("")
        return "\n".join(lines)


def check_config_on_startup() -> None:
    """Run configuration check at startup."""
    ConfigValidator().log_status()
