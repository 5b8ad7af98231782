"""
Health Check — Component status of the admin installation.

Checks the local settings copy, the state directory, the admin
credentials, GitHub reachability, the pending commit backlog and the
circuit breakers. The overall status is the worst component status.

## Usage

    from catechesis_admin.observability.health import HealthChecker

    checker = HealthChecker(project_root, get_config(), client)
    status = checker.check()

    if status.healthy:
        print("All systems operational")
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..config.loader import AdminConfig
from ..config.settings_manager import validate_settings
from ..persistence.state_file import load_json
from ..reliability.circuit_breaker import get_registry
from ..reliability.retry_queue import RetryQueue

if TYPE_CHECKING:
    from ..github.client import GitHubClient

logger = logging.getLogger(__name__)

QUEUE_DEGRADED_AT = 1
QUEUE_UNHEALTHY_AT = 10


class HealthStatus(str, Enum):
    """Health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_RANK = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Overall system health status."""

    status: HealthStatus
    timestamp: str
    uptime_seconds: float
    components: List[ComponentHealth]

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "healthy": self.healthy,
            "components": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                    "details": c.details,
                }
                for c in self.components
            ],
        }


def worst(statuses: List[HealthStatus]) -> HealthStatus:
    return max(statuses, key=lambda s: _RANK[s], default=HealthStatus.HEALTHY)


class HealthChecker:
    """
    System health checker.

    ``client`` is optional; without one the GitHub check reports a
    degraded status instead of failing.
    """

    def __init__(
        self,
        project_root: Path,
        admin_config: AdminConfig,
        client: Optional["GitHubClient"] = None,
    ):
        self.project_root = project_root
        self.state_dir = project_root / "state"
        self.admin_config = admin_config
        self.client = client
        self._start_time = time.time()

    def check(self) -> SystemHealth:
        """Run all health checks and return status."""
        components = [
            self._check_settings_file(),
            self._check_state_dir(),
            self._check_credentials(),
            self._check_github(),
            self._check_commit_queue(),
            self._check_circuit_breakers(),
        ]
        overall = worst([c.status for c in components])
        if overall != HealthStatus.HEALTHY:
            logger.debug(f"Health check: {overall.value}")

        return SystemHealth(
            status=overall,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            uptime_seconds=time.time() - self._start_time,
            components=components,
        )

    def _check_settings_file(self) -> ComponentHealth:
        path = self.state_dir / "settings.json"
        if not path.exists():
            return ComponentHealth(
                name="settings",
                status=HealthStatus.DEGRADED,
                message="No local settings copy yet (defaults in use)",
            )
        data = load_json(path, default=None)
        if not isinstance(data, dict):
            return ComponentHealth(
                name="settings",
                status=HealthStatus.UNHEALTHY,
                message="Local settings file is unreadable",
            )
        result = validate_settings(data)
        if not result.is_valid:
            return ComponentHealth(
                name="settings",
                status=HealthStatus.UNHEALTHY,
                message=f"Settings invalid: {result.errors[0]}",
                details=result.to_dict(),
            )
        return ComponentHealth(
            name="settings",
            status=HealthStatus.HEALTHY,
            message="Settings valid",
            details={"warnings": result.warnings},
        )

    def _check_state_dir(self) -> ComponentHealth:
        directory = self.state_dir if self.state_dir.exists() else self.project_root
        if os.access(directory, os.W_OK):
            return ComponentHealth(
                name="state_dir",
                status=HealthStatus.HEALTHY,
                message=f"{directory} writable",
            )
        return ComponentHealth(
            name="state_dir",
            status=HealthStatus.UNHEALTHY,
            message=f"{directory} is not writable",
        )

    def _check_credentials(self) -> ComponentHealth:
        if self.admin_config.has_login():
            return ComponentHealth(
                name="admin_login",
                status=HealthStatus.HEALTHY,
                message=f"Login configured for {self.admin_config.admin_username}",
            )
        return ComponentHealth(
            name="admin_login",
            status=HealthStatus.UNHEALTHY,
            message="ADMIN_PASSWORD_HASH not set; nobody can log in",
        )

    def _check_github(self) -> ComponentHealth:
        if self.client is None:
            return ComponentHealth(
                name="github",
                status=HealthStatus.DEGRADED,
                message="GitHub not configured; check skipped",
            )
        start = time.time()
        result = self.client.test_connection()
        latency = round((time.time() - start) * 1000, 1)
        if not result["success"]:
            return ComponentHealth(
                name="github",
                status=HealthStatus.UNHEALTHY,
                message=result["message"],
                latency_ms=latency,
                details={"code": result.get("code")},
            )
        remaining = self.client.rate_limit.remaining
        status = HealthStatus.HEALTHY
        message = result["message"]
        if remaining is not None and remaining <= self.client.RATE_LIMIT_BUFFER:
            status = HealthStatus.DEGRADED
            message = f"{message} (rate limit almost exhausted: {remaining} left)"
        return ComponentHealth(
            name="github",
            status=status,
            message=message,
            latency_ms=latency,
            details={"rate_limit": self.client.rate_limit.to_dict()},
        )

    def _check_commit_queue(self) -> ComponentHealth:
        stats = RetryQueue(self.state_dir / "commit_queue.json").get_stats()
        total = stats["total_items"]
        if total >= QUEUE_UNHEALTHY_AT or stats["exhausted"]:
            status = HealthStatus.UNHEALTHY
        elif total >= QUEUE_DEGRADED_AT:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        return ComponentHealth(
            name="commit_queue",
            status=status,
            message=f"{total} commit(s) waiting for retry",
            details={k: v for k, v in stats.items() if k != "items"},
        )

    def _check_circuit_breakers(self) -> ComponentHealth:
        open_circuits = get_registry().get_open_circuits()
        if open_circuits:
            return ComponentHealth(
                name="circuit_breakers",
                status=HealthStatus.DEGRADED,
                message=f"Open circuits: {', '.join(open_circuits)}",
                details={"open": open_circuits},
            )
        return ComponentHealth(
            name="circuit_breakers",
            status=HealthStatus.HEALTHY,
            message="All circuits closed",
        )
