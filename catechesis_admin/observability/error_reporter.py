"""
Error Reporter — Aggregate recent errors, spot bursts and trends.

Errors reach the reporter from the Flask error handlers and from the
panel's own ``POST /api/errors`` reports. Each one is categorised by
regex, kept in a bounded window, and checked against the alert
thresholds:

- more than ``ERRORS_PER_MINUTE`` errors per minute (5-minute average)
- ``CRITICAL_PER_HOUR`` critical errors within the hour
- the same message ``REPEATED_ERROR_THRESHOLD`` times
- an error rate rising quickly over the last hour
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Deque, Dict, List, Optional

from ..logging_config import LogThrottler

logger = logging.getLogger(__name__)

ERRORS_PER_MINUTE = 5
CRITICAL_PER_HOUR = 3
MAX_STORED_ERRORS = 50
REPEATED_ERROR_THRESHOLD = 10
REPEATED_MIN_COUNT = 3

LOW, MEDIUM, HIGH, CRITICAL = 1, 2, 3, 4
SEVERITY_NAMES = {LOW: "low", MEDIUM: "medium", HIGH: "high", CRITICAL: "critical"}

CATEGORY_PATTERNS = [
    (re.compile(r"github|api|rate.?limit|token|reposit", re.I), "github", HIGH),
    (re.compile(r"sess(ion|ão)|auth|login|senha|password|credencia", re.I), "authentication", HIGH),
    (re.compile(r"network|fetch|connection|conex|timeout|offline", re.I), "network", MEDIUM),
    (re.compile(r"valida|inv[aá]lid|obrigat|required|format", re.I), "validation", LOW),
    (re.compile(r"arquivo|file|upload|planilha|excel|xlsx", re.I), "file", MEDIUM),
    (re.compile(r"config", re.I), "configuration", MEDIUM),
]
CRITICAL_RE = re.compile(r"critical|cr[ií]tico|fatal|system", re.I)

CATEGORY_ACTIONS = {
    "authentication": ("reset_auth", "Múltiplos erros de autenticação: considere reiniciar as sessões"),
    "network": ("check_connectivity", "Verificar conectividade de rede e status da API do GitHub"),
    "github": ("check_token", "Verificar token, permissões e limite de requisições do GitHub"),
    "validation": ("review_input", "Revisar os dados enviados pelo painel"),
    "file": ("check_files", "Verificar os arquivos enviados (tipo, tamanho, conteúdo)"),
    "configuration": ("review_config", "Revisar as configurações ou restaurar um backup"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ErrorRecord:
    message: str
    error_type: str
    category: str
    severity: int
    confidence: float
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.error_type}:{self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "type": self.error_type,
            "category": self.category,
            "severity": self.severity,
            "severity_name": SEVERITY_NAMES[self.severity],
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "details": self.details,
        }


def categorize(message: str, error_type: str = "", details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Category, severity (1-4) and confidence for an error message."""
    details = details or {}
    text = f"{error_type} {message}"
    critical = bool(CRITICAL_RE.search(text))

    for pattern, category, severity in CATEGORY_PATTERNS:
        if pattern.search(text):
            return {"category": category, "severity": CRITICAL if critical else severity, "confidence": 0.8}

    operation = str(details.get("operation", ""))
    if "auth" in operation or "login" in operation:
        return {"category": "authentication", "severity": HIGH, "confidence": 0.7}
    if "github" in operation or "api" in operation:
        return {"category": "github", "severity": MEDIUM, "confidence": 0.7}

    return {"category": "unknown", "severity": CRITICAL if critical else LOW, "confidence": 0.3}


def calculate_trend(points: List[int]) -> str:
    """Compare the average of the last three buckets with the first three."""
    if len(points) < 2:
        return "stable"
    earlier = points[:3]
    recent = points[-3:]
    earlier_avg = sum(earlier) / len(earlier)
    recent_avg = sum(recent) / len(recent)

    if earlier_avg == 0:
        return "increasing_rapidly" if recent_avg > 0 else "stable"
    change = (recent_avg - earlier_avg) / earlier_avg * 100
    if change > 50:
        return "increasing_rapidly"
    if change > 20:
        return "increasing"
    if change < -50:
        return "decreasing_rapidly"
    if change < -20:
        return "decreasing"
    return "stable"


class ErrorReporter:
    """
    Usage:
        reporter = ErrorReporter()
        alerts = reporter.report_error("GitHub API timeout", "NetworkTimeoutError")
        report = reporter.generate_report()
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._errors: Deque[ErrorRecord] = deque(maxlen=MAX_STORED_ERRORS)
        self._alerts: Deque[Dict[str, Any]] = deque(maxlen=20)
        self._lock = Lock()
        self._throttled = LogThrottler(logger, interval=60.0)
        self.total_reported = 0

    def report_error(
        self,
        message: str,
        error_type: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Record an error; returns the alerts it triggered (usually none)."""
        info = categorize(message, error_type, details)
        record = ErrorRecord(
            message=message,
            error_type=error_type,
            timestamp=self._clock(),
            details=details or {},
            **info,
        )
        with self._lock:
            self._errors.append(record)
            self.total_reported += 1

        alerts = self._check_thresholds(self.analyze())
        for alert in alerts:
            self._throttled.error(f"alert_{alert['type']}", f"ALERT: {alert['message']}")
        with self._lock:
            self._alerts.extend(alerts)
        return alerts

    def _records(self, since: Optional[datetime] = None) -> List[ErrorRecord]:
        with self._lock:
            records = list(self._errors)
        if since is None:
            return records
        return [r for r in records if r.timestamp > since]

    # ── Analysis ─────────────────────────────────────────────────

    def analyze(self) -> Dict[str, Any]:
        now = self._clock()
        recent = self._records(now - timedelta(minutes=5))
        hourly = self._records(now - timedelta(hours=1))

        return {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "recent_error_count": len(recent),
            "hourly_error_count": len(hourly),
            "error_rate": round(len(recent) / 5, 2),
            "categories": self._group_by_category(recent),
            "severity": self._severity(hourly),
            "repeated_errors": self._repeated(self._records()),
            "trends": self._trends(hourly, now),
        }

    @staticmethod
    def _group_by_category(records: List[ErrorRecord]) -> Dict[str, Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for r in records:
            group = groups.setdefault(r.category, {"count": 0, "severity_sum": 0})
            group["count"] += 1
            group["severity_sum"] += r.severity
        return {
            name: {"count": g["count"], "avg_severity": round(g["severity_sum"] / g["count"], 2)}
            for name, g in groups.items()
        }

    @staticmethod
    def _severity(records: List[ErrorRecord]) -> Dict[str, Any]:
        counts = {level: 0 for level in SEVERITY_NAMES}
        for r in records:
            counts[r.severity] += 1
        total = len(records)
        return {
            "distribution": {
                SEVERITY_NAMES[level]: {
                    "count": n,
                    "percentage": round(n / total * 100, 1) if total else 0,
                }
                for level, n in counts.items()
            },
            "critical_count": counts[CRITICAL],
            "high_count": counts[HIGH],
            "avg_severity": round(sum(l * n for l, n in counts.items()) / total, 2) if total else 0,
        }

    @staticmethod
    def _repeated(records: List[ErrorRecord]) -> List[Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for r in records:
            ts = r.timestamp.isoformat().replace("+00:00", "Z")
            group = groups.setdefault(r.key, {
                "message": r.message,
                "type": r.error_type,
                "count": 0,
                "first_occurrence": ts,
            })
            group["count"] += 1
            group["last_occurrence"] = ts
        repeated = [g for g in groups.values() if g["count"] >= REPEATED_MIN_COUNT]
        return sorted(repeated, key=lambda g: g["count"], reverse=True)

    @staticmethod
    def _trends(records: List[ErrorRecord], now: datetime) -> Dict[str, Any]:
        if len(records) < 2:
            return {"trend": "insufficient_data"}

        # Six 10-minute buckets, oldest first
        counts = [0] * 6
        for r in records:
            age = now - r.timestamp
            bucket = int(age.total_seconds() // 600)
            if 0 <= bucket < 6:
                counts[5 - bucket] += 1

        return {
            "trend": calculate_trend(counts),
            "intervals": counts,
            "current_rate": counts[-1],
            "peak_rate": max(counts),
            "avg_rate": round(sum(counts) / len(counts), 2),
        }

    def _check_thresholds(self, analysis: Dict[str, Any]) -> List[Dict[str, Any]]:
        alerts = []

        if analysis["error_rate"] > ERRORS_PER_MINUTE:
            alerts.append({
                "type": "high_error_rate",
                "severity": HIGH,
                "message": f"Taxa de erro alta: {analysis['error_rate']:.2f} erros/min",
                "threshold": ERRORS_PER_MINUTE,
                "actual": analysis["error_rate"],
            })

        critical = analysis["severity"]["critical_count"]
        if critical >= CRITICAL_PER_HOUR:
            alerts.append({
                "type": "critical_errors",
                "severity": CRITICAL,
                "message": f"{critical} erro(s) crítico(s) na última hora",
                "threshold": CRITICAL_PER_HOUR,
                "actual": critical,
            })

        heavy = [g for g in analysis["repeated_errors"] if g["count"] >= REPEATED_ERROR_THRESHOLD]
        if heavy:
            alerts.append({
                "type": "repeated_errors",
                "severity": MEDIUM,
                "message": f"{len(heavy)} padrão(ões) de erro repetido detectado(s)",
                "details": [{"message": g["message"], "count": g["count"]} for g in heavy],
            })

        if analysis["trends"]["trend"] == "increasing_rapidly":
            alerts.append({
                "type": "error_trend",
                "severity": HIGH,
                "message": "Taxa de erro aumentando rapidamente",
                "current_rate": analysis["trends"]["current_rate"],
            })

        return alerts

    # ── Reporting ────────────────────────────────────────────────

    def recommendations(self, analysis: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        analysis = analysis or self.analyze()
        result = []

        for alert in self._check_thresholds(analysis):
            if alert["type"] == "critical_errors":
                result.append({"priority": "critical", "action": "immediate_investigation",
                               "message": "Investigação imediata necessária para erros críticos"})
            elif alert["type"] == "high_error_rate":
                result.append({"priority": "high", "action": "pause_operations",
                               "message": "Interrompa envios ao GitHub até a causa ser identificada"})
            elif alert["type"] == "repeated_errors":
                result.append({"priority": "medium", "action": "clear_cache",
                               "message": "Limpar o cache de requisições pode resolver erros repetidos"})
            elif alert["type"] == "error_trend":
                result.append({"priority": "high", "action": "monitor_closely",
                               "message": "Monitoramento próximo necessário devido ao aumento de erros"})

        categories = analysis["categories"]
        if categories:
            dominant = max(categories, key=lambda c: categories[c]["count"])
            if dominant in CATEGORY_ACTIONS:
                action, message = CATEGORY_ACTIONS[dominant]
                priority = "high" if categories[dominant]["count"] > ERRORS_PER_MINUTE else "medium"
                result.append({"priority": priority, "action": action, "message": message})

        return result

    def generate_report(self) -> Dict[str, Any]:
        analysis = self.analyze()
        categories = analysis["categories"]
        top = max(categories, key=lambda c: categories[c]["count"]) if categories else None
        trend = analysis["trends"]["trend"]

        if analysis["severity"]["critical_count"]:
            status = "critical"
        elif analysis["error_rate"] > ERRORS_PER_MINUTE or trend in ("increasing", "increasing_rapidly"):
            status = "warning"
        else:
            status = "normal"

        with self._lock:
            alerts = list(self._alerts)

        return {
            "timestamp": analysis["timestamp"],
            "summary": {
                "total_reported": self.total_reported,
                "stored": len(self._records()),
                "recent_errors": analysis["recent_error_count"],
                "error_rate": analysis["error_rate"],
                "critical_errors": analysis["severity"]["critical_count"],
                "top_category": top,
                "trend": trend,
                "status": status,
            },
            "analysis": analysis,
            "alerts": alerts,
            "recommendations": self.recommendations(analysis),
            "recent": [r.to_dict() for r in self._records()[-10:]][::-1],
        }

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
            self._alerts.clear()
            self.total_reported = 0
