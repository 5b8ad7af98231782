"""
Operation Log — What the administrator did, newest first.

Keeps the last ``MAX_ENTRIES`` operations (config saves, uploads,
commits, logins) in ``state/operations.json`` so the panel can show a
history and export it.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import secrets
from datetime import datetime, time as dtime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from ..errors import NotFoundError, ValidationError
from .state_file import load_json, path_lock, save_json

logger = logging.getLogger(__name__)

STATUSES = ("success", "error", "warning", "info")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse(ts: str) -> datetime:
    dt = date_parser.isoparse(ts)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class OperationLog:
    """
    Bounded JSON operation log.

    Usage:
        oplog = OperationLog(root / "state" / "operations.json")
        oplog.log_success("config", "Configurações salvas", duration=0.8)
    """

    MAX_ENTRIES = 50

    def __init__(self, path: Path, user: str = "admin"):
        self.path = path
        self.user = user

    def _load(self) -> List[Dict[str, Any]]:
        data = load_json(self.path, default=[])
        return data if isinstance(data, list) else []

    def _save(self, entries: List[Dict[str, Any]]) -> None:
        save_json(entries[: self.MAX_ENTRIES], self.path)

    def add(
        self,
        op_type: str,
        status: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        duration: Optional[float] = None,
        files: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Record an operation.

        Args:
            op_type: Free-form category (config, upload, commit, auth, ...)
            status: One of success, error, warning, info
            message: Human-readable summary
            details: Extra structured data
            duration: Seconds the operation took
            files: Repository paths touched

        Returns:
            The stored entry
        """
        if status not in STATUSES:
            raise ValidationError(f"Status inválido: {status}", field="status")

        now = _now()
        entry = {
            "id": f"log_{int(now.timestamp() * 1000)}_{secrets.token_hex(4)}",
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "type": op_type,
            "status": status,
            "message": message,
            "details": details or {},
            "duration": round(duration, 3) if duration is not None else None,
            "files": files or [],
            "user": self.user,
        }

        with path_lock(self.path):
            entries = self._load()
            entries.insert(0, entry)
            self._save(entries)
        logger.debug(f"Operation logged: [{status}] {op_type}: {message}")
        return entry

    def log_success(self, op_type: str, message: str, **kw: Any) -> Dict[str, Any]:
        return self.add(op_type, "success", message, **kw)

    def log_error(self, op_type: str, message: str, **kw: Any) -> Dict[str, Any]:
        return self.add(op_type, "error", message, **kw)

    def log_warning(self, op_type: str, message: str, **kw: Any) -> Dict[str, Any]:
        return self.add(op_type, "warning", message, **kw)

    def log_info(self, op_type: str, message: str, **kw: Any) -> Dict[str, Any]:
        return self.add(op_type, "info", message, **kw)

    def get_logs(
        self,
        op_type: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Filtered entries, newest first.

        ``date_from``/``date_to`` accept dates or datetimes; a plain
        ``date_to`` date includes the whole day.
        """
        entries = self._load()

        start = _parse(date_from) if date_from else None
        end = None
        if date_to:
            end = _parse(date_to)
            if len(date_to) <= 10:
                end = datetime.combine(end.date(), dtime.max, tzinfo=end.tzinfo)

        needle = search.lower() if search else None

        result = []
        for entry in entries:
            if op_type and entry.get("type") != op_type:
                continue
            if status and entry.get("status") != status:
                continue
            if start or end:
                ts = _parse(entry["timestamp"])
                if start and ts < start:
                    continue
                if end and ts > end:
                    continue
            if needle:
                haystack = f"{entry.get('message', '')} {json.dumps(entry.get('details', {}), ensure_ascii=False)}"
                if needle not in haystack.lower():
                    continue
            result.append(entry)

        result.sort(key=lambda e: e["timestamp"], reverse=True)
        return result[:limit] if limit else result

    def get_statistics(self) -> Dict[str, Any]:
        entries = self._load()
        cutoff = _now() - timedelta(hours=24)

        by_status = {s: 0 for s in STATUSES}
        by_type: Dict[str, int] = {}
        durations = []
        recent = 0
        for entry in entries:
            by_status[entry.get("status", "info")] = by_status.get(entry.get("status", "info"), 0) + 1
            by_type[entry.get("type", "unknown")] = by_type.get(entry.get("type", "unknown"), 0) + 1
            if entry.get("duration") is not None:
                durations.append(entry["duration"])
            if _parse(entry["timestamp"]) >= cutoff:
                recent += 1

        return {
            "total": len(entries),
            "by_status": by_status,
            "by_type": by_type,
            "last_24h": recent,
            "average_duration": round(sum(durations) / len(durations), 3) if durations else None,
            "success_rate": round(by_status["success"] / len(entries) * 100, 1) if entries else None,
        }

    def delete(self, log_id: str) -> None:
        with path_lock(self.path):
            entries = self._load()
            kept = [e for e in entries if e.get("id") != log_id]
            if len(kept) == len(entries):
                raise NotFoundError(f"Registro não encontrado: {log_id}")
            self._save(kept)

    def clear(self) -> int:
        with path_lock(self.path):
            count = len(self._load())
            self._save([])
        logger.info(f"Operation log cleared ({count} entries)")
        return count

    def export_json(self, **filters: Any) -> str:
        return json.dumps(self.get_logs(**filters), indent=2, ensure_ascii=False)

    def export_csv(self, **filters: Any) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["id", "timestamp", "type", "status", "message", "duration", "files", "user"])
        for e in self.get_logs(**filters):
            writer.writerow([
                e["id"],
                e["timestamp"],
                e["type"],
                e["status"],
                e["message"],
                "" if e.get("duration") is None else e["duration"],
                ";".join(e.get("files") or []),
                e.get("user", ""),
            ])
        return buffer.getvalue()
