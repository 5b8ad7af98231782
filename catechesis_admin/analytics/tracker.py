"""
Visit Tracker — Page-visit counts for the public site.

The published pages post a small beacon to the admin server's collector
endpoint; each visit lands in ``state/analytics.json`` grouped by day:

    {"daily": {"2026-10-17": {"visitors": [...], "visits": 12,
                              "pages": {"/": 8, "/turmas": 4},
                              "sessions": [{...}, ...]}}}
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..persistence.state_file import load_json, path_lock, save_json

logger = logging.getLogger(__name__)

MAX_USER_AGENT = 100
MAX_SESSIONS_PER_DAY = 1000
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_BASE36[r])
    return "".join(reversed(digits))


def generate_visitor_id(seed: str, now_ms: Optional[int] = None) -> str:
    """``visitor_{hash16}_{ts36}`` from a browser fingerprint string."""
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"visitor_{digest}_{_base36(ts)}"


def _empty_day() -> Dict[str, Any]:
    return {"visitors": [], "visits": 0, "pages": {}, "sessions": []}


class VisitTracker:
    """JSON-backed visit store. Safe to share between request threads."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.path = path
        self._clock = clock
        self._lock = path_lock(path)

    def _load(self) -> Dict[str, Any]:
        data = load_json(self.path, default=None)
        if not isinstance(data, dict) or not isinstance(data.get("daily"), dict):
            return {"daily": {}}
        return data

    def record_visit(
        self,
        page: str,
        visitor_id: Optional[str] = None,
        user_agent: str = "",
        referrer: str = "",
    ) -> Dict[str, Any]:
        """
        Count one page view.

        A visitor is counted once per day no matter how many pages they
        open. Returns the stored session entry.
        """
        now = self._clock()
        day_key = now.date().isoformat()
        page = page or "/"
        if not visitor_id:
            visitor_id = generate_visitor_id(f"{user_agent}|{referrer}", int(now.timestamp() * 1000))

        session = {
            "visitor_id": visitor_id,
            "page": page,
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "user_agent": (user_agent or "")[:MAX_USER_AGENT],
            "referrer": referrer or "direct",
        }

        with self._lock:
            data = self._load()
            day = data["daily"].setdefault(day_key, _empty_day())
            if visitor_id not in day["visitors"]:
                day["visitors"].append(visitor_id)
            day["visits"] += 1
            day["pages"][page] = day["pages"].get(page, 0) + 1
            day["sessions"].append(session)
            if len(day["sessions"]) > MAX_SESSIONS_PER_DAY:
                day["sessions"] = day["sessions"][-MAX_SESSIONS_PER_DAY:]
            save_json(data, self.path)

        return session

    def update_time_spent(self, visitor_id: str, seconds: float) -> bool:
        """Set time on page for the visitor's latest session today."""
        day_key = self._clock().date().isoformat()
        with self._lock:
            data = self._load()
            day = data["daily"].get(day_key)
            if not day:
                return False
            for session in reversed(day["sessions"]):
                if session["visitor_id"] == visitor_id:
                    session["time_spent"] = round(max(0.0, seconds), 1)
                    save_json(data, self.path)
                    return True
        return False

    def get_daily_summary(self, day: Optional[date] = None) -> Dict[str, Any]:
        day = day or self._clock().date()
        stats = self._load()["daily"].get(day.isoformat(), _empty_day())
        spent = [s["time_spent"] for s in stats["sessions"] if "time_spent" in s]
        return {
            "date": day.isoformat(),
            "visits": stats["visits"],
            "unique_visitors": len(stats["visitors"]),
            "pages": dict(stats["pages"]),
            "average_time_spent": round(sum(spent) / len(spent), 1) if spent else None,
        }

    def get_summary(self, days: int = 7) -> Dict[str, Any]:
        """Totals, unique visitors and top pages over the last ``days`` days."""
        today = self._clock().date()
        daily = self._load()["daily"]

        series: List[Dict[str, Any]] = []
        pages: Counter = Counter()
        referrers: Counter = Counter()
        visitors = set()
        total = 0
        for offset in range(days - 1, -1, -1):
            key = (today - timedelta(days=offset)).isoformat()
            stats = daily.get(key, _empty_day())
            series.append({
                "date": key,
                "visits": stats["visits"],
                "unique_visitors": len(stats["visitors"]),
            })
            total += stats["visits"]
            visitors.update(stats["visitors"])
            pages.update(stats["pages"])
            referrers.update(s.get("referrer", "direct") for s in stats["sessions"])

        return {
            "days": days,
            "total_visits": total,
            "unique_visitors": len(visitors),
            "average_daily_visits": round(total / days, 1) if days else 0,
            "top_pages": [{"page": p, "visits": n} for p, n in pages.most_common(10)],
            "top_referrers": [{"referrer": r, "visits": n} for r, n in referrers.most_common(5)],
            "daily": series,
        }

    def cleanup(self, keep_days: int = 90) -> int:
        """Forget days older than ``keep_days``. Returns days removed."""
        cutoff = (self._clock().date() - timedelta(days=keep_days)).isoformat()
        with self._lock:
            data = self._load()
            old = [k for k in data["daily"] if k < cutoff]
            for k in old:
                del data["daily"][k]
            if old:
                save_json(data, self.path)
        if old:
            logger.info(f"Analytics cleanup removed {len(old)} days")
        return len(old)
