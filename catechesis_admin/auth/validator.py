"""
Session Validator — Throttled structural checks of a session record.

Every authenticated request asks whether its session is still sound.
The dashboard polls several endpoints at once, so the checks are
cached and rate limited per session, and guarded by a circuit breaker
so a bug in the checks cannot take the whole panel down with it.

Checks run in this order:

1. circuit breaker allows the call
2. cached result younger than ``CACHE_TTL`` is returned as-is
3. within ``MIN_INTERVAL`` of the last full check, the last result is reused
4. at most ``MAX_PER_MINUTE`` full checks per rolling minute
5. structure: required fields, field types, timing sanity
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from ..logging_config import LogThrottler
from ..reliability.circuit_breaker import CircuitBreaker, CircuitConfig

logger = logging.getLogger(__name__)
throttled = LogThrottler(logger)

REQUIRED_FIELDS: Dict[str, Tuple[type, ...]] = {
    "authenticated": (bool,),
    "login_time": (int, float),
    "last_activity": (int, float),
    "session_id": (str,),
}


@dataclass
class SessionValidation:
    """Outcome of one validation."""

    valid: bool
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "reason": self.reason, "details": self.details}


class SessionValidator:
    CACHE_TTL = 0.5
    MIN_INTERVAL = 1.0
    MAX_PER_MINUTE = 60
    CLOCK_SKEW = 60.0

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._clock = clock
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "session_validator",
            CircuitConfig(failure_threshold=5, reset_timeout_seconds=30),
            clock=clock,
        )
        self._lock = Lock()
        self._cache: Dict[str, Tuple[float, SessionValidation]] = {}
        self._last_run: Dict[str, float] = {}
        self._window: Deque[float] = deque()
        self._counts = {"total": 0, "valid": 0, "invalid": 0, "cached": 0, "throttled": 0}

    def is_validation_allowed(self) -> bool:
        return self.circuit_breaker.allow_request()

    def validate(self, session: Optional[Dict[str, Any]]) -> SessionValidation:
        if not self.is_validation_allowed():
            throttled.warning("circuit", "Session validation circuit is open")
            return SessionValidation(
                False,
                "circuit_breaker_open",
                {"retry_in_seconds": round(self.circuit_breaker.time_until_retry(), 1)},
            )

        if not session:
            return SessionValidation(False, "no_session_data")
        if not isinstance(session, dict):
            return SessionValidation(False, "invalid_session_format")

        key = str(session.get("session_id", ""))
        now = self._clock()

        with self._lock:
            cached = self._cache.get(key)
            if cached and now - cached[0] < self.CACHE_TTL:
                self._counts["cached"] += 1
                return cached[1]

            last = self._last_run.get(key)
            if last is not None and now - last < self.MIN_INTERVAL:
                self._counts["throttled"] += 1
                if cached:
                    return cached[1]
                return SessionValidation(False, "rate_limited")

            while self._window and now - self._window[0] >= 60:
                self._window.popleft()
            if len(self._window) >= self.MAX_PER_MINUTE:
                self._counts["throttled"] += 1
                throttled.warning("rate", "Session validation rate limit exceeded")
                return SessionValidation(False, "rate_limit_exceeded")

            self._window.append(now)
            self._last_run[key] = now

        try:
            result = self._check(session, now)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(f"Session validation failed: {e}")
            result = SessionValidation(False, "validation_error", {"error": str(e)})
        else:
            self.circuit_breaker.record_success()

        with self._lock:
            self._cache[key] = (now, result)
            self._counts["total"] += 1
            self._counts["valid" if result.valid else "invalid"] += 1
        return result

    def _check(self, session: Dict[str, Any], now: float) -> SessionValidation:
        for name, types in REQUIRED_FIELDS.items():
            if name not in session:
                return SessionValidation(False, "missing_required_field", {"field": name})
            value = session[name]
            # bool is an int subclass; timestamps must not be booleans
            if not isinstance(value, types) or (bool not in types and isinstance(value, bool)):
                return SessionValidation(False, "invalid_field_type", {"field": name})

        login_time = session["login_time"]
        last_activity = session["last_activity"]
        if not (login_time <= last_activity <= now + self.CLOCK_SKEW):
            return SessionValidation(
                False,
                "invalid_timing",
                {"login_time": login_time, "last_activity": last_activity, "now": now},
            )

        if not session["authenticated"]:
            return SessionValidation(False, "not_authenticated")

        return SessionValidation(True, "valid_session")

    def forget(self, session_id: str) -> None:
        """Drop cached state for a session (logout, rotation)."""
        with self._lock:
            self._cache.pop(session_id, None)
            self._last_run.pop(session_id, None)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._counts,
                "cached_sessions": len(self._cache),
                "validations_last_minute": len(self._window),
                "circuit_breaker": self.circuit_breaker.get_stats(),
            }

    def reset(self) -> None:
        with self._lock:
            self._cache.clear()
            self._last_run.clear()
            self._window.clear()
            for k in self._counts:
                self._counts[k] = 0

    def reset_circuit_breaker(self) -> None:
        self.circuit_breaker.reset()
        logger.info("Session validation circuit reset")
