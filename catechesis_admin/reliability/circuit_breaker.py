"""
Circuit Breaker — Stop hammering a dependency that keeps failing.

Used in front of the GitHub API and the session validator. After
``failure_threshold`` failures inside the failure window the circuit
opens and calls are refused until ``reset_timeout_seconds`` pass; the
next call then runs as a probe (HALF_OPEN).

## States

- CLOSED: Normal operation, requests pass through
- OPEN: Dependency is failing, requests are rejected immediately
- HALF_OPEN: Probing whether the dependency recovered

## Usage

    from catechesis_admin.reliability.circuit_breaker import get_circuit_breaker

    breaker = get_circuit_breaker("github")

    if breaker.allow_request():
        try:
            response = client.get(url)
            breaker.record_success()
        except httpx.TransportError:
            breaker.record_failure()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, asdict
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


def _iso(ts: float) -> str:
    from datetime import datetime, timezone

    return datetime.fromtimestamp(ts, timezone.utc).isoformat().replace("+00:00", "Z")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Counters for a circuit breaker."""

    success_count: int = 0
    failure_count: int = 0
    rejected_count: int = 0

    last_success_at: Optional[str] = None
    last_failure_at: Optional[str] = None
    last_state_change_at: Optional[str] = None

    window_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CircuitConfig:
    """Configuration for a circuit breaker."""

    # Failures inside the window that trip the circuit
    failure_threshold: int = 5

    # Time window for counting failures (seconds)
    failure_window_seconds: float = 60

    # Time to wait before probing recovery (seconds)
    reset_timeout_seconds: float = 30

    # Probe successes needed to close the circuit
    success_threshold: int = 1


class CircuitBreaker:
    """
    Circuit breaker guarding one external dependency.

    ``clock`` returns seconds; tests pass a fake to move time forward.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.config = config or CircuitConfig()
        self._clock = clock
        self._lock = RLock()

        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._opened_at: Optional[float] = None
        self._window_start: Optional[float] = None
        self._half_open_successes = 0

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN → HALF_OPEN once the timeout passed."""
        with self._lock:
            if self._state == CircuitState.OPEN and self.time_until_retry() <= 0:
                self._transition_to(CircuitState.HALF_OPEN)
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def time_until_retry(self) -> float:
        """Seconds until an open circuit lets a probe through."""
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.config.reset_timeout_seconds - elapsed)

    def allow_request(self) -> bool:
        """Return True if a call may proceed."""
        with self._lock:
            if self.state != CircuitState.OPEN:
                return True
            self._stats.rejected_count += 1
            logger.debug(f"Circuit {self.name} is OPEN, rejecting request")
            return False

    def record_success(self) -> None:
        with self._lock:
            self._stats.success_count += 1
            self._stats.last_success_at = _iso(self._clock())

            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
                    logger.info(f"Circuit {self.name} recovered")

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._stats.failure_count += 1
            self._stats.last_failure_at = _iso(now)

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                logger.warning(f"Circuit {self.name} failed recovery probe, back to OPEN")
                return

            if self._state == CircuitState.CLOSED:
                if (
                    self._window_start is None
                    or now - self._window_start > self.config.failure_window_seconds
                ):
                    self._window_start = now
                    self._stats.window_failures = 1
                else:
                    self._stats.window_failures += 1

                if self._stats.window_failures >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)
                    logger.warning(
                        f"Circuit {self.name} tripped: {self._stats.window_failures} failures "
                        f"in {self.config.failure_window_seconds:.0f}s"
                    )

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.last_state_change_at = _iso(self._clock())
        self._half_open_successes = 0

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._window_start = None
            self._stats.window_failures = 0

        logger.info(f"Circuit {self.name}: {old_state.value} → {new_state.value}")

    def force_open(self) -> None:
        with self._lock:
            self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Reset circuit to its initial CLOSED state and clear counters."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._stats = CircuitStats()
            self._opened_at = None
            self._window_start = None
            self._half_open_successes = 0

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "retry_in_seconds": round(self.time_until_retry(), 1),
            "stats": self._stats.to_dict(),
            "config": asdict(self.config),
        }


class CircuitBreakerRegistry:
    """Named circuit breakers shared across the process."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = RLock()

    def get(self, name: str, config: Optional[CircuitConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(name, config)
            return self._breakers[name]

    def get_all_stats(self) -> Dict[str, Any]:
        return {name: b.get_stats() for name, b in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def get_open_circuits(self) -> List[str]:
        return [
            name for name, breaker in self._breakers.items()
            if breaker.state == CircuitState.OPEN
        ]


# Global registry instance
_registry: Optional[CircuitBreakerRegistry] = None


def get_registry() -> CircuitBreakerRegistry:
    """Get the global circuit breaker registry."""
    global _registry
    if _registry is None:
        _registry = CircuitBreakerRegistry()
    return _registry


def get_circuit_breaker(name: str, config: Optional[CircuitConfig] = None) -> CircuitBreaker:
    """Get a circuit breaker from the global registry."""
    return get_registry().get(name, config)
