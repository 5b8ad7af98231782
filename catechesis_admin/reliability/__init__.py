"""
Reliability Module — Circuit breakers and the commit retry queue.
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitConfig,
    CircuitState,
    get_circuit_breaker,
    get_registry,
)
from .retry_queue import RetryItem, RetryQueue

__all__ = [
    "RetryQueue",
    "RetryItem",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitConfig",
    "get_circuit_breaker",
    "get_registry",
]
