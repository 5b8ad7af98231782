"""
Observability Module — Health checks, error handling and operation progress.
"""

from .error_handler import ErrorHandler
from .error_reporter import ErrorReporter
from .health import ComponentHealth, HealthChecker, HealthStatus, SystemHealth
from .progress import ProgressTracker

__all__ = [
    "HealthChecker",
    "HealthStatus",
    "SystemHealth",
    "ComponentHealth",
    "ErrorHandler",
    "ErrorReporter",
    "ProgressTracker",
]
