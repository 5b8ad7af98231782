"""
Logging Configuration — Structured logging setup.

Provides consistent logging across all modules with:
- JSON output for machine-readable logs
- Human-readable output for the local admin console
- Throttling for messages that repeat in tight loops

## Environment Variables

- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- LOG_FORMAT: json, text (default: text)

## Usage

    from catechesis_admin.logging_config import setup_logging

    setup_logging()  # Call once at startup
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, Optional

EXTRA_FIELDS = ("operation_id", "path", "status", "session_id")


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Output format:
    {"ts": "...", "level": "...", "logger": "...", "message": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)


class HumanFormatter(logging.Formatter):
    """
    Human-readable log formatter for development.

    Output format:
    12:34:56 INFO    [module         ] Message
    """

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        time_str = datetime.now().strftime("%H:%M:%S")

        level = record.levelname
        if sys.stderr.isatty():
            color = self.COLORS.get(level, "")
            level = f"{color}{level:7}{self.RESET}"
        else:
            level = f"{level:7}"

        module = record.name.split(".")[-1][:15]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"

        return f"{time_str} {level} [{module:15}] {msg}"


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
               Defaults to LOG_LEVEL env var or INFO.
        format_type: Output format (json, text).
                     Defaults to LOG_FORMAT env var or text.
    """
    log_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_format = (format_type or os.environ.get("LOG_FORMAT", "text")).lower()

    numeric_level = getattr(logging, log_level, logging.INFO)

    formatter: logging.Formatter
    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(numeric_level)
    root.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured: level={log_level}, format={log_format}"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Use this instead of logging.getLogger() for consistency.
    """
    return logging.getLogger(name)


class LogThrottler:
    """
    Suppress repeats of the same log key inside a time window.

    The first message for a key is emitted; repeats within ``interval``
    seconds are counted and the count is appended to the next message
    that gets through.

        throttler = LogThrottler(logger)
        throttler.warning("rate-wait", "Waiting for rate limit reset")
    """

    def __init__(
        self,
        logger: logging.Logger,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.logger = logger
        self.interval = interval
        self._clock = clock
        self._last_emit: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}
        self._lock = Lock()

    def should_log(self, key: str) -> Optional[int]:
        """
        Decide whether ``key`` may be logged now.

        Returns the number of suppressed repeats when allowed, None when
        the message should be dropped.
        """
        now = self._clock()
        with self._lock:
            last = self._last_emit.get(key)
            if last is not None and now - last < self.interval:
                self._suppressed[key] = self._suppressed.get(key, 0) + 1
                return None
            self._last_emit[key] = now
            return self._suppressed.pop(key, 0)

    def log(self, level: int, key: str, message: str) -> bool:
        suppressed = self.should_log(key)
        if suppressed is None:
            return False
        if suppressed:
            message = f"{message} (+{suppressed} suppressed)"
        self.logger.log(level, message)
        return True

    def debug(self, key: str, message: str) -> bool:
        return self.log(logging.DEBUG, key, message)

    def info(self, key: str, message: str) -> bool:
        return self.log(logging.INFO, key, message)

    def warning(self, key: str, message: str) -> bool:
        return self.log(logging.WARNING, key, message)

    def error(self, key: str, message: str) -> bool:
        return self.log(logging.ERROR, key, message)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "tracked_keys": len(self._last_emit),
                "suppressed": dict(self._suppressed),
            }

    def reset(self) -> None:
        with self._lock:
            self._last_emit.clear()
            self._suppressed.clear()
