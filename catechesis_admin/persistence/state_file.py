"""
State File Persistence — JSON documents under ``state/``.

Every local store (settings, backups, operation log, analytics, commit
queue) goes through these functions so writes are atomic and the
on-disk format is consistent.

Stores that load, modify and save a document hold ``path_lock(path)``
for the whole cycle. The lock is shared by every instance pointing at
the same file, so request threads never lose each other's writes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict

logger = logging.getLogger(__name__)

_path_locks: Dict[str, RLock] = {}
_registry_lock = Lock()


def path_lock(path: Path) -> RLock:
    """The process-wide lock guarding read-modify-write of ``path``."""
    key = os.path.abspath(path)
    with _registry_lock:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = RLock()
        return lock


def load_json(path: Path, default: Any = None) -> Any:
    """
    Load a JSON document.

    Returns ``default`` when the file does not exist. A corrupt file is
    logged and also yields ``default`` so one bad write never locks the
    administrator out of the panel.
    """
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.error(f"Could not read {path.name}: {e}")
        return default


def save_json(data: Any, path: Path) -> None:
    """
    Save a JSON document.

    Uses atomic write (write to a unique temp file, then rename) to
    prevent corruption. Concurrent writers never share a temp file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise
    logger.debug(f"Saved {path.name}")
