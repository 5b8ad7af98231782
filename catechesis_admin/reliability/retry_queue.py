"""
Commit Retry Queue — Failed GitHub commits waiting for another try.

When a commit fails with a retryable error (network, timeout, rate
limit, 5xx) the file content is parked here with exponential backoff.
The queue persists to ``state/commit_queue.json`` and survives restarts.

## Usage

    from catechesis_admin.reliability.retry_queue import RetryQueue

    queue = RetryQueue(root / "state" / "commit_queue.json")
    queue.enqueue("data/dados-catequese.json", payload, "Atualizar dados", error)

    # Later (CLI ``retry-queue --action flush`` or the admin panel)
    queue.flush(client)
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..errors import AppError
from ..persistence.state_file import load_json, path_lock, save_json

if TYPE_CHECKING:
    from ..github.client import GitHubClient

logger = logging.getLogger(__name__)

# Backoff: 1min, 5min, 15min, 30min, 60min
BACKOFF_MINUTES = [1, 5, 15, 30, 60]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


@dataclass
class RetryItem:
    """A commit waiting in the retry queue."""

    path: str
    content_b64: str
    message: str
    branch: Optional[str] = None

    attempt_count: int = 0
    max_attempts: int = 5

    first_failed_at: str = ""
    last_failed_at: str = ""
    next_retry_at: str = ""

    last_error_code: str = ""
    last_error_message: str = ""

    def should_retry(self, now: Optional[datetime] = None) -> bool:
        """Due and still under the attempt limit."""
        if self.attempt_count >= self.max_attempts:
            return False
        if not self.next_retry_at:
            return True
        now = now or _now()
        next_retry = datetime.fromisoformat(self.next_retry_at.replace("Z", "+00:00"))
        return now >= next_retry

    def calculate_next_retry(self, now: Optional[datetime] = None) -> str:
        index = min(max(self.attempt_count - 1, 0), len(BACKOFF_MINUTES) - 1)
        return _iso((now or _now()) + timedelta(minutes=BACKOFF_MINUTES[index]))

    @property
    def content(self) -> bytes:
        return base64.b64decode(self.content_b64)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryItem":
        return cls(**data)


class RetryQueue:
    """
    Persistent queue of failed commits, keyed by repository path.

    A later failure for the same path replaces the queued content, so
    only the newest version of a file is ever retried.

    Every operation re-reads ``commit_queue.json`` under the file's
    lock, so long-lived instances (the settings manager keeps one) see
    what other instances flushed or cleared.
    """

    DEFAULT_MAX_ATTEMPTS = 5

    def __init__(self, queue_path: Path):
        self.queue_path = queue_path
        self._lock = path_lock(queue_path)
        self._items: Dict[str, RetryItem] = {}
        self._load()

    def _load(self) -> None:
        data = load_json(self.queue_path, default={}) or {}
        try:
            self._items = {
                k: RetryItem.from_dict(v) for k, v in data.get("items", {}).items()
            }
        except (TypeError, AttributeError) as e:
            logger.error(f"Failed to load commit queue: {e}")
            self._items = {}

    def _save(self) -> None:
        save_json(
            {
                "version": 1,
                "updated_at": _iso(_now()),
                "items": {k: v.to_dict() for k, v in self._items.items()},
            },
            self.queue_path,
        )

    def enqueue(
        self,
        path: str,
        content: Union[str, bytes],
        message: str,
        error: Optional[BaseException] = None,
        branch: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> RetryItem:
        """Park a failed commit (or record another failure for it)."""
        raw = content.encode("utf-8") if isinstance(content, str) else content
        now = _now()
        code = error.code if isinstance(error, AppError) else type(error).__name__ if error else "unknown"
        text = str(error) if error else "Unknown error"

        with self._lock:
            self._load()
            item = self._items.get(path)
            if item is None:
                item = RetryItem(
                    path=path,
                    content_b64="",
                    message=message,
                    branch=branch,
                    max_attempts=max_attempts or self.DEFAULT_MAX_ATTEMPTS,
                    first_failed_at=_iso(now),
                )
                self._items[path] = item

            item.content_b64 = base64.b64encode(raw).decode("ascii")
            item.message = message
            item.attempt_count += 1
            item.last_failed_at = _iso(now)
            item.last_error_code = code
            item.last_error_message = text[:500]
            item.next_retry_at = item.calculate_next_retry(now)
            self._save()

        logger.info(
            f"Queued commit of {path} for retry "
            f"(attempt {item.attempt_count}/{item.max_attempts}, next at {item.next_retry_at})"
        )
        return item

    def get_pending(self, now: Optional[datetime] = None) -> List[RetryItem]:
        """Items that are due now, oldest due first."""
        with self._lock:
            self._load()
            pending = [item for item in self._items.values() if item.should_retry(now)]
        return sorted(pending, key=lambda x: x.next_retry_at)

    def get_exhausted(self) -> List[RetryItem]:
        with self._lock:
            self._load()
            return [i for i in self._items.values() if i.attempt_count >= i.max_attempts]

    def mark_success(self, path: str) -> None:
        with self._lock:
            self._load()
            if self._items.pop(path, None) is None:
                return
            self._save()
        logger.info(f"Removed {path} from commit queue (success)")

    def remove(self, path: str) -> bool:
        with self._lock:
            self._load()
            if self._items.pop(path, None) is None:
                return False
            self._save()
        return True

    def flush(self, client: "GitHubClient", force: bool = False) -> Dict[str, Any]:
        """
        Retry every due item through ``client``.

        ``force`` retries all items that still have attempts left, even
        when their backoff has not elapsed. Commits run outside the lock;
        an item queued again meanwhile keeps its newer content.
        """
        with self._lock:
            self._load()
            if force:
                items = [i for i in self._items.values() if i.attempt_count < i.max_attempts]
            else:
                items = self.get_pending()

        succeeded: List[str] = []
        failed: List[Dict[str, str]] = []
        for item in items:
            try:
                client.commit_file_with_retry(
                    item.path, item.content, item.message, branch=item.branch,
                )
            except AppError as e:
                self._requeue(item, e)
                failed.append({"path": item.path, "error": e.message})
                continue
            self._settle(item)
            succeeded.append(item.path)

        return {"attempted": len(items), "succeeded": succeeded, "failed": failed}

    def _requeue(self, item: RetryItem, error: AppError) -> None:
        """Count a failed retry unless the item was cleared or replaced meanwhile."""
        with self._lock:
            self._load()
            current = self._items.get(item.path)
            if current is None or current.content_b64 != item.content_b64:
                return
            self.enqueue(item.path, item.content, item.message, error, branch=item.branch)

    def _settle(self, item: RetryItem) -> None:
        """Drop ``item`` after a successful retry unless newer content replaced it."""
        with self._lock:
            self._load()
            current = self._items.get(item.path)
            if current is None or current.content_b64 != item.content_b64:
                return
            del self._items[item.path]
            self._save()
        logger.info(f"Removed {item.path} from commit queue (success)")

    def clear(self) -> int:
        """Clear all items from queue. Returns count cleared."""
        with self._lock:
            self._load()
            count = len(self._items)
            self._items = {}
            self._save()
        return count

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._load()
            items = list(self._items.values())
        now = _now()
        return {
            "total_items": len(items),
            "pending_now": sum(1 for i in items if i.should_retry(now)),
            "exhausted": sum(1 for i in items if i.attempt_count >= i.max_attempts),
            "items": [
                {
                    "path": i.path,
                    "attempt_count": i.attempt_count,
                    "max_attempts": i.max_attempts,
                    "next_retry_at": i.next_retry_at,
                    "last_error": i.last_error_message,
                }
                for i in items
            ],
        }

    def __len__(self) -> int:
        with self._lock:
            self._load()
            return len(self._items)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            self._load()
            return path in self._items
