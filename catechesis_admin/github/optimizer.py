"""
Request Queue — Batching, prioritisation and caching for GitHub calls.

Operations are queued with a priority (high, normal, low) and drained in
batches of ``batch_size``; each batch runs on a small thread pool and a
pause separates batches so a burst of edits never hits the secondary
rate limit. Reads can be served from a short-lived cache.

## Usage

    queue = RequestQueue(client)

    future = queue.enqueue(lambda: client.commit_file(path, data, msg), priority="high")
    queue.process()
    result = future.result()

    settings = queue.cached_get("config/settings.json")
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple, Union

from ..errors import AppError, FileTooLargeError, ValidationError, is_retryable
from .client import CommitResult, GitHubClient, RepoFile

logger = logging.getLogger(__name__)

PRIORITIES = ("high", "normal", "low")


@dataclass
class QueuedOperation:
    operation: Callable[[], Any]
    future: Future
    priority: str
    label: str = ""
    retries: int = 0
    seq: int = 0


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


@dataclass
class QueueCounters:
    processed: int = 0
    failed: int = 0
    retried: int = 0
    batches: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


class RequestQueue:
    """
    Priority queue in front of a ``GitHubClient``.

    FIFO within a priority. Failed operations whose error is retryable
    go back to the end of their priority lane after ``retry_delay`` ×
    retries seconds, up to ``max_retries`` times.
    """

    MAX_FILE_SIZE = 50 * 1024 * 1024

    def __init__(
        self,
        client: GitHubClient,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        cache_ttl: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.cache_ttl = cache_ttl
        self._sleep = sleep
        self._clock = clock

        self._lanes: Dict[str, Deque[QueuedOperation]] = {p: deque() for p in PRIORITIES}
        self._cache: Dict[Tuple[str, Optional[str]], CacheEntry] = {}
        self._counters = QueueCounters()
        self._seq = itertools.count()
        self._lock = Lock()
        self._processing = False

    # ── Queue ────────────────────────────────────────────────────

    def enqueue(
        self,
        operation: Callable[[], Any],
        priority: str = "normal",
        label: str = "",
    ) -> Future:
        if priority not in PRIORITIES:
            raise ValidationError(f"Prioridade inválida: {priority}", field="priority")
        future: Future = Future()
        item = QueuedOperation(operation, future, priority, label, seq=next(self._seq))
        with self._lock:
            self._lanes[priority].append(item)
        logger.debug(f"Queued {label or 'operation'} ({priority})")
        return future

    def _next_batch(self) -> List[QueuedOperation]:
        batch: List[QueuedOperation] = []
        with self._lock:
            for priority in PRIORITIES:
                lane = self._lanes[priority]
                while lane and len(batch) < self.batch_size:
                    batch.append(lane.popleft())
        return batch

    def pending(self) -> int:
        with self._lock:
            return sum(len(lane) for lane in self._lanes.values())

    def _run(self, item: QueuedOperation) -> None:
        try:
            result = item.operation()
        except AppError as e:
            if is_retryable(e) and item.retries < self.max_retries:
                item.retries += 1
                self._counters.retried += 1
                delay = self.retry_delay * item.retries
                logger.warning(
                    f"{item.label or 'Operation'} failed ({e.code}), "
                    f"retry {item.retries}/{self.max_retries} in {delay:.0f}s"
                )
                self._sleep(delay)
                with self._lock:
                    self._lanes[item.priority].append(item)
                return
            self._counters.failed += 1
            item.future.set_exception(e)
        except Exception as e:
            self._counters.failed += 1
            logger.exception(f"{item.label or 'Operation'} crashed")
            item.future.set_exception(e)
        else:
            self._counters.processed += 1
            item.future.set_result(result)

    def process(self) -> int:
        """
        Drain the queue. Returns the number of operations finished.

        Re-entrant calls while a drain is running return 0 immediately.
        """
        with self._lock:
            if self._processing:
                return 0
            self._processing = True

        finished_before = self._counters.processed + self._counters.failed
        try:
            with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
                first = True
                while True:
                    batch = self._next_batch()
                    if not batch:
                        break
                    if not first and self.batch_delay:
                        self._sleep(self.batch_delay)
                    first = False
                    self._counters.batches += 1
                    list(pool.map(self._run, batch))
        finally:
            with self._lock:
                self._processing = False

        return self._counters.processed + self._counters.failed - finished_before

    def submit(self, operation: Callable[[], Any], priority: str = "normal", label: str = "") -> Any:
        """Enqueue, drain, and return the operation's result."""
        future = self.enqueue(operation, priority, label)
        while not future.done():
            if self.process() == 0 and not future.done():
                # Another thread is draining; give it a moment.
                time.sleep(0.05)
        return future.result()

    # ── Cache ────────────────────────────────────────────────────

    def _cache_get(self, key: Tuple[str, Optional[str]]) -> Tuple[bool, Any]:
        entry = self._cache.get(key)
        if entry is None:
            return False, None
        if entry.expires_at <= self._clock():
            del self._cache[key]
            return False, None
        return True, entry.value

    def cached_get(self, path: str, ref: Optional[str] = None, priority: str = "normal") -> Optional[RepoFile]:
        """Read a file, serving repeats from the cache for ``cache_ttl`` seconds."""
        key = (path, ref)
        hit, value = self._cache_get(key)
        if hit:
            self._counters.cache_hits += 1
            return value

        self._counters.cache_misses += 1
        value = self.submit(lambda: self.client.get_file(path, ref), priority, label=f"GET {path}")
        self._cache[key] = CacheEntry(value, self._clock() + self.cache_ttl)
        return value

    def invalidate(self, path: Optional[str] = None) -> int:
        """Drop cached reads for ``path`` (or everything)."""
        keys = [k for k in self._cache if path is None or k[0] == path]
        for k in keys:
            del self._cache[k]
        return len(keys)

    def commit(
        self,
        path: str,
        content: Union[str, bytes],
        message: str,
        priority: str = "normal",
    ) -> CommitResult:
        """Queued commit that also invalidates the cached read of ``path``."""
        result = self.submit(
            lambda: self.client.commit_file_with_retry(path, content, message),
            priority,
            label=f"PUT {path}",
        )
        self.invalidate(path)
        return result

    def batch_file_operations(
        self,
        files: Iterable[Tuple[str, Union[str, bytes], str]],
        priority: str = "normal",
    ) -> List[Dict[str, Any]]:
        """
        Commit several files through the queue.

        Each entry is ``(path, content, message)``. Oversized files are
        rejected before anything is queued.
        """
        files = list(files)
        for path, content, _ in files:
            size = len(content.encode("utf-8") if isinstance(content, str) else content)
            if size > self.MAX_FILE_SIZE:
                raise FileTooLargeError(size, self.MAX_FILE_SIZE, details={"path": path})

        futures = [
            (
                path,
                self.enqueue(
                    lambda p=path, c=content, m=message: self.client.commit_file_with_retry(p, c, m),
                    priority,
                    label=f"PUT {path}",
                ),
            )
            for path, content, message in files
        ]
        self.process()

        results = []
        for path, future in futures:
            self.invalidate(path)
            error = future.exception()
            if error is None:
                results.append({"path": path, "success": True, "result": future.result().to_dict()})
            else:
                message = error.message if isinstance(error, AppError) else str(error)
                results.append({"path": path, "success": False, "error": message})
        return results

    # ── Introspection ────────────────────────────────────────────

    def get_queue_stats(self) -> Dict[str, Any]:
        with self._lock:
            lanes = {p: len(lane) for p, lane in self._lanes.items()}
        c = self._counters
        lookups = c.cache_hits + c.cache_misses
        return {
            "pending": lanes,
            "total_pending": sum(lanes.values()),
            "processing": self._processing,
            "processed": c.processed,
            "failed": c.failed,
            "retried": c.retried,
            "batches": c.batches,
            "cache_size": len(self._cache),
            "cache_hits": c.cache_hits,
            "cache_misses": c.cache_misses,
            "cache_hit_rate": round(c.cache_hits / lookups, 3) if lookups else 0.0,
            "rate_limit": self.client.rate_limit.to_dict(),
        }

    def clear(self) -> int:
        """Cancel everything pending and empty the cache."""
        with self._lock:
            dropped = [item for lane in self._lanes.values() for item in lane]
            for lane in self._lanes.values():
                lane.clear()
        for item in dropped:
            item.future.cancel()
        self._cache.clear()
        return len(dropped)
