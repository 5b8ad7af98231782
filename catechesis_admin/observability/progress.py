"""
Progress Tracker — Status of long-running admin operations.

Routes that commit to GitHub or wait for a Pages build register an
operation here; the panel polls ``/api/progress/<id>`` to draw its
progress bar. Finished operations stay visible for ``RETENTION_SECONDS``.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from ..errors import NotFoundError

logger = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"
ERROR = "error"
CANCELLED = "cancelled"


@dataclass
class Operation:
    id: str
    title: str
    status: str = RUNNING
    progress: float = 0.0
    message: str = ""
    steps: List[str] = field(default_factory=list)
    current_step: int = -1
    error: Optional[str] = None
    started_at: float = 0.0
    finished_at: Optional[float] = None

    def to_dict(self, now: float) -> Dict[str, Any]:
        data = asdict(self)
        data["progress"] = round(self.progress, 1)
        data["duration"] = round((self.finished_at or now) - self.started_at, 2)
        data["step_name"] = self.steps[self.current_step] if 0 <= self.current_step < len(self.steps) else None
        return data


class ProgressTracker:
    RETENTION_SECONDS = 300

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._operations: Dict[str, Operation] = {}
        self._lock = Lock()

    def _get(self, operation_id: str) -> Operation:
        op = self._operations.get(operation_id)
        if op is None:
            raise NotFoundError(f"Operação não encontrada: {operation_id}")
        return op

    def start_operation(
        self,
        operation_id: Optional[str] = None,
        title: str = "Processando...",
        message: str = "Iniciando operação...",
    ) -> str:
        operation_id = operation_id or f"op_{int(self._clock() * 1000)}_{secrets.token_hex(3)}"
        with self._lock:
            self._operations[operation_id] = Operation(
                id=operation_id,
                title=title,
                message=message,
                started_at=self._clock(),
            )
        logger.debug(f"Operation started: {operation_id} ({title})")
        return operation_id

    def update_progress(self, operation_id: str, percentage: float, message: Optional[str] = None) -> None:
        with self._lock:
            op = self._get(operation_id)
            op.progress = min(100.0, max(0.0, float(percentage)))
            if message is not None:
                op.message = message

    def set_operation_steps(self, operation_id: str, steps: List[str]) -> None:
        with self._lock:
            op = self._get(operation_id)
            op.steps = list(steps)
            op.current_step = -1

    def next_step(self, operation_id: str, message: Optional[str] = None) -> Optional[str]:
        """Advance to the next step; progress follows the step count."""
        with self._lock:
            op = self._get(operation_id)
            if not op.steps:
                return None
            op.current_step = min(op.current_step + 1, len(op.steps) - 1)
            op.progress = (op.current_step + 1) / len(op.steps) * 100
            op.message = message or op.steps[op.current_step]
            return op.steps[op.current_step]

    def complete_operation(self, operation_id: str, message: str = "Operação concluída com sucesso!") -> None:
        with self._lock:
            op = self._get(operation_id)
            op.status = COMPLETED
            op.progress = 100.0
            op.message = message
            op.finished_at = self._clock()
        logger.debug(f"Operation completed: {operation_id}")

    def fail_operation(self, operation_id: str, error: str) -> None:
        with self._lock:
            op = self._get(operation_id)
            op.status = ERROR
            op.error = error
            op.message = f"Erro: {error}"
            op.finished_at = self._clock()
        logger.warning(f"Operation failed: {operation_id}: {error}")

    def cancel_operation(self, operation_id: str) -> None:
        with self._lock:
            op = self._get(operation_id)
            if op.status == RUNNING:
                op.status = CANCELLED
                op.message = "Operação cancelada"
                op.finished_at = self._clock()

    def get(self, operation_id: str) -> Dict[str, Any]:
        self.cleanup()
        with self._lock:
            return self._get(operation_id).to_dict(self._clock())

    def get_active(self) -> List[Dict[str, Any]]:
        with self._lock:
            now = self._clock()
            return [op.to_dict(now) for op in self._operations.values() if op.status == RUNNING]

    def cleanup(self) -> int:
        """Forget finished operations older than the retention window."""
        cutoff = self._clock() - self.RETENTION_SECONDS
        with self._lock:
            stale = [
                op_id for op_id, op in self._operations.items()
                if op.finished_at is not None and op.finished_at < cutoff
            ]
            for op_id in stale:
                del self._operations[op_id]
        return len(stale)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = {RUNNING: 0, COMPLETED: 0, ERROR: 0, CANCELLED: 0}
            for op in self._operations.values():
                stats[op.status] += 1
            stats["total"] = len(self._operations)
            return stats
