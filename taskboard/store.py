"""
In-memory task collection for the current session.

TaskStore is the single source of truth for rendering. It never touches
persistence: adapters confirm durability first, then the controller
applies the same transition here.
"""
import dataclasses
import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .faults import DuplicateTaskError
from .schema import Task, TaskStatus

logger = logging.getLogger(__name__)


class InsertOrder(Enum):
    """Where insert() places a new task."""
    APPEND = "append"    # local snapshot: insertion order
    PREPEND = "prepend"  # remote rows: newest first


class TaskStore:
    """Ordered task collection with change notification."""

    def __init__(self, order: InsertOrder = InsertOrder.APPEND):
        self.order = order
        self._tasks: List[Task] = []
        self._listeners: List[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Register a view-refresh listener, called after every change."""
        self._listeners.append(callback)

    def _emit(self) -> None:
        for callback in self._listeners:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in store change listener: {e}")

    # ── Mutations ────────────────────────────────────────────────────────

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Discard the current collection and install the given tasks."""
        self._tasks = list(tasks)
        logger.debug(f"Store replaced: {len(self._tasks)} tasks")
        self._emit()

    def insert(self, task: Task) -> None:
        """Add one task at the position dictated by the ordering policy."""
        if self._index(task.id) is not None:
            raise DuplicateTaskError(f"Task {task.id} already present")
        if self.order is InsertOrder.PREPEND:
            self._tasks.insert(0, task)
        else:
            self._tasks.append(task)
        self._emit()

    def patch(self, task_id: str, fields: Mapping[str, Any]) -> bool:
        """
        Merge fields into the matching task.

        Missing ids are a no-op so a stale edit racing a delete is harmless.
        Returns True if a task was patched.
        """
        idx = self._index(task_id)
        if idx is None:
            logger.debug(f"Patch ignored, task {task_id} not in store")
            return False
        if fields:
            self._tasks[idx] = dataclasses.replace(self._tasks[idx], **fields)
        self._emit()
        return True

    def remove(self, task_id: str) -> bool:
        """Remove the matching task if present. Returns True if removed."""
        idx = self._index(task_id)
        if idx is None:
            return False
        del self._tasks[idx]
        self._emit()
        return True

    # ── Queries ──────────────────────────────────────────────────────────

    def get(self, task_id: str) -> Optional[Task]:
        idx = self._index(task_id)
        return self._tasks[idx] if idx is not None else None

    def all(self) -> List[Task]:
        return list(self._tasks)

    def by_status(self, status: Union[TaskStatus, str]) -> List[Task]:
        """Tasks in one column, collection order preserved."""
        return [t for t in self._tasks if t.is_visible and t.status == status]

    def count_by_status(self, status: Union[TaskStatus, str]) -> int:
        return len(self.by_status(status))

    def counts(self) -> Dict[TaskStatus, int]:
        return {s: self.count_by_status(s) for s in TaskStatus}

    def _index(self, task_id: str) -> Optional[int]:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return any(t.id == task_id for t in self._tasks)
