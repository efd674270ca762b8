"""
Board session: the event-handling entry points.

BoardController owns one TaskStore and one SyncAdapter for the lifetime of
a session. UI collaborators call its methods; each mutation goes to the
adapter first and the store is only touched once the adapter succeeds.

Remote variant: after a successful call the controller applies the same
transition locally, and the push-driven refresh() later replaces the whole
store with backend state. Both transitions are idempotent, so either may
arrive first.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional, Union

from .adapters import SyncAdapter
from .faults import SyncFault
from .realtime import ChangeEvent
from .schema import Task, TaskStatus, validate_fields
from .store import TaskStore
from .view import BoardView, derive_view

logger = logging.getLogger(__name__)

Renderer = Callable[[BoardView], None]
Notifier = Callable[[str], None]


@dataclass
class MutationResult:
    """Outcome of one entry point call."""
    ok: bool
    task: Optional[Task] = None
    error: Optional[SyncFault] = None

    @property
    def reason(self) -> str:
        return self.error.reason if self.error else ""


class BoardController:
    """Keeps the in-memory board consistent with its persistence adapter."""

    def __init__(
        self,
        adapter: SyncAdapter,
        renderer: Optional[Renderer] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.adapter = adapter
        self.store = TaskStore(order=adapter.insert_order)
        self.renderer = renderer
        self.notifier = notifier
        self.clock = clock or date.today
        self._refreshing: Optional[asyncio.Task] = None
        self._reload_pending = False
        self.store.subscribe(self._render)

    # ── View ─────────────────────────────────────────────────────────────

    def view(self, today: Optional[Union[date, datetime]] = None) -> BoardView:
        return derive_view(self.store.all(), today or self.clock())

    def _render(self) -> None:
        if self.renderer is not None:
            self.renderer(self.view())

    def _fail(self, action: str, fault: SyncFault) -> MutationResult:
        logger.warning(f"{action} failed ({type(fault).__name__}): {fault.reason}")
        if self.notifier is not None:
            try:
                self.notifier(f"Could not {action}: {fault.reason}")
            except Exception as e:
                logger.error(f"Error in notifier: {e}")
        return MutationResult(ok=False, error=fault)

    # ── Entry points ─────────────────────────────────────────────────────

    async def load(self) -> MutationResult:
        """Fetch the full state and install it."""
        try:
            tasks = await self.adapter.load()
        except SyncFault as e:
            return self._fail("load tasks", e)
        self.store.replace_all(tasks)
        logger.info(f"Loaded {len(tasks)} tasks")
        return MutationResult(ok=True)

    async def refresh(self) -> MutationResult:
        """Push-driven reconcile: backend state replaces local state."""
        return await self.load()

    async def create_task(self, fields: Mapping[str, Any]) -> MutationResult:
        """Form submit for a new task."""
        try:
            values = validate_fields(fields)
            task = await self.adapter.create(values)
        except SyncFault as e:
            return self._fail("create task", e)

        # A push-driven reload may already have installed the new row
        if task.id in self.store:
            self.store.patch(task.id, _task_fields(task))
        else:
            self.store.insert(task)
        return MutationResult(ok=True, task=task)

    async def edit_task(self, task_id: str, fields: Mapping[str, Any]) -> MutationResult:
        """Form submit for an existing task (partial update)."""
        try:
            values = validate_fields(fields, partial=True)
            await self.adapter.update(task_id, values)
        except SyncFault as e:
            return self._fail("update task", e)
        self.store.patch(task_id, values)
        return MutationResult(ok=True, task=self.store.get(task_id))

    async def move_task(self, task_id: str, status: Union[TaskStatus, str]) -> MutationResult:
        """Drag-and-drop: the only mutation a drop gesture performs."""
        return await self.edit_task(task_id, {"status": status})

    async def delete_task(self, task_id: str) -> MutationResult:
        try:
            await self.adapter.delete(task_id)
        except SyncFault as e:
            return self._fail("delete task", e)
        self.store.remove(task_id)
        return MutationResult(ok=True)

    # ── Push channel ─────────────────────────────────────────────────────

    def start(self) -> None:
        """Attach to the adapter's push channel (call from the running loop)."""
        self.adapter.start(self._on_remote_change)

    def stop(self) -> None:
        self.adapter.stop()

    def _on_remote_change(self, event: ChangeEvent) -> None:
        """
        Schedule a reload. At most one reload runs at a time; events that
        arrive while it is in flight coalesce into one more reload after it.
        """
        logger.debug(f"Remote {event.event} on {event.schema}.{event.table}, reloading")
        self._reload_pending = True
        if self._refreshing is None or self._refreshing.done():
            self._refreshing = asyncio.get_running_loop().create_task(self._drain_reloads())

    async def _drain_reloads(self) -> None:
        while self._reload_pending:
            self._reload_pending = False
            await self.refresh()


def _task_fields(task: Task) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "due_date": task.due_date,
        "created_at": task.created_at,
    }
