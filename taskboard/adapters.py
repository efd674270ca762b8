"""
Persistence adapters.

SyncAdapter is the four-operation contract the board talks to:

    load()                  → list of tasks, in the variant's order
    create(fields)          → the persisted task (id + created_at assigned)
    update(task_id, fields) → partial update
    delete(task_id)         → remove by id

Failures are raised as SyncFault subclasses. The variant is picked once at
startup by create_adapter(); nothing else branches on it.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Mapping, Optional

from .config import BoardConfig, ConfigError
from .faults import NetworkFault, StorageFault
from .realtime import ChangeEvent, RealtimeChannel
from .rest_client import HttpRowService
from .schema import Task, fields_to_row, make_task_id, utc_now
from .snapshot import SqliteSnapshotStore
from .store import InsertOrder

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class SyncAdapter(ABC):
    """Persistence contract shared by the local and remote variants."""

    insert_order: InsertOrder = InsertOrder.APPEND

    @abstractmethod
    async def load(self) -> List[Task]:
        ...

    @abstractmethod
    async def create(self, fields: Mapping[str, Any]) -> Task:
        ...

    @abstractmethod
    async def update(self, task_id: str, fields: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, task_id: str) -> None:
        ...

    def start(self, on_change: ChangeCallback) -> None:
        """Begin delivering push notifications. No-op without a push channel."""
        return None

    def stop(self) -> None:
        return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Local snapshot variant
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class LocalSyncAdapter(SyncAdapter):
    """
    Whole-collection snapshot under one key.

    Every mutation reads the snapshot, applies the change and rewrites the
    full collection. There are no partial writes.
    """

    insert_order = InsertOrder.APPEND

    def __init__(self, snapshots, key: str = "kanban-data"):
        self.snapshots = snapshots
        self.key = key

    def _read(self) -> List[Task]:
        try:
            blob = self.snapshots.get(self.key)
        except Exception as e:
            raise StorageFault(f"Cannot read snapshot {self.key}: {e}")
        if not blob:
            return []
        try:
            records = json.loads(blob)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(f"Failed to parse snapshot {self.key}, starting empty: {e}")
            return []
        if not isinstance(records, list):
            logger.error(f"Snapshot {self.key} is not a list, starting empty")
            return []
        return [Task.from_dict(r) for r in records if isinstance(r, dict)]

    def _write(self, tasks: List[Task]) -> None:
        try:
            blob = json.dumps([t.to_dict() for t in tasks], ensure_ascii=False)
            self.snapshots.set(self.key, blob)
        except Exception as e:
            raise StorageFault(f"Cannot write snapshot {self.key}: {e}")

    async def load(self) -> List[Task]:
        try:
            return self._read()
        except StorageFault as e:
            logger.error(f"{e.reason}; starting empty")
            return []

    async def create(self, fields: Mapping[str, Any]) -> Task:
        tasks = self._read()
        task = Task(id=make_task_id(), created_at=utc_now(), **fields)
        tasks.append(task)
        self._write(tasks)
        logger.info(f"Created task {task.id}: {task.title}")
        return task

    async def update(self, task_id: str, fields: Mapping[str, Any]) -> None:
        tasks = self._read()
        for task in tasks:
            if task.id == task_id:
                for name, value in fields.items():
                    setattr(task, name, value)
                self._write(tasks)
                logger.info(f"Updated task {task_id}: {sorted(fields)}")
                return
        logger.debug(f"Update skipped, task {task_id} not in snapshot")

    async def delete(self, task_id: str) -> None:
        tasks = self._read()
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) != len(tasks):
            self._write(remaining)
            logger.info(f"Deleted task {task_id}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Remote row variant
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class RemoteSyncAdapter(SyncAdapter):
    """
    Row service plus realtime push.

    Each operation is one network round-trip. Any change event on the
    channel means "reload everything"; the events carry no diff.
    """

    insert_order = InsertOrder.PREPEND

    def __init__(self, rows: HttpRowService, channel: Optional[RealtimeChannel] = None):
        self.rows = rows
        self.channel = channel

    async def load(self) -> List[Task]:
        rows = await self.rows.select(order="created_at.desc")
        return [Task.from_row(r) for r in rows if isinstance(r, dict)]

    async def create(self, fields: Mapping[str, Any]) -> Task:
        row = await self.rows.insert(fields_to_row(fields))
        if not row.get("id"):
            raise NetworkFault("Backend did not assign an id to the new task")
        task = Task.from_row(row)
        logger.info(f"Created remote task {task.id}: {task.title}")
        return task

    async def update(self, task_id: str, fields: Mapping[str, Any]) -> None:
        await self.rows.update(task_id, fields_to_row(fields))
        logger.info(f"Updated remote task {task_id}: {sorted(fields)}")

    async def delete(self, task_id: str) -> None:
        await self.rows.delete(task_id)
        logger.info(f"Deleted remote task {task_id}")

    def start(self, on_change: ChangeCallback) -> None:
        if self.channel is not None:
            self.channel.subscribe(on_change)

    def stop(self) -> None:
        if self.channel is not None:
            self.channel.unsubscribe()


def create_adapter(config: BoardConfig) -> SyncAdapter:
    """Build the adapter selected by configuration."""
    if config.backend == "local":
        snapshots = SqliteSnapshotStore(config.db_path)
        logger.info(f"Using local snapshot store {config.db_path} (key={config.storage_key})")
        return LocalSyncAdapter(snapshots, key=config.storage_key)

    if config.backend == "remote":
        if not config.remote_url:
            raise ConfigError("Remote backend selected but remote_url is not set")
        rows = HttpRowService(
            config.remote_url,
            table=config.table,
            api_key=config.api_key,
            timeout=config.request_timeout,
        )
        channel = RealtimeChannel(
            config.remote_url,
            table=config.table,
            schema=config.schema,
            api_key=config.api_key,
            connect_timeout=config.request_timeout,
        )
        logger.info(f"Using remote row service {config.remote_url} (table={config.table})")
        return RemoteSyncAdapter(rows, channel)

    raise ConfigError(f"Unknown backend: {config.backend}")
