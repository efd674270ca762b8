"""
Task schema for the board.

Columns:
  todo → inprogress → done

Two wire layouts are supported:
  - local snapshot records (camelCase: dueDate, createdAt)
  - remote rows (snake_case: due_date, created_at)
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Dict, Any, Mapping, Union
import logging
import uuid

from .faults import ValidationFault

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Board columns, in display order."""
    TODO = "todo"
    INPROGRESS = "inprogress"
    DONE = "done"

    @classmethod
    def coerce(cls, value: Any) -> Union["TaskStatus", str]:
        """Return the matching member, or the raw string when unrecognized.

        Unrecognized statuses are kept on the task so nothing is lost on
        the next write, but they never match a column.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return "" if value is None else str(value)


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "TaskPriority":
        try:
            return cls(value)
        except ValueError:
            return cls.MEDIUM


COLUMNS = (TaskStatus.TODO, TaskStatus.INPROGRESS, TaskStatus.DONE)

# Field name translation: python attribute → local record key / remote column
LOCAL_KEYS = {
    "id": "id",
    "title": "title",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "due_date": "dueDate",
    "created_at": "createdAt",
}
ROW_COLUMNS = {
    "id": "id",
    "title": "title",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "due_date": "due_date",
    "created_at": "created_at",
}
EDITABLE_FIELDS = ("title", "description", "status", "priority", "due_date")
_FIELD_ALIASES = {"dueDate": "due_date", "createdAt": "created_at"}


def make_task_id() -> str:
    """Generate a unique task id for locally created tasks."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_due_date(value: Any) -> Optional[date]:
    """Parse a calendar date from a date, datetime or ISO string.

    A full ISO datetime string contributes its date part. Empty values
    return None. Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text:
        return parse_timestamp(text).date()
    return date.fromisoformat(text)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'."""
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _lenient_due_date(value: Any, task_id: str) -> Optional[date]:
    try:
        return parse_due_date(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable due date {value!r} on task {task_id}")
        return None


def _lenient_timestamp(value: Any) -> datetime:
    if not value:
        return utc_now()
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return utc_now()


@dataclass
class Task:
    """One card on the board."""

    id: str
    title: str
    description: str = ""
    status: Union[TaskStatus, str] = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[date] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def status_value(self) -> str:
        return self.status.value if isinstance(self.status, TaskStatus) else str(self.status)

    @property
    def is_visible(self) -> bool:
        """Whether the task belongs to one of the board columns."""
        return isinstance(self.status, TaskStatus)

    def _values(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status_value,
            "priority": self.priority.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": _format_timestamp(self.created_at),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the local snapshot record layout."""
        data = {LOCAL_KEYS[k]: v for k, v in self._values().items()}
        # Local snapshots store "no due date" as an empty string
        if data["dueDate"] is None:
            data["dueDate"] = ""
        return data

    def to_row(self) -> Dict[str, Any]:
        """Serialize to the remote row layout."""
        return {ROW_COLUMNS[k]: v for k, v in self._values().items()}

    @classmethod
    def _from_values(cls, data: Mapping[str, Any], keys: Mapping[str, str]) -> "Task":
        task_id = str(data.get(keys["id"]) or "")
        return cls(
            id=task_id,
            title=str(data.get(keys["title"]) or ""),
            description=str(data.get(keys["description"]) or ""),
            status=TaskStatus.coerce(data.get(keys["status"], TaskStatus.TODO.value)),
            priority=TaskPriority.from_str(data.get(keys["priority"])),
            due_date=_lenient_due_date(data.get(keys["due_date"]), task_id),
            created_at=_lenient_timestamp(data.get(keys["created_at"])),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Task":
        """Deserialize a local snapshot record."""
        return cls._from_values(data, LOCAL_KEYS)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        """Deserialize a remote row."""
        return cls._from_values(row, ROW_COLUMNS)


def fields_to_row(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate validated task fields into remote column values."""
    row: Dict[str, Any] = {}
    for name, value in fields.items():
        column = ROW_COLUMNS[_FIELD_ALIASES.get(name, name)]
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, date):
            value = value.isoformat()
        row[column] = value
    return row


def validate_fields(fields: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and normalize task fields coming from the form collaborator.

    Returns:
        dict keyed by Task attribute names with typed values.

    Raises:
        ValidationFault with a user-facing message on failure.
    """
    result: Dict[str, Any] = {}

    for raw_name, value in fields.items():
        name = _FIELD_ALIASES.get(raw_name, raw_name)
        if name in ("id", "created_at"):
            raise ValidationFault(f"Field {raw_name} cannot be changed")
        if name not in EDITABLE_FIELDS:
            raise ValidationFault(f"Unknown field: {raw_name}")

        if name in ("title", "description"):
            result[name] = ("" if value is None else str(value)).strip()
        elif name == "status":
            try:
                result[name] = TaskStatus(value)
            except ValueError:
                raise ValidationFault(
                    f"Invalid status: {value!r}. "
                    f"Allowed: {', '.join(s.value for s in TaskStatus)}"
                )
        elif name == "priority":
            try:
                result[name] = TaskPriority(value)
            except ValueError:
                raise ValidationFault(
                    f"Invalid priority: {value!r}. "
                    f"Allowed: {', '.join(p.value for p in TaskPriority)}"
                )
        elif name == "due_date":
            try:
                result[name] = parse_due_date(value)
            except (TypeError, ValueError):
                raise ValidationFault(f"Invalid due date: {value!r} (expected YYYY-MM-DD)")

    if "title" in result and not result["title"]:
        raise ValidationFault("Title is required")

    if not partial:
        if "title" not in result:
            raise ValidationFault("Title is required")
        result.setdefault("description", "")
        result.setdefault("status", TaskStatus.TODO)
        result.setdefault("priority", TaskPriority.MEDIUM)
        result.setdefault("due_date", None)

    return result
