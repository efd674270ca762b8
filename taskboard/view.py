"""
View derivation: columns, counts and overdue flags.

derive_view() is pure. It can be recomputed at any time from a store
snapshot and the current date.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Union

from .schema import COLUMNS, Task, TaskStatus


@dataclass(frozen=True)
class BoardView:
    columns: Dict[TaskStatus, List[Task]]
    counts: Dict[TaskStatus, int]
    overdue: Dict[str, bool]


def _calendar_day(today: Union[date, datetime]) -> date:
    return today.date() if isinstance(today, datetime) else today


def is_overdue(task: Task, today: Union[date, datetime]) -> bool:
    """Due strictly before today and not done. Same-day is not overdue."""
    if task.due_date is None or task.status == TaskStatus.DONE:
        return False
    return task.due_date < _calendar_day(today)


def derive_view(tasks: Iterable[Task], today: Union[date, datetime]) -> BoardView:
    tasks = list(tasks)
    day = _calendar_day(today)
    columns = {
        status: [t for t in tasks if t.is_visible and t.status == status]
        for status in COLUMNS
    }
    return BoardView(
        columns=columns,
        counts={status: len(col) for status, col in columns.items()},
        overdue={t.id: is_overdue(t, day) for t in tasks if t.is_visible},
    )
