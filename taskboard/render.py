"""
Plain-text rendering of a derived board view.
"""
from .schema import Task, TaskPriority, TaskStatus
from .view import BoardView

COLUMN_TITLES = {
    TaskStatus.TODO: "📋 To do",
    TaskStatus.INPROGRESS: "🚀 In progress",
    TaskStatus.DONE: "✅ Done",
}
PRIORITY_LABELS = {
    TaskPriority.LOW: "low",
    TaskPriority.MEDIUM: "medium",
    TaskPriority.HIGH: "HIGH",
}


def render_task(task: Task, overdue: bool = False) -> str:
    """Format one task as a single line."""
    parts = [f"[{task.id[:8]}]", task.title, f"({PRIORITY_LABELS[task.priority]})"]
    if task.due_date:
        icon = "⚠️ overdue" if overdue else "📅 due"
        parts.append(f"{icon} {task.due_date.strftime('%d %b')}")
    return " ".join(parts)


def render_board(view: BoardView) -> str:
    """Format all three columns with their counts."""
    lines = []
    for status, title in COLUMN_TITLES.items():
        lines.append(f"{title} ({view.counts[status]})")
        tasks = view.columns[status]
        if not tasks:
            lines.append("  —")
        for task in tasks:
            lines.append(f"  {render_task(task, view.overdue.get(task.id, False))}")
            if task.description:
                lines.append(f"      {task.description}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
