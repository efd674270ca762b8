#!/usr/bin/env python3
"""
taskboard command line
──────────────────────
Stands in for the board's form and drag-and-drop collaborators.

Usage:
    python -m taskboard show
    python -m taskboard add "Write report" --priority high --due 2024-06-20
    python -m taskboard edit 3f2a --title "Write full report"
    python -m taskboard move 3f2a done
    python -m taskboard rm 3f2a
    python -m taskboard --backend remote watch

Task ids may be abbreviated to any unique prefix.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .adapters import create_adapter
from .board import BoardController
from .config import BoardConfig, ConfigError
from .render import render_board
from .schema import TaskPriority, TaskStatus

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskboard", description="Single-board task tracker")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--backend", choices=["local", "remote"],
                        help="Override the configured persistence backend")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("show", help="Print the board")

    add = sub.add_parser("add", help="Create a task")
    add.add_argument("title")
    add.add_argument("--description", default="")
    add.add_argument("--priority", choices=[p.value for p in TaskPriority], default="medium")
    add.add_argument("--due", default="", help="Due date, YYYY-MM-DD")
    add.add_argument("--status", choices=[s.value for s in TaskStatus], default="todo")

    edit = sub.add_parser("edit", help="Edit a task")
    edit.add_argument("task_id")
    edit.add_argument("--title")
    edit.add_argument("--description")
    edit.add_argument("--priority", choices=[p.value for p in TaskPriority])
    edit.add_argument("--due", help="Due date, YYYY-MM-DD ('' clears it)")

    move = sub.add_parser("move", help="Move a task to another column")
    move.add_argument("task_id")
    move.add_argument("status", choices=[s.value for s in TaskStatus])

    rm = sub.add_parser("rm", help="Delete a task")
    rm.add_argument("task_id")

    sub.add_parser("watch", help="Re-render on every remote change (Ctrl-C to stop)")
    return parser


def _print_board(view) -> None:
    print(render_board(view))


def _notify(message: str) -> None:
    print(f"❌ {message}", file=sys.stderr)


def resolve_task_id(board: BoardController, prefix: str) -> Optional[str]:
    """Expand a unique id prefix to the full task id."""
    matches = [t.id for t in board.store.all() if t.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        _notify(f"No task matches '{prefix}'")
    else:
        _notify(f"'{prefix}' is ambiguous ({len(matches)} tasks)")
    return None


async def run(args: argparse.Namespace, board: BoardController) -> int:
    result = await board.load()
    if not result.ok:
        return 1

    if args.command == "show":
        _print_board(board.view())
        return 0

    if args.command == "watch":
        _print_board(board.view())
        board.renderer = _print_board
        board.start()
        try:
            await asyncio.Event().wait()
        finally:
            board.stop()
        return 0

    if args.command == "add":
        result = await board.create_task({
            "title": args.title,
            "description": args.description,
            "priority": args.priority,
            "due_date": args.due,
            "status": args.status,
        })
    else:
        task_id = resolve_task_id(board, args.task_id)
        if task_id is None:
            return 1
        if args.command == "edit":
            changes = {
                name: value
                for name, value in (
                    ("title", args.title),
                    ("description", args.description),
                    ("priority", args.priority),
                    ("due_date", args.due),
                )
                if value is not None
            }
            result = await board.edit_task(task_id, changes)
        elif args.command == "move":
            result = await board.move_task(task_id, args.status)
        elif args.command == "rm":
            result = await board.delete_task(task_id)

    if result.ok:
        _print_board(board.view())
    return 0 if result.ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [taskboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        config = BoardConfig.load(args.config)
        if args.backend:
            config.backend = args.backend
            config.resolve()
        board = BoardController(create_adapter(config), notifier=_notify)
    except ConfigError as e:
        _notify(str(e))
        return 2

    try:
        return asyncio.run(run(args, board))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
