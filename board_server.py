#!/usr/bin/env python3
"""
taskboard row service
---------------------
Remote backend for the board: a REST table API plus a realtime change feed,
backed by SQLite.

Usage:
    python board_server.py --port 3000 --db /var/lib/taskboard/rows.db

    # clients
    TASKBOARD_BACKEND=remote TASKBOARD_REMOTE_URL=http://localhost:3000 python -m taskboard show

API:
    GET    /rest/v1/tasks?order=created_at.desc → [row, ...]
    POST   /rest/v1/tasks                       → 201 row (id, created_at assigned)
    PATCH  /rest/v1/tasks/<id>                  → row, or 204 when no row matches
    DELETE /rest/v1/tasks/<id>                  → 204
    GET    /realtime/v1/tasks                   → text/event-stream of change events
    GET    /health

Mutations require X-API-Key when TASKBOARD_API_SECRET is set.

Dependencies:
    pip install flask
"""

import hmac
import json
import logging
import os
import queue
import sqlite3
import sys
import threading
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path

from flask import Flask, Response, jsonify, request, stream_with_context

from taskboard.faults import ValidationFault
from taskboard.schema import fields_to_row, make_task_id, validate_fields

logger = logging.getLogger("board_server")

DEFAULT_DB = Path.home() / ".local" / "share" / "taskboard" / "rows.db"
TABLE = "tasks"
SCHEMA = "public"
COLUMNS = ("id", "title", "description", "status", "priority", "due_date", "created_at")
KEEPALIVE_SECS = 15.0

app = Flask(__name__)


# ── Change feed ──────────────────────────────────────────────────────────────

class ChangeFeed:
    """Fans change events out to every open realtime stream."""

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: list = []
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def publish(self, event: str) -> None:
        message = {"event": event, "schema": SCHEMA, "table": TABLE}
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(message)
            except queue.Full:
                logger.warning("Realtime subscriber queue full, dropping event")

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


feed = ChangeFeed()


# ── Auth ─────────────────────────────────────────────────────────────────────

def _api_secret() -> str:
    return os.environ.get("TASKBOARD_API_SECRET", "")


def require_api_key(f):
    """Decorator: when a secret is configured, reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = _api_secret()
        if secret:
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, secret):
                code = 401 if not provided else 403
                return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Storage ──────────────────────────────────────────────────────────────────

def get_db_path() -> Path:
    env = os.environ.get("TASKBOARD_SERVER_DB")
    path = Path(env) if env else DEFAULT_DB
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row
    conn.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'todo',
            priority TEXT NOT NULL DEFAULT 'medium',
            due_date TEXT,
            created_at TEXT NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
    return conn


def _parse_order(order: str) -> str:
    """Translate 'column.desc' into an ORDER BY clause (known columns only)."""
    column, _, direction = (order or "created_at.desc").partition(".")
    if column not in COLUMNS:
        raise ValidationFault(f"Cannot order by {column}")
    direction = (direction or "asc").lower()
    if direction not in ("asc", "desc"):
        raise ValidationFault(f"Invalid order direction: {direction}")
    return f"{column} {direction.upper()}"


def _get_row(conn: sqlite3.Connection, row_id: str):
    row = conn.execute("SELECT * FROM tasks WHERE id = ?", (row_id,)).fetchone()
    return dict(row) if row else None


def _payload() -> dict:
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise ValidationFault("Request body must be a JSON object")
    return data


@app.errorhandler(ValidationFault)
def handle_validation(e: ValidationFault):
    return jsonify({"error": e.reason}), 400


# ── Routes ───────────────────────────────────────────────────────────────────

@app.route(f"/rest/v1/{TABLE}", methods=["GET"])
def list_rows():
    order_by = _parse_order(request.args.get("order", "created_at.desc"))
    with _connect() as conn:
        rows = conn.execute(f"SELECT * FROM tasks ORDER BY {order_by}").fetchall()
    return jsonify([dict(r) for r in rows])


@app.route(f"/rest/v1/{TABLE}", methods=["POST"])
@require_api_key
def insert_row():
    row = fields_to_row(validate_fields(_payload()))
    row["id"] = make_task_id()
    row["created_at"] = datetime.now(timezone.utc).isoformat()

    with _connect() as conn:
        conn.execute(
            f"INSERT INTO tasks ({', '.join(COLUMNS)}) VALUES ({', '.join('?' for _ in COLUMNS)})",
            tuple(row[c] for c in COLUMNS),
        )
        conn.commit()
        created = _get_row(conn, row["id"])

    logger.info(f"Inserted task {row['id']}")
    feed.publish("INSERT")
    return jsonify(created), 201


@app.route(f"/rest/v1/{TABLE}/<row_id>", methods=["PATCH"])
@require_api_key
def update_row(row_id):
    row = fields_to_row(validate_fields(_payload(), partial=True))

    with _connect() as conn:
        if row:
            assignments = ", ".join(f"{c} = ?" for c in row)
            cursor = conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                (*row.values(), row_id),
            )
            conn.commit()
            changed = cursor.rowcount
        else:
            changed = 0
        updated = _get_row(conn, row_id)

    if updated is None:
        return "", 204
    if changed:
        logger.info(f"Updated task {row_id}: {sorted(row)}")
        feed.publish("UPDATE")
    return jsonify(updated)


@app.route(f"/rest/v1/{TABLE}/<row_id>", methods=["DELETE"])
@require_api_key
def delete_row(row_id):
    with _connect() as conn:
        cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (row_id,))
        conn.commit()
    if cursor.rowcount:
        logger.info(f"Deleted task {row_id}")
        feed.publish("DELETE")
    return "", 204


def _sse(message: dict) -> str:
    return f"data: {json.dumps(message)}\n\n"


@app.route(f"/realtime/v1/{TABLE}")
def realtime():
    q = feed.subscribe()

    def stream():
        try:
            yield _sse({"type": "subscribed", "schema": SCHEMA, "table": TABLE})
            while True:
                try:
                    message = q.get(timeout=KEEPALIVE_SECS)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield _sse(message)
        finally:
            feed.unsubscribe(q)

    return Response(
        stream_with_context(stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": str(get_db_path()), "subscribers": len(feed)})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="taskboard row service")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to rows.db (overrides TASKBOARD_SERVER_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["TASKBOARD_SERVER_DB"] = args.db

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [board_server] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logger.info(f"Serving http://{args.host}:{args.port} (db={get_db_path()})")

    # threaded: each realtime stream holds a worker
    app.run(host=args.host, port=args.port, debug=False, threaded=True)
