# Single-board task tracker: in-memory state kept in sync with a persistence backend
#
# Components:
#   schema.py      - Data model (Task, TaskStatus, TaskPriority) and field validation
#   store.py       - In-memory TaskStore (single source of truth for rendering)
#   view.py        - Pure view derivation (columns, counts, overdue flags)
#   adapters.py    - SyncAdapter contract with local snapshot and remote row variants
#   snapshot.py    - SQLite key/blob store backing the local variant
#   rest_client.py - HTTP row service client backing the remote variant
#   realtime.py    - Change-notification channel for the remote variant
#   board.py       - BoardController: the event-handling entry points
#   render.py      - Plain-text board rendering
#   config.py      - YAML + environment configuration
#   cli.py         - Command line front-end
