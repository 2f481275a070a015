"""SQLite database layer.

All functions are async using aiosqlite.
Module-level connection, initialized by init_database().

This package is split into domain-specific submodules:
  _connection  — connection and schema
  tasks        — scheduled task CRUD and run logging
  sessions     — agent session ids per working folder
  groups       — registered groups
  envelopes    — delivered IPC message receipts
"""

# Re-export every public symbol so that `from pincer.db import X` keeps working.

from pincer.db._connection import _get_db, _init_test_database, close_database, init_database
from pincer.db.envelopes import is_envelope_delivered, mark_envelope_delivered
from pincer.db.groups import (
    get_all_registered_groups,
    get_registered_group,
    set_registered_group,
)
from pincer.db.sessions import clear_session, get_session, set_session
from pincer.db.tasks import (
    create_task,
    get_all_tasks,
    get_due_tasks,
    get_task_by_id,
    get_task_run_logs,
    get_tasks_for_group,
    log_task_run,
    set_task_status,
    update_task,
    update_task_after_run,
)

__all__ = [
    # connection
    "_get_db",
    "_init_test_database",
    "close_database",
    "init_database",
    # envelopes
    "is_envelope_delivered",
    "mark_envelope_delivered",
    # groups
    "get_all_registered_groups",
    "get_registered_group",
    "set_registered_group",
    # sessions
    "clear_session",
    "get_session",
    "set_session",
    # tasks
    "create_task",
    "get_all_tasks",
    "get_due_tasks",
    "get_task_by_id",
    "get_task_run_logs",
    "get_tasks_for_group",
    "log_task_run",
    "set_task_status",
    "update_task",
    "update_task_after_run",
]
