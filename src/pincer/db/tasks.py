"""Scheduled tasks and their append-only run history.

Timestamps are UTC isoformat strings, so ``next_run <= now`` compares
correctly as text.
"""

from __future__ import annotations

from dataclasses import astuple, fields, replace
from datetime import UTC, datetime
from typing import Any

from pincer.db._connection import _get_db, _update_by_id
from pincer.types import ScheduledTask, TaskRunLog, TaskStatus

_TASK_COLUMNS = tuple(f.name for f in fields(ScheduledTask))
_RUN_COLUMNS = tuple(f.name for f in fields(TaskRunLog))

_TASK_UPDATE_FIELDS = {"prompt", "schedule_type", "schedule_value", "next_run", "status"}


async def _select_tasks(
    where: str = "", params: tuple = (), order: str = "created_at DESC"
) -> list[ScheduledTask]:
    query = f"SELECT {', '.join(_TASK_COLUMNS)} FROM scheduled_tasks"
    if where:
        query += f" WHERE {where}"
    cursor = await _get_db().execute(f"{query} ORDER BY {order}", params)
    return [ScheduledTask(*row) for row in await cursor.fetchall()]


async def create_task(task: ScheduledTask) -> None:
    row = astuple(replace(task, created_at=task.created_at or datetime.now(UTC).isoformat()))
    placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
    db = _get_db()
    await db.execute(
        f"INSERT INTO scheduled_tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
        row,
    )
    await db.commit()


async def get_task_by_id(task_id: str) -> ScheduledTask | None:
    tasks = await _select_tasks("id = ?", (task_id,))
    return tasks[0] if tasks else None


async def get_tasks_for_group(group_folder: str) -> list[ScheduledTask]:
    """Tasks owned by one working folder, newest first."""
    return await _select_tasks("group_folder = ?", (group_folder,))


async def get_all_tasks() -> list[ScheduledTask]:
    return await _select_tasks()


async def get_due_tasks(now: str | None = None) -> list[ScheduledTask]:
    """Active tasks whose next_run is at or before *now*, earliest first."""
    return await _select_tasks(
        "status = 'active' AND next_run IS NOT NULL AND next_run <= ?",
        (now or datetime.now(UTC).isoformat(),),
        order="next_run",
    )


async def update_task(task_id: str, updates: dict[str, Any]) -> None:
    await _update_by_id("scheduled_tasks", task_id, updates, _TASK_UPDATE_FIELDS)


async def set_task_status(task_id: str, status: TaskStatus) -> None:
    """Move a task to *status*. Cancelling also clears next_run."""
    updates: dict[str, Any] = {"status": status}
    if status == "cancelled":
        updates["next_run"] = None
    await update_task(task_id, updates)


async def update_task_after_run(
    task_id: str,
    next_run: str | None,
    last_result: str,
    run_at: str | None = None,
) -> None:
    """Record the outcome of a run on the task row.

    Status changes that landed while the run was in flight win: a cancelled
    task keeps ``next_run = NULL`` and a paused task stays paused. A task with
    no further occurrence becomes ``completed`` unless it was cancelled.
    """
    db = _get_db()
    run_at = run_at or datetime.now(UTC).isoformat()
    await db.execute(
        """
        UPDATE scheduled_tasks
        SET last_run = ?,
            last_result = ?,
            next_run = CASE WHEN status = 'cancelled' THEN NULL ELSE ? END,
            status = CASE
                WHEN status = 'cancelled' THEN status
                WHEN ? IS NULL THEN 'completed'
                ELSE status
            END
        WHERE id = ?
        """,
        (run_at, last_result, next_run, next_run, task_id),
    )
    await db.commit()


async def log_task_run(log: TaskRunLog) -> None:
    """Append a run record. Run records are never updated or deleted."""
    row = (log.task_id, log.run_at, int(log.duration_ms), log.status, log.result, log.error)
    db = _get_db()
    await db.execute(
        f"INSERT INTO task_run_logs ({', '.join(_RUN_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?)",
        row,
    )
    await db.commit()


async def get_task_run_logs(task_id: str, limit: int = 20) -> list[TaskRunLog]:
    """Most recent runs of a task, newest first."""
    cursor = await _get_db().execute(
        f"SELECT {', '.join(_RUN_COLUMNS)} FROM task_run_logs"
        " WHERE task_id = ? ORDER BY run_at DESC, id DESC LIMIT ?",
        (task_id, limit),
    )
    return [TaskRunLog(*row) for row in await cursor.fetchall()]
