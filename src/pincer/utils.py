"""Shared utility functions.

Small helpers used across multiple modules: timestamped IDs, schedule
calculations, atomic file writing, and background task management.
"""

from __future__ import annotations

import asyncio
import json
import os
import uuid
from collections.abc import Coroutine
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter

from pincer.logger import logger


def write_json_atomic(path: Path, data: Any, *, indent: int | None = None) -> None:
    """Write JSON data to a file using atomic rename (tmp → final).

    Readers either see the old content or the complete new content.
    Creates parent directories if they don't exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    with tmp.open("w") as f:
        f.write(json.dumps(data, indent=indent))
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(path)


def generate_task_id() -> str:
    ms = int(datetime.now(UTC).timestamp() * 1000)
    return f"task-{ms}-{uuid.uuid4().hex[:8]}"


def compute_next_run(
    schedule_type: str,
    schedule_value: str,
    timezone: str,
    now: datetime | None = None,
) -> str | None:
    """Compute the next run ISO timestamp for a scheduled task after a run.

    Always returns UTC isoformat so SQLite lexicographic comparison
    against ``datetime.now(UTC).isoformat()`` works in ``get_due_tasks()``.

    Returns None for 'once' tasks (no recurrence).
    Raises ValueError for invalid cron/interval values so callers can reject them.
    """
    now = now or datetime.now(UTC)

    if schedule_type == "cron":
        if not croniter.is_valid(schedule_value):
            raise ValueError(f"Invalid cron expression: {schedule_value}")
        cron = croniter(schedule_value, now.astimezone(ZoneInfo(timezone)))
        return cron.get_next(datetime).astimezone(UTC).isoformat()

    if schedule_type == "interval":
        ms = int(schedule_value)
        if ms <= 0:
            raise ValueError("Interval must be positive")
        return (now + timedelta(milliseconds=ms)).astimezone(UTC).isoformat()

    if schedule_type == "once":
        return None

    raise ValueError(f"Unknown schedule type: {schedule_type}")


def compute_first_run(
    schedule_type: str,
    schedule_value: str,
    timezone: str,
    now: datetime | None = None,
) -> str:
    """Compute the initial next_run for a newly scheduled task.

    'once' values are ISO timestamps; naive ones are read in *timezone*.
    """
    if schedule_type == "once":
        scheduled = datetime.fromisoformat(schedule_value)
        if scheduled.tzinfo is None:
            scheduled = scheduled.replace(tzinfo=ZoneInfo(timezone))
        return scheduled.astimezone(UTC).isoformat()

    next_run = compute_next_run(schedule_type, schedule_value, timezone, now)
    assert next_run is not None
    return next_run


def create_background_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str | None = None,
) -> asyncio.Task[Any]:
    """Create an asyncio task that logs exceptions instead of swallowing them.

    A drop-in replacement for ``asyncio.create_task`` for fire-and-forget
    work where we don't await the result but still want failures in logs.
    """
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task[Any]) -> None:
    """Callback attached to background tasks — logs unhandled exceptions."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # logger.exception() won't work here: we're in a done-callback,
        # not an except handler.
        logger.error(
            "Background task failed",
            task_name=task.get_name(),
            exc_info=exc,
        )
