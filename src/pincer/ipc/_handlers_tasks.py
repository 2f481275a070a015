"""IPC handlers for task scheduling and lifecycle (pause/resume/cancel)."""

from __future__ import annotations

from datetime import UTC, datetime

from pincer.config import get_settings
from pincer.db import create_task, get_task_by_id, set_task_status
from pincer.errors import IpcRequestError
from pincer.ipc._deps import IpcDeps
from pincer.ipc._protocol import (
    CancelTaskEnvelope,
    PauseTaskEnvelope,
    ResumeTaskEnvelope,
    ScheduleTaskEnvelope,
)
from pincer.ipc._registry import register
from pincer.logger import logger
from pincer.types import ScheduledTask, TaskStatus
from pincer.utils import compute_first_run, generate_task_id


async def _handle_schedule_task(
    envelope: ScheduleTaskEnvelope,
    source_folder: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    target_folder = envelope.target_folder or source_folder

    if not is_main and target_folder != source_folder:
        raise IpcRequestError(
            f"Unauthorized schedule_task from {source_folder!r} for {target_folder!r}"
        )

    target_group = next(
        (g for g in deps.registered_groups().values() if g.folder == target_folder),
        None,
    )
    if target_group is None:
        raise IpcRequestError(f"Cannot schedule task: no group uses folder {target_folder!r}")

    try:
        next_run = compute_first_run(
            envelope.schedule_type, envelope.schedule_value, get_settings().timezone
        )
    except (ValueError, TypeError, KeyError) as exc:
        raise IpcRequestError(
            f"Invalid {envelope.schedule_type} value {envelope.schedule_value!r}: {exc}"
        ) from exc

    task = ScheduledTask(
        id=generate_task_id(),
        group_folder=target_folder,
        chat_jid=target_group.jid,
        prompt=envelope.prompt,
        schedule_type=envelope.schedule_type,
        schedule_value=envelope.schedule_value,
        next_run=next_run,
        status="active",
        created_at=datetime.now(UTC).isoformat(),
    )
    await create_task(task)
    logger.info(
        "Task created via IPC",
        task_id=task.id,
        source_group=source_folder,
        target_folder=target_folder,
        next_run=next_run,
    )


async def _authorized_status_change(
    task_id: str,
    source_folder: str,
    is_main: bool,
    action_name: str,
    allowed_from: set[TaskStatus],
    new_status: TaskStatus,
) -> None:
    """Fetch a task, verify ownership and current status, then move it to *new_status*.

    Main may act on any folder's tasks; other groups only on their own.
    """
    task = await get_task_by_id(task_id)
    if task is None:
        raise IpcRequestError(f"Task {task_id} not found")
    if not is_main and task.group_folder != source_folder:
        raise IpcRequestError(f"Unauthorized task {action_name} attempt on {task_id}")
    if task.status == new_status:
        logger.info(f"Task already {new_status}", task_id=task_id, source_group=source_folder)
        return
    if task.status not in allowed_from:
        raise IpcRequestError(f"Cannot {action_name} task {task_id} in status {task.status!r}")

    await set_task_status(task_id, new_status)
    logger.info(f"Task {new_status} via IPC", task_id=task_id, source_group=source_folder)


async def _handle_pause_task(
    envelope: PauseTaskEnvelope,
    source_folder: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    await _authorized_status_change(
        envelope.task_id, source_folder, is_main, "pause", {"active"}, "paused"
    )


async def _handle_resume_task(
    envelope: ResumeTaskEnvelope,
    source_folder: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    await _authorized_status_change(
        envelope.task_id, source_folder, is_main, "resume", {"paused"}, "active"
    )


async def _handle_cancel_task(
    envelope: CancelTaskEnvelope,
    source_folder: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    await _authorized_status_change(
        envelope.task_id, source_folder, is_main, "cancel", {"active", "paused"}, "cancelled"
    )


register("schedule_task", _handle_schedule_task)
register("pause_task", _handle_pause_task)
register("resume_task", _handle_resume_task)
register("cancel_task", _handle_cancel_task)
