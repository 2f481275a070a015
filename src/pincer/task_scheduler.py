"""Task scheduler — runs scheduled tasks on their due dates."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from pincer.config import get_settings
from pincer.container_runner import run_container_agent, write_tasks_snapshot
from pincer.db import (
    get_all_tasks,
    get_due_tasks,
    get_task_by_id,
    log_task_run,
    update_task_after_run,
)
from pincer.logger import logger
from pincer.registry import FolderLocks, GroupRegistry
from pincer.types import (
    InvocationRequest,
    InvocationResult,
    RegisteredGroup,
    ScheduledTask,
    TaskRunLog,
)
from pincer.utils import compute_next_run, create_background_task

RunAgentFn = Callable[[RegisteredGroup, InvocationRequest], Awaitable[InvocationResult]]

RESULT_SUMMARY_LIMIT = 200


def summarize_result(result: str | None, error: str | None) -> str:
    if error:
        return f"Error: {error}"
    if result:
        return result[:RESULT_SUMMARY_LIMIT]
    return "Completed"


class TaskScheduler:
    """Polls for due tasks and runs each one under its folder lock.

    A tick never waits for the runs it starts; a task already in flight is
    not started again by later ticks.
    """

    def __init__(
        self,
        registry: GroupRegistry,
        locks: FolderLocks,
        run_agent: RunAgentFn | None = None,
    ) -> None:
        self._registry = registry
        self._locks = locks
        self._run_agent: RunAgentFn = run_agent or run_container_agent
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._running = False

    @property
    def in_flight(self) -> set[str]:
        return set(self._in_flight)

    async def start(self) -> None:
        """Run the polling loop until cancelled."""
        if self._running:
            logger.debug("Scheduler loop already running, skipping duplicate start")
            return
        self._running = True
        poll_interval = get_settings().scheduler.poll_interval
        logger.info("Scheduler loop started", poll_interval=poll_interval)
        try:
            while True:
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Error in scheduler loop")
                await asyncio.sleep(poll_interval)
        finally:
            self._running = False

    async def tick(self, now: str | None = None) -> list[asyncio.Task[None]]:
        """Launch every due, active task that is not already running."""
        due_tasks = await get_due_tasks(now)
        if due_tasks:
            logger.info("Found due tasks", count=len(due_tasks))

        launched: list[asyncio.Task[None]] = []
        for task in due_tasks:
            if task.id in self._in_flight:
                continue
            # Re-check task status (may have been paused/cancelled)
            current = await get_task_by_id(task.id)
            if current is None or current.status != "active":
                continue
            run = create_background_task(self.run_task(current), name=f"task-{current.id}")
            self._in_flight[current.id] = run
            launched.append(run)
        return launched

    async def run_task(self, task: ScheduledTask) -> None:
        """Run one task to completion and record the outcome."""
        try:
            group = self._registry.by_folder(task.group_folder)
            if group is None:
                # Left due on purpose: it runs again once the group is back.
                logger.error("Group not found for task", task_id=task.id, group=task.group_folder)
                await log_task_run(
                    TaskRunLog(
                        task_id=task.id,
                        run_at=datetime.now(UTC).isoformat(),
                        duration_ms=0,
                        status="error",
                        error=f"Group not found: {task.group_folder}",
                    )
                )
                return

            async with self._locks.lock_for(group.folder):
                # Re-check again: a pause may have landed while we waited for the lock
                current = await get_task_by_id(task.id)
                if current is None or current.status != "active":
                    logger.info("Task no longer active, skipping run", task_id=task.id)
                    return
                await self._execute(current, group)
        finally:
            self._in_flight.pop(task.id, None)

    async def _execute(self, task: ScheduledTask, group: RegisteredGroup) -> None:
        run_at = datetime.now(UTC).isoformat()
        start_time = time.monotonic()
        logger.info("Running scheduled task", task_id=task.id, group=task.group_folder)

        result: str | None = None
        error: str | None = None
        try:
            write_tasks_snapshot(task.group_folder, False, await get_all_tasks())
            output = await self._run_agent(
                group,
                InvocationRequest(
                    prompt=task.prompt,
                    group_folder=task.group_folder,
                    chat_jid=task.chat_jid,
                    is_main=False,
                ),
            )
            if output.status == "error":
                error = output.error or "Unknown error"
            else:
                result = output.result
        except Exception as exc:
            logger.exception("Task failed", task_id=task.id)
            error = str(exc) or type(exc).__name__

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "Task completed",
            task_id=task.id,
            duration_ms=round(duration_ms),
            status="error" if error else "success",
        )

        await log_task_run(
            TaskRunLog(
                task_id=task.id,
                run_at=run_at,
                duration_ms=duration_ms,
                status="error" if error else "success",
                result=result,
                error=error,
            )
        )

        try:
            next_run = compute_next_run(
                task.schedule_type, task.schedule_value, get_settings().timezone
            )
        except (ValueError, KeyError) as exc:
            # ZoneInfoNotFoundError is a KeyError
            logger.error("Cannot compute next run, completing task", task_id=task.id, err=str(exc))
            next_run = None

        await update_task_after_run(task.id, next_run, summarize_result(result, error), run_at)

    async def shutdown(self) -> None:
        """Wait for in-flight task runs."""
        if self._in_flight:
            logger.info("Waiting for in-flight tasks", count=len(self._in_flight))
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)
