from __future__ import annotations

import pytest

from conftest import make_group
from pincer.db import (
    clear_session,
    close_database,
    create_task,
    get_all_registered_groups,
    get_all_tasks,
    get_due_tasks,
    get_registered_group,
    get_session,
    get_task_by_id,
    get_task_run_logs,
    get_tasks_for_group,
    init_database,
    is_envelope_delivered,
    log_task_run,
    mark_envelope_delivered,
    set_registered_group,
    set_session,
    set_task_status,
    update_task,
    update_task_after_run,
)
from pincer.types import AdditionalMount, ContainerConfig, ScheduledTask, TaskRunLog

PAST = "2000-01-01T00:00:00+00:00"
FUTURE = "2999-01-01T00:00:00+00:00"


def _task(task_id: str = "t1", **overrides) -> ScheduledTask:
    defaults = {
        "id": task_id,
        "group_folder": "acme",
        "chat_jid": "acme@g.us",
        "prompt": "summarize the news",
        "schedule_type": "interval",
        "schedule_value": "3600000",
        "next_run": PAST,
        "status": "active",
        "created_at": "2024-01-01T00:00:00+00:00",
    }
    defaults.update(overrides)
    return ScheduledTask(**defaults)


pytestmark = pytest.mark.usefixtures("db")


class TestDatabaseFile:
    async def test_reopening_existing_file_keeps_rows(self, settings):
        await close_database()
        await init_database()
        await set_session("acme", "s-1")
        await create_task(_task())
        await close_database()

        await init_database()

        assert (settings.store_dir / "pincer.db").is_file()
        assert await get_session("acme") == "s-1"
        assert [t.id for t in await get_all_tasks()] == ["t1"]


class TestTasks:
    async def test_create_and_get(self):
        await create_task(_task())
        task = await get_task_by_id("t1")
        assert task is not None
        assert task.prompt == "summarize the news"
        assert task.status == "active"
        assert task.last_run is None

    async def test_missing_task_is_none(self):
        assert await get_task_by_id("nope") is None

    async def test_tasks_for_group(self):
        await create_task(_task("t1"))
        await create_task(_task("t2", group_folder="other"))
        tasks = await get_tasks_for_group("acme")
        assert [t.id for t in tasks] == ["t1"]
        assert len(await get_all_tasks()) == 2

    async def test_due_tasks_only_active_and_past(self):
        await create_task(_task("due"))
        await create_task(_task("later", next_run=FUTURE))
        await create_task(_task("paused", status="paused"))
        await create_task(_task("done", next_run=None, status="completed"))

        due = await get_due_tasks()
        assert [t.id for t in due] == ["due"]

    async def test_due_tasks_ordered_by_next_run(self):
        await create_task(_task("b", next_run="2000-01-02T00:00:00+00:00"))
        await create_task(_task("a", next_run="2000-01-01T00:00:00+00:00"))
        assert [t.id for t in await get_due_tasks()] == ["a", "b"]

    async def test_update_task_ignores_unknown_fields(self):
        await create_task(_task())
        await update_task("t1", {"prompt": "new prompt", "id": "hijack"})
        task = await get_task_by_id("t1")
        assert task.prompt == "new prompt"
        assert await get_task_by_id("hijack") is None

    async def test_cancel_clears_next_run(self):
        await create_task(_task())
        await set_task_status("t1", "cancelled")
        task = await get_task_by_id("t1")
        assert task.status == "cancelled"
        assert task.next_run is None

    async def test_pause_keeps_next_run(self):
        await create_task(_task())
        await set_task_status("t1", "paused")
        task = await get_task_by_id("t1")
        assert task.status == "paused"
        assert task.next_run == PAST


class TestUpdateTaskAfterRun:
    async def test_recurring_task_advances(self):
        await create_task(_task())
        await update_task_after_run("t1", FUTURE, "ok", run_at="2024-01-01T00:00:00+00:00")
        task = await get_task_by_id("t1")
        assert task.next_run == FUTURE
        assert task.status == "active"
        assert task.last_result == "ok"
        assert task.last_run == "2024-01-01T00:00:00+00:00"

    async def test_no_next_run_completes_task(self):
        await create_task(_task(schedule_type="once", schedule_value=PAST))
        await update_task_after_run("t1", None, "ok")
        task = await get_task_by_id("t1")
        assert task.status == "completed"
        assert task.next_run is None

    async def test_cancel_during_run_is_not_resurrected(self):
        await create_task(_task())
        await set_task_status("t1", "cancelled")
        await update_task_after_run("t1", FUTURE, "ok")
        task = await get_task_by_id("t1")
        assert task.status == "cancelled"
        assert task.next_run is None
        assert task.last_result == "ok"

    async def test_pause_during_run_stays_paused(self):
        await create_task(_task())
        await set_task_status("t1", "paused")
        await update_task_after_run("t1", FUTURE, "ok")
        task = await get_task_by_id("t1")
        assert task.status == "paused"
        assert task.next_run == FUTURE


class TestRunLogs:
    async def test_logs_are_appended_newest_first(self):
        await create_task(_task())
        await log_task_run(
            TaskRunLog(task_id="t1", run_at="2024-01-01T00:00:00+00:00", duration_ms=12.7,
                       status="success", result="first")
        )
        await log_task_run(
            TaskRunLog(task_id="t1", run_at="2024-01-02T00:00:00+00:00", duration_ms=5,
                       status="error", error="boom")
        )

        logs = await get_task_run_logs("t1")
        assert [log.status for log in logs] == ["error", "success"]
        assert logs[0].error == "boom"
        assert logs[1].result == "first"
        assert logs[1].duration_ms == 12

    async def test_limit(self):
        await create_task(_task())
        for day in range(1, 6):
            await log_task_run(
                TaskRunLog(task_id="t1", run_at=f"2024-01-0{day}T00:00:00+00:00",
                           duration_ms=1, status="success")
            )
        logs = await get_task_run_logs("t1", limit=2)
        assert [log.run_at[:10] for log in logs] == ["2024-01-05", "2024-01-04"]


class TestSessions:
    async def test_set_get_clear(self):
        assert await get_session("acme") is None
        await set_session("acme", "s-1")
        await set_session("acme", "s-2")
        assert await get_session("acme") == "s-2"
        await clear_session("acme")
        assert await get_session("acme") is None


class TestGroups:
    async def test_round_trip(self):
        group = make_group(
            "acme",
            allowed_senders=["alice@s.whatsapp.net"],
            container_config=ContainerConfig(
                additional_mounts=[AdditionalMount(host_path="~/docs", readonly=False)],
                timeout=30,
            ),
        )
        await set_registered_group(group)

        loaded = await get_registered_group("acme@g.us")
        assert loaded == group

    async def test_invalid_folder_rejected(self):
        with pytest.raises(ValueError, match="Invalid group"):
            await set_registered_group(make_group("../etc"))

    async def test_all_groups_keyed_by_jid(self):
        await set_registered_group(make_group("acme"))
        await set_registered_group(make_group("main", is_main=True))
        groups = await get_all_registered_groups()
        assert set(groups) == {"acme@g.us", "main@g.us"}
        assert groups["main@g.us"].is_main is True


class TestEnvelopes:
    async def test_mark_and_check(self):
        assert not await is_envelope_delivered("acme/e1")
        await mark_envelope_delivered("acme/e1", "acme")
        await mark_envelope_delivered("acme/e1", "acme")
        assert await is_envelope_delivered("acme/e1")
