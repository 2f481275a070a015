"""IPC snapshot helpers — written before container launch for agent to read."""

from __future__ import annotations

from pincer.config import get_settings
from pincer.types import ScheduledTask
from pincer.utils import write_json_atomic

TASKS_SNAPSHOT = "current_tasks.json"


def write_tasks_snapshot(folder: str, is_main: bool, tasks: list[ScheduledTask]) -> None:
    """Write current_tasks.json to the group's IPC directory.

    Main sees every task; other groups see only their own.
    """
    visible = tasks if is_main else [t for t in tasks if t.group_folder == folder]
    write_json_atomic(
        get_settings().data_dir / "ipc" / folder / TASKS_SNAPSHOT,
        [t.to_snapshot_dict() for t in visible],
        indent=2,
    )
