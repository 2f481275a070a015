"""Agent-side IPC client.

Runs inside the isolated process. Writes envelopes into the mounted
mailbox and answers task listings from the host-published snapshot.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pincer.ipc._write import write_envelope

DEFAULT_IPC_DIR = Path("/workspace/ipc")
TASKS_SNAPSHOT = "current_tasks.json"


class AgentIpcClient:
    def __init__(
        self,
        group_folder: str,
        chat_jid: str,
        is_main: bool,
        ipc_dir: Path = DEFAULT_IPC_DIR,
    ) -> None:
        self.group_folder = group_folder
        self.chat_jid = chat_jid
        self.is_main = is_main
        self.ipc_dir = ipc_dir

    def _write(self, mailbox: str, payload: dict[str, Any]) -> str:
        data = {
            **payload,
            "groupFolder": self.group_folder,
            "isMain": self.is_main,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        return write_envelope(self.ipc_dir / mailbox, data).name

    def send_message(self, text: str, chat_jid: str | None = None) -> str:
        """Queue a chat message. Only main may target another conversation."""
        return self._write(
            "messages",
            {"type": "message", "chatJid": chat_jid or self.chat_jid, "text": text},
        )

    def schedule_task(
        self,
        prompt: str,
        schedule_type: str,
        schedule_value: str,
        target_folder: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "type": "schedule_task",
            "prompt": prompt,
            "schedule_type": schedule_type,
            "schedule_value": schedule_value,
        }
        if target_folder:
            payload["targetFolder"] = target_folder
        return self._write("tasks", payload)

    def pause_task(self, task_id: str) -> str:
        return self._write("tasks", {"type": "pause_task", "taskId": task_id})

    def resume_task(self, task_id: str) -> str:
        return self._write("tasks", {"type": "resume_task", "taskId": task_id})

    def cancel_task(self, task_id: str) -> str:
        return self._write("tasks", {"type": "cancel_task", "taskId": task_id})

    def list_tasks(self) -> list[dict[str, Any]]:
        """Tasks from the snapshot the host wrote before this run.

        Non-main groups only see their own folder's tasks.
        """
        snapshot = self.ipc_dir / TASKS_SNAPSHOT
        if not snapshot.exists():
            return []
        tasks = json.loads(snapshot.read_text())
        if self.is_main:
            return tasks
        return [t for t in tasks if t.get("groupFolder") == self.group_folder]


def format_task_list(tasks: list[dict[str, Any]]) -> str:
    if not tasks:
        return "No scheduled tasks found."
    lines = [
        f"- [{t['id']}] {t['prompt'][:50]}... ({t['schedule_type']}: {t['schedule_value']})"
        f" - {t['status']}, next: {t.get('next_run') or 'N/A'}"
        for t in tasks
    ]
    return "Scheduled tasks:\n" + "\n".join(lines)
