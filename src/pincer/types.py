"""Data models for Pincer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable

_FOLDER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
RESERVED_FOLDERS = frozenset({"global", "errors", "logs"})

ScheduleType = Literal["cron", "interval", "once"]
TaskStatus = Literal["active", "paused", "cancelled", "completed"]


@dataclass
class AdditionalMount:
    host_path: str  # Absolute path on host (supports ~ for home)
    container_path: str | None = None  # Defaults to basename of host_path
    readonly: bool = True  # Default: true for safety


@dataclass
class ContainerConfig:
    additional_mounts: list[AdditionalMount] = field(default_factory=list)
    timeout: float | None = None  # Seconds (default: container.timeout_ms)

    @classmethod
    def from_dict(cls, raw: dict) -> ContainerConfig:
        return cls(
            additional_mounts=[AdditionalMount(**m) for m in raw.get("additional_mounts", [])],
            timeout=raw.get("timeout"),
        )


@dataclass
class RegisteredGroup:
    jid: str  # Stable chat identifier
    name: str  # Display name
    folder: str  # Folder under groups/ (unique, immutable)
    trigger: str  # @mention to activate (e.g., "@Pincer")
    added_at: str = ""
    requires_trigger: bool = True  # False for 1-on-1 chats
    allowed_senders: list[str] | None = None  # None = anyone in the chat
    container_config: ContainerConfig | None = None
    is_main: bool = False

    def validate(self) -> list[str]:
        """Validate group configuration.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []
        if not self.jid:
            errors.append("Group jid is required")
        if not self.name:
            errors.append("Group name is required")
        if not is_valid_folder(self.folder):
            errors.append(
                f"Invalid folder name {self.folder!r}: use letters, digits, '-' or '_' "
                f"and avoid {', '.join(sorted(RESERVED_FOLDERS))}"
            )
        if not self.trigger:
            errors.append("Group trigger is required")
        return errors


def is_valid_folder(folder: str) -> bool:
    return bool(_FOLDER_RE.match(folder)) and folder.lower() not in RESERVED_FOLDERS


@dataclass
class InboundMessage:
    id: str
    chat_jid: str
    sender: str
    sender_name: str
    content: str
    timestamp: str


@dataclass
class Attachment:
    """Inline binary payload (e.g. an image) handed to the next invocation."""

    mime_type: str
    data: str  # base64
    name: str | None = None


@dataclass
class ScheduledTask:
    id: str
    group_folder: str
    chat_jid: str
    prompt: str
    schedule_type: ScheduleType
    schedule_value: str
    next_run: str | None = None
    last_run: str | None = None
    last_result: str | None = None
    status: TaskStatus = "active"
    created_at: str = ""

    def to_snapshot_dict(self) -> dict[str, str | None]:
        """Serialize to the dict format written to current_tasks.json."""
        return {
            "id": self.id,
            "groupFolder": self.group_folder,
            "prompt": self.prompt,
            "schedule_type": self.schedule_type,
            "schedule_value": self.schedule_value,
            "status": self.status,
            "next_run": self.next_run,
        }


@dataclass
class TaskRunLog:
    task_id: str
    run_at: str
    duration_ms: float
    status: Literal["success", "error"]
    result: str | None = None
    error: str | None = None


@dataclass
class InvocationRequest:
    prompt: str
    group_folder: str
    chat_jid: str
    is_main: bool
    session_id: str | None = None
    attachment: Attachment | None = None


@dataclass
class InvocationResult:
    status: Literal["success", "error"]
    result: str | None = None
    new_session_id: str | None = None
    error: str | None = None


@dataclass
class VolumeMount:
    host_path: str
    container_path: str
    readonly: bool = False


# --- Channel abstraction ---


@runtime_checkable
class Channel(Protocol):
    name: str

    async def connect(self) -> None: ...

    async def send_message(self, jid: str, text: str) -> None: ...

    def is_connected(self) -> bool: ...

    def owns_jid(self, jid: str) -> bool: ...

    async def disconnect(self) -> None: ...

    # Whether to prefix outbound messages with the assistant name.
    # Some channels (e.g. Telegram bots) already display their name, so they return false.
    # prefix_assistant_name is NOT part of the protocol; read it with getattr.
