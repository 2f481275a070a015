"""IPC envelope definitions and validation.

Envelopes are JSON objects discriminated by ``type``. ``groupFolder`` and
``isMain`` are informational only: the host derives the source folder from
the mailbox directory and privilege from the group registry.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from pincer.errors import EnvelopeValidationError


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    group_folder: str | None = Field(default=None, alias="groupFolder")
    is_main: bool | None = Field(default=None, alias="isMain")
    timestamp: str | None = None


class MessageEnvelope(_Envelope):
    type: Literal["message"]
    chat_jid: str = Field(alias="chatJid", min_length=1)
    text: str = Field(min_length=1)


class ScheduleTaskEnvelope(_Envelope):
    type: Literal["schedule_task"]
    prompt: str = Field(min_length=1)
    schedule_type: Literal["cron", "interval", "once"]
    schedule_value: str = Field(min_length=1)
    target_folder: str | None = Field(default=None, alias="targetFolder")


class PauseTaskEnvelope(_Envelope):
    type: Literal["pause_task"]
    task_id: str = Field(alias="taskId", min_length=1)


class ResumeTaskEnvelope(_Envelope):
    type: Literal["resume_task"]
    task_id: str = Field(alias="taskId", min_length=1)


class CancelTaskEnvelope(_Envelope):
    type: Literal["cancel_task"]
    task_id: str = Field(alias="taskId", min_length=1)


Envelope = Annotated[
    MessageEnvelope
    | ScheduleTaskEnvelope
    | PauseTaskEnvelope
    | ResumeTaskEnvelope
    | CancelTaskEnvelope,
    Field(discriminator="type"),
]

_envelope_adapter: TypeAdapter[Envelope] = TypeAdapter(Envelope)

# Which envelope types may appear in which mailbox subdirectory
MAILBOX_TYPES: dict[str, frozenset[str]] = {
    "messages": frozenset({"message"}),
    "tasks": frozenset({"schedule_task", "pause_task", "resume_task", "cancel_task"}),
}


def parse_envelope(data: Any, mailbox: str | None = None) -> Envelope:
    """Validate raw JSON data as an envelope.

    Raises EnvelopeValidationError on shape errors or when the type does not
    belong in *mailbox*.
    """
    try:
        envelope = _envelope_adapter.validate_python(data)
    except ValidationError as exc:
        raise EnvelopeValidationError(f"Invalid envelope: {exc.error_count()} error(s): {exc}") from exc
    if mailbox is not None and envelope.type not in MAILBOX_TYPES.get(mailbox, frozenset()):
        raise EnvelopeValidationError(f"Envelope type {envelope.type!r} not accepted in {mailbox}/")
    return envelope


def read_envelope(file_path: Path, mailbox: str) -> Envelope:
    """Read and validate an envelope file; its id defaults to the file stem."""
    try:
        data = json.loads(file_path.read_text())
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise EnvelopeValidationError(f"Envelope is not valid JSON: {exc}") from exc
    envelope = parse_envelope(data, mailbox)
    if not envelope.id:
        envelope.id = file_path.stem
    return envelope


def envelope_to_dict(envelope: _Envelope) -> dict[str, Any]:
    """Wire form (camelCase aliases, unset fields dropped)."""
    return envelope.model_dump(by_alias=True, exclude_none=True)
