"""Handler registry for IPC envelope types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pincer.errors import EnvelopeValidationError
from pincer.ipc._deps import IpcDeps

# type -> async handler(envelope, source_folder, is_main, deps)
Handler = Callable[[Any, str, bool, IpcDeps], Awaitable[None]]

HANDLERS: dict[str, Handler] = {}


def register(type_name: str, handler: Handler) -> None:
    """Register a handler for an envelope type.

    Called at module import time by each handler module to wire up their
    handlers.  Duplicate registrations silently overwrite (last-write-wins).
    """
    HANDLERS[type_name] = handler


async def dispatch(envelope: Any, source_folder: str, is_main: bool, deps: IpcDeps) -> None:
    """Dispatch a validated envelope to its registered handler."""
    handler = HANDLERS.get(envelope.type)
    if handler is None:
        raise EnvelopeValidationError(f"No handler for envelope type {envelope.type!r}")
    await handler(envelope, source_folder, is_main, deps)
