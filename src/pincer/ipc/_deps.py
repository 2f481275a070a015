"""Host services the IPC handlers depend on."""

from __future__ import annotations

from typing import Protocol

from pincer.types import RegisteredGroup


class IpcDeps(Protocol):
    """Dependencies for IPC processing."""

    def registered_groups(self) -> dict[str, RegisteredGroup]: ...

    async def send_message(self, jid: str, text: str) -> None: ...
