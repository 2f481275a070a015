"""Built-in console channel: one local conversation over stdin/stdout.

Opt-in via ``[plugins.console] enabled = true``. Useful for trying the host
without a chat network.
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import UTC, datetime
from typing import Any

from pincer.logger import logger
from pincer.plugin.hookspecs import hookimpl
from pincer.types import InboundMessage

CONSOLE_JID = "console:local"


class ConsoleChannel:
    name = "console"
    prefix_assistant_name = True

    def __init__(self, context: Any) -> None:
        self._context = context
        self._reader: asyncio.Task[None] | None = None

    async def connect(self) -> None:
        self._reader = asyncio.create_task(self._read_loop(), name="console-reader")
        logger.info("Console channel connected", jid=CONSOLE_JID)

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                return
            text = line.rstrip("\n")
            if not text.strip():
                continue
            self._context.on_inbound(
                InboundMessage(
                    id=uuid.uuid4().hex,
                    chat_jid=CONSOLE_JID,
                    sender="console",
                    sender_name="You",
                    content=text,
                    timestamp=datetime.now(UTC).isoformat(),
                )
            )

    async def send_message(self, jid: str, text: str) -> None:
        print(text, flush=True)

    def is_connected(self) -> bool:
        return self._reader is not None and not self._reader.done()

    def owns_jid(self, jid: str) -> bool:
        return jid == CONSOLE_JID

    async def disconnect(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None


class ConsoleChannelPlugin:
    @hookimpl
    def pincer_create_channel(self, context: Any) -> ConsoleChannel | None:
        if context is None:
            return None
        return ConsoleChannel(context)
