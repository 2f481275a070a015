"""Host wiring: channels, group queue, scheduler and IPC watcher."""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Any

from pincer.config import get_settings
from pincer.container_runner import run_container_agent, write_tasks_snapshot
from pincer.db import close_database, get_all_tasks, get_session, init_database, set_session
from pincer.group_queue import GroupQueue
from pincer.ipc import start_ipc_watcher
from pincer.logger import logger, set_log_level
from pincer.plugin import PluginContext, create_channels, get_plugin_manager
from pincer.registry import FolderLocks, GroupRegistry
from pincer.router import find_channel, format_messages, route_outbound, should_trigger
from pincer.runtime import get_runtime
from pincer.task_scheduler import TaskScheduler
from pincer.types import Attachment, Channel, InboundMessage, InvocationRequest, RegisteredGroup
from pincer.utils import create_background_task


class PincerApp:
    """Main application class — owns all runtime state and wires subsystems."""

    def __init__(self) -> None:
        self.registry = GroupRegistry()
        self.locks = FolderLocks()
        self.queue = GroupQueue(self.registry, self.locks)
        self.scheduler = TaskScheduler(self.registry, self.locks)
        self.channels: list[Channel] = []
        self._background: list[asyncio.Task[Any]] = []
        self._stopped = asyncio.Event()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _on_inbound(self, message: InboundMessage) -> None:
        """Called by channels for every inbound message, in delivery order."""
        group = self.registry.get(message.chat_jid)
        if group is None:
            logger.debug("Message for unregistered chat ignored", chat_jid=message.chat_jid)
            return
        if not should_trigger(group, message):
            logger.debug("Message did not trigger agent", chat_jid=message.chat_jid)
            return
        self.queue.enqueue(message.chat_jid, message)

    def _stage_attachment(self, chat_jid: str, attachment: Attachment) -> None:
        if self.registry.get(chat_jid) is None:
            return
        self.queue.stage_attachment(chat_jid, attachment)

    async def _process_group_messages(
        self,
        chat_jid: str,
        messages: list[InboundMessage],
        attachment: Attachment | None,
    ) -> bool:
        """Run the agent for one coalesced batch. Called with the folder lock held."""
        group = self.registry.get(chat_jid)
        if group is None:
            return False

        try:
            write_tasks_snapshot(group.folder, group.is_main, await get_all_tasks())
            request = InvocationRequest(
                prompt=format_messages(messages),
                group_folder=group.folder,
                chat_jid=chat_jid,
                is_main=group.is_main,
                session_id=await get_session(group.folder),
                attachment=attachment,
            )
            result = await run_container_agent(group, request)
            if result.new_session_id:
                await set_session(group.folder, result.new_session_id)
        except Exception as exc:
            logger.exception("Agent invocation failed", group=group.name)
            await self._send_error_notice(group, str(exc))
            return False

        if result.status == "error":
            logger.error("Agent run failed", group=group.name, err=result.error)
            await self._send_error_notice(group, result.error)
            return False

        if result.result:
            await self._send(chat_jid, result.result)
        return True

    async def _send_error_notice(self, group: RegisteredGroup, error: str | None) -> None:
        kind = "timeout" if error and "timed out" in error else "error"
        await self._send(group.jid, f"Sorry, something went wrong ({kind}).")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, jid: str, text: str) -> None:
        """Best-effort delivery; failures are logged, never raised."""
        try:
            await route_outbound(self.channels, jid, text)
        except Exception as exc:
            logger.warning("Failed to deliver message", jid=jid, err=str(exc))

    async def _send_ipc_message(self, jid: str, text: str) -> None:
        """IPC delivery raises so the envelope stays queued for the next poll."""
        if find_channel(self.channels, jid) is None:
            raise RuntimeError(f"No channel for JID: {jid}")
        await route_outbound(self.channels, jid, text)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def _connect_plugin_channels(self) -> None:
        pm = get_plugin_manager()
        context = PluginContext(
            registered_groups=self.registry.all,
            on_inbound=self._on_inbound,
            stage_attachment=self._stage_attachment,
            send_message=self._send,
        )
        for channel in create_channels(pm, context):
            try:
                await channel.connect()
            except Exception:
                logger.exception("Failed to connect channel", channel=getattr(channel, "name", "?"))
                continue
            self.channels.append(channel)
            logger.info("Channel connected", channel=channel.name)

        if not self.channels:
            logger.warning("No chat channels connected; only scheduled tasks will run")

    def _make_ipc_deps(self) -> Any:
        """Create the dependency object for the IPC watcher."""
        app = self

        class _Deps:
            def registered_groups(self) -> dict[str, RegisteredGroup]:
                return app.registry.all()

            async def send_message(self, jid: str, text: str) -> None:
                await app._send_ipc_message(jid, text)

        return _Deps()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _shutdown(self, sig_name: str) -> None:
        """Graceful shutdown handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)

        for task in self._background:
            task.cancel()
        await self.queue.shutdown()
        await self.scheduler.shutdown()
        for channel in self.channels:
            try:
                await channel.disconnect()
            except Exception:
                logger.exception("Channel disconnect failed", channel=channel.name)
        self._stopped.set()

    async def run(self) -> None:
        """Main entry point — startup sequence."""
        s = get_settings()
        set_log_level(s.logging.level)

        runtime = get_runtime()
        runtime.ensure_running()
        runtime.stop_orphans()

        await init_database()
        await self.registry.load()
        await self.registry.reconcile_config(s)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        self.queue.set_process_messages_fn(self._process_group_messages)
        await self._connect_plugin_channels()

        self._background = [
            create_background_task(self.scheduler.start(), name="scheduler"),
            create_background_task(start_ipc_watcher(self._make_ipc_deps()), name="ipc-watcher"),
        ]
        logger.info(
            "Pincer running",
            groups=len(self.registry.all()),
            channels=[c.name for c in self.channels],
        )

        try:
            await self._stopped.wait()
        finally:
            await close_database()
