"""Per-conversation debounce queue that serializes agent runs.

asyncio.ensure_future doesn't run the coroutine synchronously up to the
first await. So we must eagerly set state.active in the synchronous caller
(or right after the debounce sleep, before any await), then clean up in the
async finally block.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from pincer.config import get_settings
from pincer.logger import logger
from pincer.registry import FolderLocks, GroupRegistry
from pincer.types import Attachment, InboundMessage

# (chat_jid, messages in arrival order, staged attachment) -> success
ProcessMessagesFn = Callable[[str, list[InboundMessage], Attachment | None], Awaitable[bool]]


@dataclass
class ConversationState:
    active: bool = False
    pending: deque[InboundMessage] = field(default_factory=deque)
    attachment: Attachment | None = None
    debounce_task: asyncio.Task[None] | None = None
    dropped: int = 0

    def release(self) -> None:
        """Reset transient per-run state when an invocation finishes."""
        self.active = False


class GroupQueue:
    """Coalesces inbound messages per conversation into single agent runs.

    Messages arriving within the debounce window of the first pending
    message are merged. While a run is in flight, new messages buffer up and
    the next run starts as soon as the current one finishes. Runs hold the
    conversation's folder lock, shared with the scheduler.
    """

    def __init__(self, registry: GroupRegistry, locks: FolderLocks) -> None:
        self._registry = registry
        self._locks = locks
        self._conversations: dict[str, ConversationState] = {}
        self._process_messages_fn: ProcessMessagesFn | None = None
        self._running: set[asyncio.Future[None]] = set()
        self._shutting_down = False

    def _get_state(self, chat_jid: str) -> ConversationState:
        """Return the ConversationState for *chat_jid*, creating one if needed."""
        if chat_jid not in self._conversations:
            self._conversations[chat_jid] = ConversationState()
        return self._conversations[chat_jid]

    def set_process_messages_fn(self, fn: ProcessMessagesFn) -> None:
        """Register the callback used to run the agent for a batch of messages."""
        self._process_messages_fn = fn

    def enqueue(self, chat_jid: str, message: InboundMessage) -> None:
        """Buffer *message* and arm the debounce timer if nothing is in flight."""
        if self._shutting_down:
            return

        state = self._get_state(chat_jid)
        max_pending = get_settings().queue.max_pending_messages
        while len(state.pending) >= max_pending:
            state.pending.popleft()
            state.dropped += 1
            logger.warning(
                "Pending message buffer full, dropping oldest",
                chat_jid=chat_jid,
                max_pending=max_pending,
            )
        state.pending.append(message)

        if state.active:
            logger.debug("Invocation active, message buffered", chat_jid=chat_jid)
            return
        if state.debounce_task is not None:
            return

        state.debounce_task = asyncio.ensure_future(self._debounce_then_run(chat_jid))

    def stage_attachment(self, chat_jid: str, attachment: Attachment) -> None:
        """Stage an attachment for the next invocation; replaces any staged one."""
        state = self._get_state(chat_jid)
        if state.attachment is not None:
            logger.debug("Replacing staged attachment", chat_jid=chat_jid)
        state.attachment = attachment

    def is_active(self, chat_jid: str) -> bool:
        return self._get_state(chat_jid).active

    def snapshot(self) -> dict[str, dict[str, object]]:
        """Return a read-only snapshot of queue state for status reporting."""
        return {
            jid: {
                "active": state.active,
                "pending_messages": len(state.pending),
                "debounce_pending": state.debounce_task is not None,
                "has_attachment": state.attachment is not None,
                "dropped": state.dropped,
            }
            for jid, state in self._conversations.items()
        }

    async def _debounce_then_run(self, chat_jid: str) -> None:
        state = self._get_state(chat_jid)
        try:
            await asyncio.sleep(get_settings().queue.debounce_seconds)
        finally:
            state.debounce_task = None
        if self._shutting_down:
            return
        # No await between here and _run's first statement
        state.active = True
        await self._run(chat_jid)

    def _start_run(self, chat_jid: str) -> None:
        state = self._get_state(chat_jid)
        state.active = True
        fut = asyncio.ensure_future(self._run(chat_jid))
        self._running.add(fut)
        fut.add_done_callback(self._running.discard)

    async def _run(self, chat_jid: str) -> None:
        """Flush the buffer into one invocation.

        State is already marked active by the caller. We only clean up in finally.
        """
        state = self._get_state(chat_jid)
        current = asyncio.current_task()
        if current is not None:
            self._running.add(current)

        messages = list(state.pending)
        state.pending.clear()
        attachment = state.attachment
        state.attachment = None

        try:
            group = self._registry.get(chat_jid)
            if group is None:
                logger.warning(
                    "Dropping messages for unregistered conversation",
                    chat_jid=chat_jid,
                    count=len(messages),
                )
                return
            if self._process_messages_fn is None:
                logger.error("No process function registered", chat_jid=chat_jid)
                return

            logger.debug(
                "Starting invocation for conversation",
                chat_jid=chat_jid,
                folder=group.folder,
                message_count=len(messages),
            )
            async with self._locks.lock_for(group.folder):
                success = await self._process_messages_fn(chat_jid, messages, attachment)
            if not success:
                logger.warning("Invocation failed, not retrying", chat_jid=chat_jid)
        except Exception:
            logger.exception("Error processing messages for conversation", chat_jid=chat_jid)
        finally:
            state.release()
            if current is not None:
                self._running.discard(current)
            self._drain(chat_jid)

    def _drain(self, chat_jid: str) -> None:
        """After a run finishes, start the next one if messages arrived meanwhile."""
        if self._shutting_down:
            return
        state = self._get_state(chat_jid)
        if state.pending:
            logger.debug("Flushing backlog", chat_jid=chat_jid, count=len(state.pending))
            self._start_run(chat_jid)

    async def shutdown(self) -> None:
        """Cancel pending debounce timers and wait for in-flight invocations."""
        self._shutting_down = True
        timers = [s.debounce_task for s in self._conversations.values() if s.debounce_task]
        for timer in timers:
            timer.cancel()
        logger.info(
            "GroupQueue shutdown starting",
            cancelled_timers=len(timers),
            in_flight=len(self._running),
        )
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
        logger.info("GroupQueue shutdown complete")
