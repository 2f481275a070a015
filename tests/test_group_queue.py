"""Tests for the per-conversation debounce queue.

Debounce windows are shrunk to tens of milliseconds; assertions sleep past
the window instead of mocking the clock.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import StubRegistry, make_group
from pincer.group_queue import GroupQueue
from pincer.registry import FolderLocks
from pincer.types import Attachment

DEBOUNCE = 0.05


@pytest.fixture(autouse=True)
def _fast_debounce(settings):
    settings.queue.debounce_seconds = DEBOUNCE


@pytest.fixture
def locks():
    return FolderLocks()


@pytest.fixture
def queue(locks):
    return GroupQueue(StubRegistry(make_group("acme"), make_group("beta")), locks)


class Recorder:
    """Process function that records each batch and optionally blocks."""

    def __init__(self, result: bool = True) -> None:
        self.calls: list[tuple[str, list[str], Attachment | None]] = []
        self.result = result
        self.gate: asyncio.Event | None = None
        self.concurrent = 0
        self.max_concurrent = 0

    async def __call__(self, chat_jid, messages, attachment):
        self.calls.append((chat_jid, [m.content for m in messages], attachment))
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            if self.gate is not None:
                await self.gate.wait()
            return self.result
        finally:
            self.concurrent -= 1


class TestDebounce:
    async def test_messages_within_window_coalesce(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)

        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE / 4)
        queue.enqueue("acme@g.us", make_msg("there", id="2"))
        await asyncio.sleep(DEBOUNCE * 3)

        assert rec.calls == [("acme@g.us", ["hi", "there"], None)]

    async def test_window_not_extended_by_later_messages(self, settings, queue, make_msg):
        settings.queue.debounce_seconds = 0.2
        rec = Recorder()
        queue.set_process_messages_fn(rec)

        queue.enqueue("acme@g.us", make_msg("one"))
        await asyncio.sleep(0.12)
        queue.enqueue("acme@g.us", make_msg("two", id="2"))
        await asyncio.sleep(0.12)

        # Past the first message's window, though not past the second's
        assert len(rec.calls) == 1
        assert rec.calls[0][1] == ["one", "two"]

    async def test_nothing_runs_before_window_elapses(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE / 4)
        assert rec.calls == []
        await asyncio.sleep(DEBOUNCE * 2)
        assert len(rec.calls) == 1

    async def test_conversations_are_independent(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        queue.enqueue("acme@g.us", make_msg("a"))
        queue.enqueue("beta@g.us", make_msg("b", chat_jid="beta@g.us"))
        await asyncio.sleep(DEBOUNCE * 3)
        assert sorted(c[0] for c in rec.calls) == ["acme@g.us", "beta@g.us"]


class TestSerialization:
    async def test_messages_during_run_form_next_batch(self, queue, make_msg):
        rec = Recorder()
        rec.gate = asyncio.Event()
        queue.set_process_messages_fn(rec)

        queue.enqueue("acme@g.us", make_msg("first"))
        await asyncio.sleep(DEBOUNCE * 2)
        assert queue.is_active("acme@g.us")

        queue.enqueue("acme@g.us", make_msg("second", id="2"))
        queue.enqueue("acme@g.us", make_msg("third", id="3"))
        await asyncio.sleep(DEBOUNCE * 2)
        assert len(rec.calls) == 1

        rec.gate.set()
        await asyncio.sleep(0.02)

        assert [c[1] for c in rec.calls] == [["first"], ["second", "third"]]
        assert rec.max_concurrent == 1

    async def test_folder_lock_blocks_run(self, queue, locks, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)

        await locks.lock_for("acme").acquire()
        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE * 3)
        assert rec.calls == []

        locks.lock_for("acme").release()
        await asyncio.sleep(0.02)
        assert len(rec.calls) == 1

    async def test_unregistered_conversation_dropped(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        queue.enqueue("stranger@g.us", make_msg("hi", chat_jid="stranger@g.us"))
        await asyncio.sleep(DEBOUNCE * 3)
        assert rec.calls == []
        assert not queue.is_active("stranger@g.us")


class TestFailures:
    async def test_false_result_is_not_retried(self, queue, make_msg):
        rec = Recorder(result=False)
        queue.set_process_messages_fn(rec)
        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE * 4)
        assert len(rec.calls) == 1
        assert not queue.is_active("acme@g.us")

    async def test_exception_still_drains_backlog(self, queue, make_msg):
        calls: list[list[str]] = []
        gate = asyncio.Event()

        async def process(chat_jid, messages, attachment):
            calls.append([m.content for m in messages])
            if len(calls) == 1:
                await gate.wait()
                raise RuntimeError("agent crashed")
            return True

        queue.set_process_messages_fn(process)
        queue.enqueue("acme@g.us", make_msg("first"))
        await asyncio.sleep(DEBOUNCE * 2)
        queue.enqueue("acme@g.us", make_msg("second", id="2"))
        gate.set()
        await asyncio.sleep(0.02)

        assert calls == [["first"], ["second"]]
        assert not queue.is_active("acme@g.us")


class TestAttachments:
    async def test_attachment_consumed_by_one_run(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        image = Attachment(mime_type="image/png", data="aGVsbG8=")

        queue.stage_attachment("acme@g.us", image)
        queue.enqueue("acme@g.us", make_msg("look at this"))
        await asyncio.sleep(DEBOUNCE * 3)
        queue.enqueue("acme@g.us", make_msg("and again", id="2"))
        await asyncio.sleep(DEBOUNCE * 3)

        assert [c[2] for c in rec.calls] == [image, None]

    async def test_last_staged_attachment_wins(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        old = Attachment(mime_type="image/png", data="b2xk")
        new = Attachment(mime_type="image/jpeg", data="bmV3", name="photo.jpg")

        queue.stage_attachment("acme@g.us", old)
        queue.stage_attachment("acme@g.us", new)
        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE * 3)

        assert rec.calls[0][2] is new


class TestBuffer:
    async def test_overflow_drops_oldest(self, settings, queue, make_msg):
        settings.queue.max_pending_messages = 2
        rec = Recorder()
        queue.set_process_messages_fn(rec)

        for i in range(4):
            queue.enqueue("acme@g.us", make_msg(f"m{i}", id=str(i)))
        assert queue.snapshot()["acme@g.us"]["dropped"] == 2

        await asyncio.sleep(DEBOUNCE * 3)
        assert rec.calls[0][1] == ["m2", "m3"]

    async def test_snapshot_reports_state(self, queue, make_msg):
        assert queue.snapshot() == {}
        queue.stage_attachment("acme@g.us", Attachment(mime_type="image/png", data=""))
        queue.enqueue("acme@g.us", make_msg("hi"))
        assert queue.snapshot()["acme@g.us"] == {
            "active": False,
            "pending_messages": 1,
            "debounce_pending": True,
            "has_attachment": True,
            "dropped": 0,
        }
        await queue.shutdown()


class TestShutdown:
    async def test_shutdown_cancels_debounce(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        queue.enqueue("acme@g.us", make_msg("hi"))
        await queue.shutdown()
        await asyncio.sleep(DEBOUNCE * 2)
        assert rec.calls == []

    async def test_shutdown_waits_for_in_flight(self, queue, make_msg):
        rec = Recorder()
        rec.gate = asyncio.Event()
        queue.set_process_messages_fn(rec)
        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE * 2)

        shutdown = asyncio.ensure_future(queue.shutdown())
        await asyncio.sleep(0.01)
        assert not shutdown.done()
        rec.gate.set()
        await asyncio.wait_for(shutdown, timeout=1)

    async def test_enqueue_after_shutdown_ignored(self, queue, make_msg):
        rec = Recorder()
        queue.set_process_messages_fn(rec)
        await queue.shutdown()
        queue.enqueue("acme@g.us", make_msg("hi"))
        await asyncio.sleep(DEBOUNCE * 2)
        assert rec.calls == []
