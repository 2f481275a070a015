"""Tests for PincerApp wiring: inbound filtering, agent runs and outbound delivery."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_group
from pincer.app import PincerApp
from pincer.db import get_session, set_session
from pincer.types import Attachment, InvocationResult

pytestmark = pytest.mark.usefixtures("db")


class FakeChannel:
    name = "fake"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def connect(self) -> None:
        pass

    async def send_message(self, jid: str, text: str) -> None:
        self.sent.append((jid, text))

    def is_connected(self) -> bool:
        return True

    def owns_jid(self, jid: str) -> bool:
        return jid.endswith("@g.us")

    async def disconnect(self) -> None:
        pass


@pytest.fixture
async def app():
    app = PincerApp()
    await app.registry.register(make_group("acme"))
    await app.registry.register(make_group("main", is_main=True))
    app.channels.append(FakeChannel())
    return app


class TestInbound:
    async def test_only_triggered_messages_enqueued(self, app, make_msg):
        app.queue.enqueue = MagicMock()

        app._on_inbound(make_msg("just chatting"))
        app._on_inbound(make_msg("@Pincer summarize", id="2"))
        app._on_inbound(make_msg("@Pincer hi", chat_jid="unknown@g.us"))

        app.queue.enqueue.assert_called_once()
        jid, message = app.queue.enqueue.call_args.args
        assert jid == "acme@g.us"
        assert message.content == "@Pincer summarize"

    async def test_attachment_for_unregistered_chat_ignored(self, app):
        app.queue.stage_attachment = MagicMock()
        app._stage_attachment("unknown@g.us", Attachment(mime_type="image/png", data=""))
        app._stage_attachment("acme@g.us", Attachment(mime_type="image/png", data=""))
        app.queue.stage_attachment.assert_called_once()


class TestProcessGroupMessages:
    async def test_success_sends_reply_and_saves_session(self, app, make_msg):
        await set_session("acme", "s-1")
        image = Attachment(mime_type="image/png", data="aGk=")
        result = InvocationResult(status="success", result="Here you go", new_session_id="s-2")

        with patch("pincer.app.run_container_agent", AsyncMock(return_value=result)) as run:
            ok = await app._process_group_messages(
                "acme@g.us", [make_msg("@Pincer hi"), make_msg("more", id="2")], image
            )

        assert ok is True
        group, request = run.await_args.args
        assert group.folder == "acme"
        assert request.session_id == "s-1"
        assert request.attachment is image
        assert request.is_main is False
        assert request.prompt.startswith("<messages>\n")
        assert request.prompt.index("@Pincer hi") < request.prompt.index("more")
        assert await get_session("acme") == "s-2"
        assert app.channels[0].sent == [("acme@g.us", "Pincer: Here you go")]

    async def test_main_group_runs_privileged(self, app, make_msg):
        result = InvocationResult(status="success", result=None)
        with patch("pincer.app.run_container_agent", AsyncMock(return_value=result)) as run:
            await app._process_group_messages("main@g.us", [make_msg(chat_jid="main@g.us")], None)
        assert run.await_args.args[1].is_main is True
        assert app.channels[0].sent == []

    async def test_timeout_sends_notice(self, app, make_msg):
        result = InvocationResult(status="error", error="Container timed out after 300s")
        with patch("pincer.app.run_container_agent", AsyncMock(return_value=result)):
            ok = await app._process_group_messages("acme@g.us", [make_msg()], None)

        assert ok is False
        assert app.channels[0].sent == [
            ("acme@g.us", "Pincer: Sorry, something went wrong (timeout).")
        ]

    async def test_error_sends_notice(self, app, make_msg):
        result = InvocationResult(status="error", error="Container exited with code 1: oops")
        with patch("pincer.app.run_container_agent", AsyncMock(return_value=result)):
            await app._process_group_messages("acme@g.us", [make_msg()], None)
        assert app.channels[0].sent[0][1].endswith("(error).")

    async def test_session_lookup_failure_sends_notice(self, app, make_msg):
        run = AsyncMock()
        with (
            patch("pincer.app.get_session", AsyncMock(side_effect=OSError("disk I/O error"))),
            patch("pincer.app.run_container_agent", run),
        ):
            ok = await app._process_group_messages("acme@g.us", [make_msg()], None)

        assert ok is False
        run.assert_not_called()
        assert app.channels[0].sent == [
            ("acme@g.us", "Pincer: Sorry, something went wrong (error).")
        ]


class TestOutbound:
    async def test_send_swallows_missing_channel(self, app):
        app.channels.clear()
        await app._send("acme@g.us", "hello")

    async def test_ipc_send_raises_without_channel(self, app):
        app.channels.clear()
        with pytest.raises(RuntimeError, match="No channel"):
            await app._send_ipc_message("acme@g.us", "hello")

    async def test_ipc_deps(self, app):
        deps = app._make_ipc_deps()
        assert set(deps.registered_groups()) == {"acme@g.us", "main@g.us"}
        await deps.send_message("acme@g.us", "from ipc")
        assert app.channels[0].sent == [("acme@g.us", "Pincer: from ipc")]


class TestShutdown:
    async def test_shutdown_disconnects_channels(self, app):
        channel = app.channels[0]
        channel.disconnect = AsyncMock()
        await app._shutdown("SIGTERM")
        channel.disconnect.assert_awaited_once()
        assert app._stopped.is_set()
