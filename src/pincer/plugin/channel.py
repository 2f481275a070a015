"""Host services handed to channel plugins."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pincer.types import Attachment, InboundMessage, RegisteredGroup


@dataclass
class PluginContext:
    """Context object passed to plugins during initialization.

    Provides access to host services that plugins may need.
    """

    registered_groups: Callable[[], dict[str, RegisteredGroup]]
    """Callable that returns the current registered groups dict."""

    on_inbound: Callable[[InboundMessage], None]
    """Report one inbound message, in the network's delivery order."""

    stage_attachment: Callable[[str, Attachment], None]
    """Stage an attachment for the next invocation of a chat."""

    send_message: Callable[[str, str], Awaitable[None]]
    """Async function to send a message to a JID."""
