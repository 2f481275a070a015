"""Message formatting, trigger checks and outbound routing."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pincer.config import get_settings

if TYPE_CHECKING:
    from pincer.types import Channel, InboundMessage, RegisteredGroup

_INTERNAL_TAG_RE = re.compile(r"<internal>[\s\S]*?</internal>")


def escape_xml(s: str) -> str:
    """Escape XML special characters."""
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def format_messages(messages: list[InboundMessage]) -> str:
    """Format messages as XML for the agent prompt, preserving arrival order."""
    lines = [
        f'<message sender="{escape_xml(m.sender_name)}" time="{escape_xml(m.timestamp)}">'
        f"{escape_xml(m.content)}</message>"
        for m in messages
    ]
    return f"<messages>\n{chr(10).join(lines)}\n</messages>"


def should_trigger(group: RegisteredGroup, message: InboundMessage) -> bool:
    """Whether *message* should wake the agent for *group*.

    The main group and groups with ``requires_trigger=False`` respond to
    everything; other groups need the trigger word at the start. When an
    allow-list is set, only those senders can trigger.
    """
    if group.allowed_senders is not None and message.sender not in group.allowed_senders:
        return False
    if group.is_main or not group.requires_trigger:
        return True
    content = message.content.strip()
    if get_settings().trigger_pattern.match(content):
        return True
    return content.lower().startswith(group.trigger.lower())


def strip_internal_tags(text: str) -> str:
    """Remove <internal>...</internal> blocks and trim whitespace."""
    return _INTERNAL_TAG_RE.sub("", text).strip()


def format_outbound(channel: Channel, raw_text: str) -> str:
    """Strip internal tags and optionally prefix with assistant name."""
    text = strip_internal_tags(raw_text)
    if not text:
        return ""
    prefix_name = getattr(channel, "prefix_assistant_name", None)
    prefix = f"{get_settings().agent.name}: " if prefix_name is not False else ""
    return f"{prefix}{text}"


def find_channel(channels: list[Channel], jid: str) -> Channel | None:
    """Find the connected channel that owns a given JID."""
    return next((c for c in channels if c.owns_jid(jid) and c.is_connected()), None)


async def route_outbound(channels: list[Channel], jid: str, text: str) -> None:
    """Find the appropriate connected channel and send a message."""
    channel = find_channel(channels, jid)
    if channel is None:
        raise RuntimeError(f"No channel for JID: {jid}")
    formatted = format_outbound(channel, text)
    if formatted:
        await channel.send_message(jid, formatted)
