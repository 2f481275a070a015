"""Pluggy hook specifications for pincer plugins.

All hooks use the "pincer" namespace and are validated by pluggy at
registration time.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("pincer")
hookimpl = pluggy.HookimplMarker("pincer")


class PincerSpec:
    """Hook specifications for pincer plugins."""

    @hookspec
    def pincer_create_channel(self, context: Any) -> Any | None:
        """Create a chat channel instance.

        Channels are long-running adapters for one chat network. They report
        inbound messages through ``context.on_inbound`` and deliver outbound
        text via ``send_message``.

        Args:
            context: PluginContext with callbacks into the host

        Returns:
            Channel instance (or a list of them) implementing the Channel
            protocol, or None if this plugin doesn't provide channels
        """
