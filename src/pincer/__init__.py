"""Pincer — host that runs chat-triggered and scheduled agent invocations in containers."""

__version__ = "0.1.0"
