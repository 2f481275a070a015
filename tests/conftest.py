"""Shared test fixtures for Pincer."""

from __future__ import annotations

import pytest

from pincer.types import InboundMessage, RegisteredGroup

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "home_dir",
        "groups_dir",
        "data_dir",
        "store_dir",
        "global_memory_path",
        "container_timeout",
        "trigger_pattern",
        "timezone",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (agent, container, etc.) and cached property
    overrides (project_root, data_dir, groups_dir, etc.).

    Usage::

        s = make_settings(project_root=tmp_path)
        s = make_settings(queue=QueueConfig(debounce_seconds=0.05))
    """
    from pincer.config import (
        AgentConfig,
        ContainerConfig,
        IntervalsConfig,
        LoggingConfig,
        QueueConfig,
        SchedulerConfig,
        Settings,
    )

    # Separate cached properties from model fields
    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "agent": AgentConfig(),
        "container": ContainerConfig(),
        "queue": QueueConfig(),
        "scheduler": SchedulerConfig(),
        "intervals": IntervalsConfig(),
        "logging": LoggingConfig(),
        "groups": {},
        "plugins": {},
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def make_group(
    folder: str = "acme",
    *,
    jid: str | None = None,
    name: str | None = None,
    is_main: bool = False,
    requires_trigger: bool = True,
    allowed_senders: list[str] | None = None,
    container_config=None,
) -> RegisteredGroup:
    return RegisteredGroup(
        jid=jid or f"{folder}@g.us",
        name=name or folder.title(),
        folder=folder,
        trigger="@Pincer",
        added_at="2024-01-01T00:00:00+00:00",
        requires_trigger=requires_trigger,
        allowed_senders=allowed_senders,
        container_config=container_config,
        is_main=is_main,
    )


class StubRegistry:
    """In-memory stand-in for GroupRegistry (no database)."""

    def __init__(self, *groups: RegisteredGroup) -> None:
        self._groups = {g.jid: g for g in groups}

    def get(self, jid: str) -> RegisteredGroup | None:
        return self._groups.get(jid)

    def by_folder(self, folder: str) -> RegisteredGroup | None:
        return next((g for g in self._groups.values() if g.folder == folder), None)

    def all(self) -> dict[str, RegisteredGroup]:
        return dict(self._groups)


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def settings(monkeypatch, tmp_path):
    """Each test gets a fresh Settings singleton rooted in tmp_path.

    Built with ``make_settings()`` from pure defaults — no config.toml,
    no .env, no file I/O against the real project tree.
    """
    safe = make_settings(project_root=tmp_path, home_dir=tmp_path / "home", timezone="UTC")
    monkeypatch.setattr("pincer.config._settings", safe)
    monkeypatch.setattr("pincer.runtime._runtime", None)
    return safe


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def db():
    """Fresh in-memory database for one test."""
    from pincer.db import _init_test_database, close_database

    await _init_test_database()
    yield
    await close_database()


@pytest.fixture
def make_msg():
    """Factory fixture for creating inbound messages with defaults."""

    def _make(
        content: str = "hello",
        *,
        id: str = "1",
        chat_jid: str = "acme@g.us",
        sender: str = "alice@s.whatsapp.net",
        sender_name: str = "Alice",
        timestamp: str = "2024-01-01T00:00:00.000Z",
    ) -> InboundMessage:
        return InboundMessage(
            id=id,
            chat_jid=chat_jid,
            sender=sender,
            sender_name=sender_name,
            content=content,
            timestamp=timestamp,
        )

    return _make
