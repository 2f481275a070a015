"""Pincer settings.

Values come from ``config.toml`` in the working directory, overridden by a
``.env`` file and then by environment variables. Nested keys use ``__`` in
the environment, so ``CONTAINER__TIMEOUT_MS=60000`` sets
``[container] timeout_ms``. Constructor arguments beat everything.

All runtime state lives under the working directory: ``groups/`` for agent
folders, ``data/`` for IPC and snapshots, ``store/`` for the database.
"""

from __future__ import annotations

import os
import re
from functools import cached_property
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


class _Section(BaseModel):
    """A ``[section]`` of config.toml. Unknown keys are an error."""

    model_config = {"extra": "forbid"}


class AgentConfig(_Section):
    name: str = "Pincer"
    trigger_aliases: list[str] = []


class ContainerConfig(_Section):
    image: str = "pincer-agent:latest"
    cli: str | None = None  # unset: try "container", then "docker"
    timeout_ms: int = 300_000
    max_output_size: int = 10 * 1024 * 1024  # per stream, in characters
    stop_grace_seconds: float = 10.0

    @field_validator("timeout_ms")
    @classmethod
    def _positive_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout_ms must be positive")
        return v


class QueueConfig(_Section):
    debounce_seconds: float = 3.0
    max_pending_messages: int = 200

    @field_validator("max_pending_messages")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, v)


class SchedulerConfig(_Section):
    poll_interval: float = 60.0
    timezone: str = ""  # IANA name; empty means the host zone


class IntervalsConfig(_Section):
    ipc_poll: float = 1.0


class LoggingConfig(_Section):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class MountConfig(_Section):
    host_path: str
    container_path: str | None = None
    readonly: bool = True


class GroupConfig(_Section):
    """One ``[groups.<folder>]`` table: a conversation the agent serves."""

    jid: str
    name: str | None = None
    trigger: str | None = None
    requires_trigger: bool = True
    is_main: bool = False
    allowed_senders: list[str] | None = None
    timeout: float | None = None  # seconds, overrides container.timeout_ms
    additional_mounts: list[MountConfig] = []


class PluginConfig(_Section):
    enabled: bool = True


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    agent: AgentConfig = AgentConfig()
    container: ContainerConfig = ContainerConfig()
    queue: QueueConfig = QueueConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    intervals: IntervalsConfig = IntervalsConfig()
    logging: LoggingConfig = LoggingConfig()
    groups: dict[str, GroupConfig] = {}
    plugins: dict[str, PluginConfig] = {}

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # The TOML file is the lowest-priority source; secrets dirs are unused.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @cached_property
    def container_timeout(self) -> float:
        """Default per-run timeout in seconds."""
        return self.container.timeout_ms / 1000

    @cached_property
    def trigger_pattern(self) -> re.Pattern[str]:
        """Matches ``@<agent name>`` or ``@<alias>`` at the start of a message."""
        names = [self.agent.name, *(a.strip() for a in self.agent.trigger_aliases)]
        alternatives = "|".join(re.escape(n) for n in names if n)
        return re.compile(rf"^@({alternatives})\b", re.IGNORECASE)

    @cached_property
    def timezone(self) -> str:
        return self.scheduler.timezone or _detect_timezone()

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def home_dir(self) -> Path:
        return Path.home()

    @cached_property
    def groups_dir(self) -> Path:
        return (self.project_root / "groups").resolve()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / "data").resolve()

    @cached_property
    def store_dir(self) -> Path:
        return (self.project_root / "store").resolve()

    @cached_property
    def global_memory_path(self) -> Path:
        """Memory file mounted into every run; only the main group may write it."""
        return self.groups_dir / "CLAUDE.md"


def _is_known_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ValueError, KeyError):
        return False
    return True


def _detect_timezone() -> str:
    """IANA name of the host zone from $TZ or /etc/localtime, else "UTC"."""
    candidates = [os.environ.get("TZ", "").removeprefix(":")]
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        _, found, name = str(localtime.resolve()).partition("zoneinfo/")
        if found:
            candidates.append(name)
    return next((name for name in candidates if name and _is_known_zone(name)), "UTC")


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the loaded Settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
