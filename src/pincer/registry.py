"""Owned in-memory state shared by the router, queue, IPC and scheduler.

``GroupRegistry`` is the single source of truth for which conversations the
host acts on; ``FolderLocks`` serializes agent runs per working folder.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from pincer.config import Settings, get_settings
from pincer.db import get_all_registered_groups, set_registered_group
from pincer.errors import GroupRegistrationError
from pincer.logger import logger
from pincer.types import AdditionalMount, ContainerConfig, RegisteredGroup


class GroupRegistry:
    """Registered groups keyed by jid, backed by the ``registered_groups`` table."""

    def __init__(self) -> None:
        self._groups: dict[str, RegisteredGroup] = {}

    async def load(self) -> None:
        self._groups = await get_all_registered_groups()
        logger.info("Groups loaded", group_count=len(self._groups))

    def get(self, jid: str) -> RegisteredGroup | None:
        return self._groups.get(jid)

    def by_folder(self, folder: str) -> RegisteredGroup | None:
        return next((g for g in self._groups.values() if g.folder == folder), None)

    def all(self) -> dict[str, RegisteredGroup]:
        return dict(self._groups)

    def main_folders(self) -> set[str]:
        return {g.folder for g in self._groups.values() if g.is_main}

    def is_main_folder(self, folder: str) -> bool:
        return folder in self.main_folders()

    async def register(self, group: RegisteredGroup) -> RegisteredGroup:
        """Validate and persist a group.

        Raises GroupRegistrationError for invalid folder names, for an attempt
        to move a known jid to another folder, or for a folder already owned
        by a different jid.
        """
        errors = group.validate()
        if errors:
            raise GroupRegistrationError("; ".join(errors))

        existing = self._groups.get(group.jid)
        if existing is not None and existing.folder != group.folder:
            raise GroupRegistrationError(
                f"Folder of {group.jid} is {existing.folder!r} and cannot change to {group.folder!r}"
            )
        owner = self.by_folder(group.folder)
        if owner is not None and owner.jid != group.jid:
            raise GroupRegistrationError(
                f"Folder {group.folder!r} already belongs to {owner.jid}"
            )

        if existing is not None:
            group.added_at = existing.added_at
        elif not group.added_at:
            group.added_at = datetime.now(UTC).isoformat()

        await set_registered_group(group)
        self._groups[group.jid] = group

        group_dir = get_settings().groups_dir / group.folder
        (group_dir / "logs").mkdir(parents=True, exist_ok=True)

        logger.info("Group registered", jid=group.jid, name=group.name, folder=group.folder)
        return group

    async def reconcile_config(self, settings: Settings) -> None:
        """Register every ``[groups.<folder>]`` entry from config.toml.

        Invalid entries are logged and skipped so one typo doesn't block startup.
        """
        for folder, cfg in settings.groups.items():
            container_config = None
            if cfg.additional_mounts or cfg.timeout is not None:
                container_config = ContainerConfig(
                    additional_mounts=[
                        AdditionalMount(
                            host_path=m.host_path,
                            container_path=m.container_path,
                            readonly=m.readonly,
                        )
                        for m in cfg.additional_mounts
                    ],
                    timeout=cfg.timeout,
                )
            group = RegisteredGroup(
                jid=cfg.jid,
                name=cfg.name or folder,
                folder=folder,
                trigger=cfg.trigger or f"@{settings.agent.name}",
                requires_trigger=cfg.requires_trigger,
                allowed_senders=cfg.allowed_senders,
                container_config=container_config,
                is_main=cfg.is_main,
            )
            try:
                await self.register(group)
            except GroupRegistrationError as exc:
                logger.error("Skipping configured group", folder=folder, err=str(exc))


class FolderLocks:
    """One ``asyncio.Lock`` per working folder.

    Every caller that starts an agent run (group queue, scheduler) holds the
    folder's lock for the duration of the run.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, folder: str) -> asyncio.Lock:
        lock = self._locks.get(folder)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[folder] = lock
        return lock

    def is_busy(self, folder: str) -> bool:
        lock = self._locks.get(folder)
        return lock is not None and lock.locked()
