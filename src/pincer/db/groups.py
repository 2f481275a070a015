"""Registered groups."""

from __future__ import annotations

import json
from dataclasses import asdict

from pincer.db._connection import _get_db
from pincer.logger import logger
from pincer.types import ContainerConfig, RegisteredGroup


def _row_to_group(row) -> RegisteredGroup:
    container_config = None
    if row["container_config"]:
        try:
            container_config = ContainerConfig.from_dict(json.loads(row["container_config"]))
        except (TypeError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to parse container config, using defaults",
                folder=row["folder"],
                err=str(exc),
            )

    allowed_senders = json.loads(row["allowed_senders"]) if row["allowed_senders"] else None

    return RegisteredGroup(
        jid=row["jid"],
        name=row["name"],
        folder=row["folder"],
        trigger=row["trigger_pattern"],
        added_at=row["added_at"],
        requires_trigger=bool(row["requires_trigger"]),
        allowed_senders=allowed_senders,
        container_config=container_config,
        is_main=bool(row["is_main"]),
    )


async def get_registered_group(jid: str) -> RegisteredGroup | None:
    db = _get_db()
    cursor = await db.execute("SELECT * FROM registered_groups WHERE jid = ?", (jid,))
    row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_group(row)


async def set_registered_group(group: RegisteredGroup) -> None:
    """Insert or update a registered group.

    Validates the group before saving. Raises ValueError if validation fails.
    """
    errors = group.validate()
    if errors:
        raise ValueError(f"Invalid group: {'; '.join(errors)}")

    db = _get_db()
    await db.execute(
        """INSERT OR REPLACE INTO registered_groups
            (jid, name, folder, trigger_pattern, added_at,
             container_config, allowed_senders, requires_trigger, is_main)
         VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            group.jid,
            group.name,
            group.folder,
            group.trigger,
            group.added_at,
            json.dumps(asdict(group.container_config)) if group.container_config else None,
            json.dumps(group.allowed_senders) if group.allowed_senders is not None else None,
            1 if group.requires_trigger else 0,
            1 if group.is_main else 0,
        ),
    )
    await db.commit()


async def get_all_registered_groups() -> dict[str, RegisteredGroup]:
    """Get all registered groups as dict of jid -> RegisteredGroup."""
    db = _get_db()
    cursor = await db.execute("SELECT * FROM registered_groups")
    rows = await cursor.fetchall()
    return {row["jid"]: _row_to_group(row) for row in rows}
