"""Delivery receipts for outbound IPC messages.

Envelopes may be seen more than once (e.g. the host crashed between sending
and deleting the file). The envelope id is the dedup key.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pincer.db._connection import _get_db


async def is_envelope_delivered(envelope_id: str) -> bool:
    db = _get_db()
    cursor = await db.execute(
        "SELECT 1 FROM delivered_envelopes WHERE envelope_id = ?", (envelope_id,)
    )
    return await cursor.fetchone() is not None


async def mark_envelope_delivered(envelope_id: str, group_folder: str) -> None:
    db = _get_db()
    await db.execute(
        """INSERT OR IGNORE INTO delivered_envelopes (envelope_id, group_folder, delivered_at)
           VALUES (?, ?, ?)""",
        (envelope_id, group_folder, datetime.now(UTC).isoformat()),
    )
    await db.commit()
