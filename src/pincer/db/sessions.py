"""Agent session ids.

Each working folder resumes one agent session across invocations. The id is
whatever the agent reported last; clearing it starts a fresh session.
"""

from __future__ import annotations

from pincer.db._connection import _get_db


async def get_session(group_folder: str) -> str | None:
    cursor = await _get_db().execute(
        "SELECT session_id FROM sessions WHERE group_folder = ?", (group_folder,)
    )
    row = await cursor.fetchone()
    return None if row is None else row["session_id"]


async def set_session(group_folder: str, session_id: str) -> None:
    db = _get_db()
    await db.execute(
        """
        INSERT INTO sessions (group_folder, session_id) VALUES (?, ?)
        ON CONFLICT (group_folder) DO UPDATE SET session_id = excluded.session_id
        """,
        (group_folder, session_id),
    )
    await db.commit()


async def clear_session(group_folder: str) -> None:
    db = _get_db()
    await db.execute("DELETE FROM sessions WHERE group_folder = ?", (group_folder,))
    await db.commit()
