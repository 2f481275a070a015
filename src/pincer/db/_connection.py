"""SQLite connection and schema.

One aiosqlite connection per process, opened by ``init_database()`` and
shared by every ``pincer.db`` module. The schema is created idempotently on
open.
"""

from __future__ import annotations

from typing import Any

import aiosqlite

from pincer.config import get_settings
from pincer.logger import logger

_db: aiosqlite.Connection | None = None

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    group_folder TEXT NOT NULL,
    chat_jid TEXT NOT NULL,
    prompt TEXT NOT NULL,
    schedule_type TEXT NOT NULL,
    schedule_value TEXT NOT NULL,
    next_run TEXT,
    last_run TEXT,
    last_result TEXT,
    status TEXT DEFAULT 'active',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_next_run ON scheduled_tasks(next_run);
CREATE INDEX IF NOT EXISTS idx_status ON scheduled_tasks(status);
CREATE INDEX IF NOT EXISTS idx_group_folder ON scheduled_tasks(group_folder);

CREATE TABLE IF NOT EXISTS task_run_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    run_at TEXT NOT NULL,
    duration_ms INTEGER NOT NULL,
    status TEXT NOT NULL,
    result TEXT,
    error TEXT,
    FOREIGN KEY (task_id) REFERENCES scheduled_tasks(id)
);
CREATE INDEX IF NOT EXISTS idx_task_run_logs ON task_run_logs(task_id, run_at);

CREATE TABLE IF NOT EXISTS sessions (
    group_folder TEXT PRIMARY KEY,
    session_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS registered_groups (
    jid TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    folder TEXT NOT NULL UNIQUE,
    trigger_pattern TEXT NOT NULL,
    added_at TEXT NOT NULL,
    container_config TEXT,
    allowed_senders TEXT,
    requires_trigger INTEGER DEFAULT 1,
    is_main INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS delivered_envelopes (
    envelope_id TEXT PRIMARY KEY,
    group_folder TEXT NOT NULL,
    delivered_at TEXT NOT NULL
);
"""


def _get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized; call init_database() first")
    return _db


async def _update_by_id(
    table: str,
    row_id: str,
    updates: dict[str, Any],
    allowed_fields: set[str],
) -> None:
    """UPDATE *table* row *row_id* with the keys of *updates* in *allowed_fields*.

    Other keys are ignored. Nothing is executed when no key is allowed.
    """
    assignments = {k: v for k, v in updates.items() if k in allowed_fields}
    if not assignments:
        return

    db = _get_db()
    columns = ", ".join(f"{k} = ?" for k in assignments)
    await db.execute(
        f"UPDATE {table} SET {columns} WHERE id = ?",
        [*assignments.values(), row_id],
    )
    await db.commit()


async def _open(path: str) -> aiosqlite.Connection:
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    await conn.executescript(_SCHEMA)
    await conn.commit()
    return conn


async def init_database() -> None:
    """Open ``<store_dir>/pincer.db``, creating it and its tables if needed."""
    global _db
    db_path = get_settings().store_dir / "pincer.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    _db = await _open(str(db_path))
    logger.info("Database ready", path=str(db_path))


async def close_database() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _init_test_database() -> None:
    """Replace the connection with a fresh in-memory database (tests)."""
    global _db
    if _db is not None:
        await _db.close()
    _db = await _open(":memory:")
