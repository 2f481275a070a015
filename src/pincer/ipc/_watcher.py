"""File-based IPC watcher.

Fixed-interval polling loop over ``data/ipc/<folder>/{messages,tasks}/``.
Envelopes are processed in filename order and deleted after successful
dispatch. Malformed or rejected envelopes are moved to ``data/ipc/errors/``.
Any other failure leaves the file in place and holds back the rest of its
mailbox until a later poll delivers it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from pincer.config import get_settings
from pincer.errors import EnvelopeValidationError, IpcRequestError
from pincer.ipc._deps import IpcDeps
from pincer.ipc._protocol import read_envelope
from pincer.ipc._registry import dispatch
from pincer.logger import logger

_ipc_watcher_running = False

# Failed delivery attempts per envelope file, for logging
_attempts: dict[Path, int] = {}

MAILBOXES = ("messages", "tasks")


def _move_to_error_dir(ipc_base_dir: Path, source_group: str, file_path: Path) -> None:
    """Move a failed IPC file to the errors/ directory for later inspection."""
    error_dir = ipc_base_dir / "errors"
    error_dir.mkdir(parents=True, exist_ok=True)
    try:
        file_path.rename(error_dir / f"{source_group}-{file_path.name}")
    except OSError as exc:
        logger.error("Failed to archive IPC file", file=file_path.name, err=str(exc))
        file_path.unlink(missing_ok=True)


async def _process_file(
    file_path: Path,
    mailbox: str,
    source_group: str,
    is_main: bool,
    ipc_base_dir: Path,
    deps: IpcDeps,
) -> bool:
    """Process a single envelope file.

    Returns False when the envelope failed for a reason other than its own
    content (e.g. the channel is disconnected). The file stays in place and
    is retried on the next poll.
    """
    try:
        envelope = read_envelope(file_path, mailbox)
        await dispatch(envelope, source_group, is_main, deps)
    except (EnvelopeValidationError, IpcRequestError) as exc:
        logger.warning(
            "IPC envelope rejected",
            file=file_path.name,
            source_group=source_group,
            err=str(exc),
        )
        _attempts.pop(file_path, None)
        _move_to_error_dir(ipc_base_dir, source_group, file_path)
        return True
    except Exception as exc:
        attempt = _attempts.get(file_path, 0) + 1
        _attempts[file_path] = attempt
        logger.warning(
            "IPC envelope failed, will retry",
            file=file_path.name,
            source_group=source_group,
            attempt=attempt,
            err=str(exc),
        )
        return False
    _attempts.pop(file_path, None)
    file_path.unlink(missing_ok=True)
    return True


async def process_ipc_once(deps: IpcDeps) -> int:
    """Run one pass over every mailbox. Returns the number of files handled."""
    ipc_base_dir = get_settings().data_dir / "ipc"
    try:
        group_folders = sorted(
            f.name for f in ipc_base_dir.iterdir() if f.is_dir() and f.name != "errors"
        )
    except FileNotFoundError:
        return 0

    # Re-read each pass; groups can change at runtime. Never trust the
    # envelope's own isMain flag.
    main_folders = {g.folder for g in deps.registered_groups().values() if g.is_main}

    processed = 0
    for source_group in group_folders:
        is_main = source_group in main_folders
        for mailbox in MAILBOXES:
            mailbox_dir = ipc_base_dir / source_group / mailbox
            try:
                if not mailbox_dir.exists():
                    continue
                files = sorted(f for f in mailbox_dir.iterdir() if f.suffix == ".json")
            except OSError as exc:
                logger.error(
                    "Error reading IPC directory",
                    err=str(exc),
                    source_group=source_group,
                    mailbox=mailbox,
                )
                continue
            for file_path in files:
                done = await _process_file(
                    file_path, mailbox, source_group, is_main, ipc_base_dir, deps
                )
                if not done:
                    # Later envelopes in this mailbox wait so delivery order holds
                    break
                processed += 1
    return processed


async def start_ipc_watcher(deps: IpcDeps) -> None:
    """Start the IPC watcher polling loop. Runs until cancelled."""
    global _ipc_watcher_running
    if _ipc_watcher_running:
        logger.debug("IPC watcher already running, skipping duplicate start")
        return
    _ipc_watcher_running = True

    s = get_settings()
    ipc_base_dir = s.data_dir / "ipc"
    ipc_base_dir.mkdir(parents=True, exist_ok=True)
    logger.info("IPC watcher started", path=str(ipc_base_dir), interval=s.intervals.ipc_poll)

    try:
        while True:
            try:
                await process_ipc_once(deps)
            except Exception:
                logger.exception("IPC poll failed")
            await asyncio.sleep(s.intervals.ipc_poll)
    finally:
        _ipc_watcher_running = False
