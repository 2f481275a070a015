"""IPC handler for outbound chat messages."""

from __future__ import annotations

from pincer.db import is_envelope_delivered, mark_envelope_delivered
from pincer.errors import IpcRequestError
from pincer.ipc._deps import IpcDeps
from pincer.ipc._protocol import MessageEnvelope
from pincer.ipc._registry import register
from pincer.logger import logger


async def _handle_message(
    envelope: MessageEnvelope,
    source_folder: str,
    is_main: bool,
    deps: IpcDeps,
) -> None:
    target_group = deps.registered_groups().get(envelope.chat_jid)
    if not (is_main or (target_group and target_group.folder == source_folder)):
        raise IpcRequestError(
            f"Unauthorized message from {source_folder!r} to {envelope.chat_jid}"
        )

    dedup_key = f"{source_folder}/{envelope.id}"
    if await is_envelope_delivered(dedup_key):
        logger.info("Duplicate IPC message skipped", envelope_id=envelope.id, source_group=source_folder)
        return

    await deps.send_message(envelope.chat_jid, envelope.text)
    await mark_envelope_delivered(dedup_key, source_folder)
    logger.info("IPC message sent", chat_jid=envelope.chat_jid, source_group=source_folder)


register("message", _handle_message)
