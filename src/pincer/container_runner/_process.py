"""Process I/O helpers: stdin feeding, capped stream reading, container stop."""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import Callable
from dataclasses import dataclass

from pincer.logger import logger


@dataclass
class StreamCapture:
    """Accumulated text of one output stream.

    When the cap is exceeded the oldest text is dropped, so the tail (where
    the result line lives) is always kept.
    """

    text: str = ""
    truncated: bool = False


async def write_stdin(proc: asyncio.subprocess.Process, payload: str, container: str) -> None:
    """Write the request to stdin and close it."""
    assert proc.stdin is not None
    try:
        proc.stdin.write(payload.encode())
        await proc.stdin.drain()
    except (BrokenPipeError, ConnectionResetError) as exc:
        # The process died before reading its input; the exit code reports it.
        logger.warning("Container closed stdin early", container=container, err=str(exc))
    finally:
        proc.stdin.close()


async def _read_capped(
    stream: asyncio.StreamReader,
    max_output_size: int,
    group: str,
    stream_name: str,
    on_text: Callable[[str], None] | None = None,
) -> StreamCapture:
    """Accumulate *stream* as text, keeping the last *max_output_size* chars.

    Decoding is incremental so a multi-byte character split across two reads
    is decoded whole.
    """
    capture = StreamCapture()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(8192)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            if on_text is not None:
                on_text(text)
            capture.text += text
            if len(capture.text) > max_output_size:
                capture.text = capture.text[-max_output_size:]
                if not capture.truncated:
                    logger.warning(
                        f"Container {stream_name} truncated", group=group, size=max_output_size
                    )
                capture.truncated = True
        if not chunk:
            return capture


async def read_stdout(stream: asyncio.StreamReader, max_output_size: int, group: str) -> StreamCapture:
    return await _read_capped(stream, max_output_size, group, "stdout")


async def read_stderr(stream: asyncio.StreamReader, max_output_size: int, group: str) -> StreamCapture:
    """Read container stderr, logging each line at debug level."""

    def log_lines(text: str) -> None:
        for line in text.strip().splitlines():
            if line:
                logger.debug(line, container=group)

    return await _read_capped(stream, max_output_size, group, "stderr", on_text=log_lines)


async def stop_container(cli: str, container_name: str, grace_seconds: float) -> None:
    """Best-effort ``<cli> stop <name>``; failures are logged only."""
    try:
        stop_proc = await asyncio.create_subprocess_exec(
            cli,
            "stop",
            container_name,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            await asyncio.wait_for(stop_proc.wait(), timeout=grace_seconds)
        except TimeoutError:
            logger.warning("Container stop timed out", container=container_name)
            stop_proc.kill()
    except OSError as exc:
        logger.debug("Container stop failed", container=container_name, err=str(exc))
