"""Per-run log files under ``groups/<folder>/logs/``.

Every run gets a short header. Stream bodies are written only when the run
failed or the log level is DEBUG, since they can hold conversation text.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from pincer.config import get_settings
from pincer.container_runner._process import StreamCapture
from pincer.types import InvocationRequest, VolumeMount


def _outcome(exit_code: int | None, timed_out: bool) -> str:
    if timed_out:
        return "timeout"
    return "ok" if exit_code == 0 else "failed"


def _section(title: str, capture: StreamCapture) -> list[str]:
    marker = " (tail only)" if capture.truncated else ""
    return ["", f"--- {title}{marker} ---", capture.text.rstrip("\n")]


def _write_run_log(
    *,
    logs_dir: Path,
    container_name: str,
    request: InvocationRequest,
    mounts: list[VolumeMount],
    stdout: StreamCapture,
    stderr: StreamCapture,
    duration_ms: float,
    exit_code: int | None,
    timed_out: bool,
) -> Path:
    finished = datetime.now(UTC)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"container-{finished.strftime('%Y%m%dT%H%M%S%fZ')}.log"

    outcome = _outcome(exit_code, timed_out)
    lines = [
        f"container: {container_name}",
        f"finished: {finished.isoformat()}",
        f"outcome: {outcome}",
        f"exit code: {exit_code}",
        f"duration: {duration_ms:.0f}ms",
        f"main: {request.is_main}",
        f"session: {request.session_id or 'new'}",
        f"prompt: {len(request.prompt)} chars",
    ]
    if request.attachment:
        lines.append(f"attachment: {request.attachment.mime_type}")
    lines.extend(
        f"mount: {m.host_path} -> {m.container_path}{' ro' if m.readonly else ''}"
        for m in mounts
    )

    if outcome != "ok" or get_settings().logging.level in ("DEBUG", "TRACE"):
        lines += _section("stderr", stderr)
        lines += _section("stdout", stdout)

    log_file.write_text("\n".join(lines) + "\n")
    return log_file
