"""Main entry point: run one agent invocation in a container."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from pincer.config import get_settings
from pincer.container_runner._logs import _write_run_log
from pincer.container_runner._mounts import build_container_args, build_volume_mounts
from pincer.container_runner._process import (
    StreamCapture,
    read_stderr,
    read_stdout,
    stop_container,
    write_stdin,
)
from pincer.container_runner.protocol import parse_result_line, request_to_json
from pincer.logger import logger
from pincer.runtime import CONTAINER_PREFIX, get_runtime
from pincer.types import InvocationRequest, InvocationResult, RegisteredGroup, VolumeMount
from pincer.utils import create_background_task

OnProcess = Callable[[asyncio.subprocess.Process, str], None]


def _container_name(folder: str) -> str:
    return f"{CONTAINER_PREFIX}{folder}-{int(time.time() * 1000)}"


def _parse_final_output(stdout: str, container_name: str) -> InvocationResult:
    """Parse the last non-empty stdout line; every other line is diagnostic."""
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        logger.error("Container produced no output", container=container_name)
        return InvocationResult(status="error", error="Container produced no output")

    last = lines[-1].strip()
    try:
        return parse_result_line(last)
    except ValueError as exc:
        preview = last[:200] + "..." if len(last) > 200 else last
        logger.error(
            "Failed to parse container output",
            container=container_name,
            err=str(exc),
            preview=preview,
        )
        return InvocationResult(
            status="error",
            error=f"Failed to parse container output: {exc}",
        )


async def run_container_agent(
    group: RegisteredGroup,
    request: InvocationRequest,
    on_process: OnProcess | None = None,
) -> InvocationResult:
    """Run one invocation to completion and return its result.

    Never raises for agent-side failures: spawn errors, timeouts, non-zero
    exits and unparsable output all come back as ``status="error"``.
    Callers must hold the folder lock.
    """
    s = get_settings()
    start_time = time.monotonic()

    mounts = build_volume_mounts(group, request.is_main)
    container_name = _container_name(group.folder)
    container_args = build_container_args(mounts, container_name)
    cli = get_runtime().cli

    timeout_secs = s.container_timeout
    if group.container_config and group.container_config.timeout:
        timeout_secs = group.container_config.timeout

    logger.info(
        "Spawning container agent",
        group=group.name,
        container=container_name,
        mount_count=len(mounts),
        is_main=request.is_main,
    )

    try:
        proc = await asyncio.create_subprocess_exec(
            cli,
            *container_args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.error("Container spawn error", group=group.name, err=str(exc))
        return InvocationResult(status="error", error=f"Container spawn error: {exc}")

    if on_process is not None:
        on_process(proc, container_name)

    loop = asyncio.get_running_loop()
    timed_out = False

    def kill_on_timeout() -> None:
        nonlocal timed_out
        timed_out = True
        logger.error("Container timeout, killing", group=group.name, container=container_name)
        if proc.returncode is None:
            proc.kill()
        create_background_task(
            stop_container(cli, container_name, s.container.stop_grace_seconds),
            name=f"stop-{container_name}",
        )

    timeout_handle = loop.call_later(timeout_secs, kill_on_timeout)

    assert proc.stdout is not None
    assert proc.stderr is not None
    try:
        _, stdout, stderr = await asyncio.gather(
            write_stdin(proc, request_to_json(request), container_name),
            read_stdout(proc.stdout, s.container.max_output_size, group.folder),
            read_stderr(proc.stderr, s.container.max_output_size, group.folder),
        )
        exit_code = await proc.wait()
    finally:
        timeout_handle.cancel()

    duration_ms = (time.monotonic() - start_time) * 1000
    _log_run(
        group=group,
        container_name=container_name,
        request=request,
        mounts=mounts,
        stdout=stdout,
        stderr=stderr,
        duration_ms=duration_ms,
        exit_code=exit_code,
        timed_out=timed_out,
    )

    if timed_out:
        return InvocationResult(
            status="error",
            error=f"Container timed out after {timeout_secs:g}s",
        )

    if exit_code != 0:
        logger.error(
            "Container exited with error",
            group=group.name,
            code=exit_code,
            duration_ms=duration_ms,
            stderr=stderr.text[-500:],
        )
        return InvocationResult(
            status="error",
            error=f"Container exited with code {exit_code}: {stderr.text[-200:]}",
        )

    result = _parse_final_output(stdout.text, container_name)
    if result.status == "success":
        logger.info(
            "Container completed",
            group=group.name,
            duration_ms=duration_ms,
            has_result=bool(result.result),
            new_session_id=result.new_session_id,
        )
    return result


def _log_run(
    *,
    group: RegisteredGroup,
    container_name: str,
    request: InvocationRequest,
    mounts: list[VolumeMount],
    stdout: StreamCapture,
    stderr: StreamCapture,
    duration_ms: float,
    exit_code: int | None,
    timed_out: bool,
) -> None:
    try:
        _write_run_log(
            logs_dir=get_settings().groups_dir / group.folder / "logs",
            container_name=container_name,
            request=request,
            mounts=mounts,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            exit_code=exit_code,
            timed_out=timed_out,
        )
    except OSError as exc:
        logger.warning("Failed to write container run log", group=group.name, err=str(exc))
