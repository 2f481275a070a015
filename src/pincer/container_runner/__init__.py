"""Container runner — runs one agent invocation in an isolated container.

Writes the request to the container's stdin, reads the result from the last
stdout line, enforces a wall-clock timeout, and writes a per-run log file.

This package is split into focused submodules:
  protocol       — request/result wire format (shared with the agent side)
  _mounts        — volume mount list and container arg construction
  _process       — stdin feeding, capped stream reading, container stop
  _logs          — run log file writing
  _snapshots     — IPC snapshot file helpers
  _orchestrator  — main entry point (run_container_agent)
"""

from pincer.container_runner._mounts import build_container_args, build_volume_mounts
from pincer.container_runner._orchestrator import OnProcess, run_container_agent
from pincer.container_runner._snapshots import TASKS_SNAPSHOT, write_tasks_snapshot

__all__ = [
    "TASKS_SNAPSHOT",
    "OnProcess",
    "build_container_args",
    "build_volume_mounts",
    "run_container_agent",
    "write_tasks_snapshot",
]
