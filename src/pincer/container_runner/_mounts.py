"""Volume mount list construction and container CLI arg building."""

from __future__ import annotations

from pathlib import Path

from pincer.config import get_settings
from pincer.logger import logger
from pincer.types import RegisteredGroup, VolumeMount


def _expand_host_path(host_path: str) -> Path:
    if host_path.startswith("~"):
        return get_settings().home_dir / host_path[1:].lstrip("/")
    return Path(host_path)


def build_volume_mounts(group: RegisteredGroup, is_main: bool) -> list[VolumeMount]:
    """Build the mount list for one invocation.

    Always: the group folder (rw), the session area (rw) and the IPC mailbox
    (rw). The global memory file is mounted when it exists, writable only for
    the main group. Extra mounts are read-only unless marked otherwise and
    are skipped when the host path is missing.
    """
    s = get_settings()
    mounts: list[VolumeMount] = []

    group_dir = s.groups_dir / group.folder
    group_dir.mkdir(parents=True, exist_ok=True)
    mounts.append(VolumeMount(str(group_dir), "/workspace/group", readonly=False))

    global_memory = s.global_memory_path
    if global_memory.exists():
        mounts.append(
            VolumeMount(str(global_memory), "/workspace/global/CLAUDE.md", readonly=not is_main)
        )

    # Per-group agent sessions directory (isolated from other groups)
    session_dir = s.data_dir / "sessions" / group.folder / ".claude"
    session_dir.mkdir(parents=True, exist_ok=True)
    mounts.append(VolumeMount(str(session_dir), "/home/agent/.claude", readonly=False))

    # Per-group IPC namespace
    group_ipc_dir = s.data_dir / "ipc" / group.folder
    for sub in ("messages", "tasks"):
        (group_ipc_dir / sub).mkdir(parents=True, exist_ok=True)
    mounts.append(VolumeMount(str(group_ipc_dir), "/workspace/ipc", readonly=False))

    if group.container_config:
        for extra in group.container_config.additional_mounts:
            host_path = _expand_host_path(extra.host_path)
            if not host_path.exists():
                logger.warning(
                    "Additional mount path does not exist, skipping",
                    group=group.name,
                    host_path=str(host_path),
                )
                continue
            name = (extra.container_path or host_path.name).strip("/")
            mounts.append(
                VolumeMount(
                    host_path=str(host_path),
                    container_path=f"/workspace/extra/{name}",
                    readonly=extra.readonly,
                )
            )

    return mounts


def build_container_args(
    mounts: list[VolumeMount],
    container_name: str,
    image: str | None = None,
) -> list[str]:
    """Build CLI args for ``<cli> run``."""
    args = ["run", "-i", "--rm", "--name", container_name]
    for m in mounts:
        mode = ":ro" if m.readonly else ""
        args.extend(["-v", f"{m.host_path}:{m.container_path}{mode}"])
    args.append(image or get_settings().container.image)
    return args
