"""Container runtime detection — Apple Container or Docker.

Detects which container CLI is available and provides the startup check
and orphan cleanup the host runs before accepting work.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import sys
from dataclasses import dataclass

from pincer.config import get_settings
from pincer.logger import logger

CONTAINER_PREFIX = "pincer-"


@dataclass(frozen=True)
class ContainerRuntime:
    """Detected container runtime CLI ("container" or "docker")."""

    cli: str

    @property
    def is_apple(self) -> bool:
        return self.cli.rsplit("/", 1)[-1] == "container"

    def ensure_running(self) -> None:
        """Verify the container runtime is available, start it if needed."""
        check = [self.cli, "system", "status"] if self.is_apple else [self.cli, "info"]
        try:
            subprocess.run(check, capture_output=True, check=True)
            logger.debug("Container runtime is running", cli=self.cli)
            return
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            if not self.is_apple:
                raise RuntimeError(
                    f"{self.cli} is required but not running. "
                    "Start with: sudo systemctl start docker"
                ) from exc

        logger.info("Starting Apple Container system...")
        try:
            subprocess.run(
                [self.cli, "system", "start"],
                capture_output=True,
                check=True,
                timeout=30,
            )
        except (subprocess.SubprocessError, FileNotFoundError) as exc:
            raise RuntimeError("Apple Container system is required but failed to start") from exc
        logger.info("Apple Container system started")

    def list_running_containers(self, prefix: str = CONTAINER_PREFIX) -> list[str]:
        """Return names of running containers matching *prefix*."""
        try:
            if self.is_apple:
                result = subprocess.run(
                    [self.cli, "ls", "--format", "json"],
                    capture_output=True,
                    text=True,
                )
                return [
                    c["configuration"]["id"]
                    for c in json.loads(result.stdout or "[]")
                    if c.get("status") == "running"
                    and c.get("configuration", {}).get("id", "").startswith(prefix)
                ]
            result = subprocess.run(
                [self.cli, "ps", "--format", "{{json .}}"],
                capture_output=True,
                text=True,
            )
            names = [json.loads(line).get("Names", "") for line in result.stdout.splitlines() if line]
            return [n for n in names if n.startswith(prefix)]
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("Failed to list containers", err=str(exc))
            return []

    def stop_orphans(self) -> None:
        """Stop containers left behind by a previous host process."""
        orphans = self.list_running_containers()
        for name in orphans:
            try:
                subprocess.run([self.cli, "stop", name], capture_output=True, timeout=30)
            except (subprocess.SubprocessError, OSError) as exc:
                logger.warning("Failed to stop orphaned container", name=name, err=str(exc))
        if orphans:
            logger.info("Stopped orphaned containers", count=len(orphans), names=orphans)


def detect_runtime() -> ContainerRuntime:
    """Detect the container runtime to use.

    Priority: ``container.cli`` setting → Apple Container on macOS → docker.
    """
    override = get_settings().container.cli
    if override:
        return ContainerRuntime(cli=override)

    if sys.platform == "darwin" and shutil.which("container"):
        return ContainerRuntime(cli="container")
    if shutil.which("docker"):
        return ContainerRuntime(cli="docker")
    if shutil.which("container"):
        return ContainerRuntime(cli="container")
    return ContainerRuntime(cli="docker")


_runtime: ContainerRuntime | None = None


def get_runtime() -> ContainerRuntime:
    """Lazy singleton — caches the result of detect_runtime()."""
    global _runtime
    if _runtime is None:
        _runtime = detect_runtime()
        logger.info("Container runtime detected", cli=_runtime.cli)
    return _runtime


def reset_runtime() -> None:
    """Forget the detected runtime (for tests)."""
    global _runtime
    _runtime = None
