"""File-based IPC between host and agent containers."""

# Import handler modules to trigger self-registration in the registry.
import pincer.ipc._handlers_messages  # noqa: F401
import pincer.ipc._handlers_tasks  # noqa: F401
from pincer.ipc._deps import IpcDeps
from pincer.ipc._protocol import parse_envelope
from pincer.ipc._registry import dispatch
from pincer.ipc._watcher import process_ipc_once, start_ipc_watcher
from pincer.ipc._write import write_envelope
from pincer.ipc.client import AgentIpcClient

__all__ = [
    "AgentIpcClient",
    "IpcDeps",
    "dispatch",
    "parse_envelope",
    "process_ipc_once",
    "start_ipc_watcher",
    "write_envelope",
]
