"""Exception types raised inside the host.

None of these cross a component boundary: the container runner turns
failures into an error InvocationResult, the scheduler into an error
TaskRunLog, and the IPC watcher into a log line plus an archived envelope.
"""

from __future__ import annotations


class PincerError(Exception):
    """Base class for host-side errors."""


class GroupRegistrationError(PincerError):
    """A group could not be registered (bad folder name, folder change, clash)."""


class EnvelopeValidationError(PincerError):
    """An IPC envelope is not valid JSON or does not match its declared type."""


class IpcRequestError(PincerError):
    """A well-formed IPC request was rejected (unauthorized, unknown target, bad schedule)."""
