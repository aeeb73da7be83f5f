"""Exception taxonomy shared by the executor components."""

from __future__ import annotations


class ExecutorError(RuntimeError):
    """Base class for executor errors."""


class SpawnError(ExecutorError):
    """Raised when the OS refuses to create a process."""

    def __init__(self, message: str, *, command: str | None = None) -> None:
        super().__init__(message)
        self.command = command
        self.exit_code = -1
        self.output = message


class TimeoutExceeded(ExecutorError):
    """Raised when a command outlived its wall-clock limit."""

    def __init__(self, message: str, *, timeout: float | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout


class NonZeroExit(ExecutorError):
    """Raised on request for a command that finished with a non-zero exit code."""

    def __init__(self, message: str, *, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class UnknownTaskError(ExecutorError, LookupError):
    """Raised when a task id is not tracked."""


class UnknownProcessError(ExecutorError, LookupError):
    """Raised when a background process id is not tracked."""


class TerminalStateConflict(ExecutorError):
    """Raised when a task in a terminal state is asked to change status."""


class WorkspaceError(ExecutorError, ValueError):
    """Raised when a requested workspace path is unusable."""


class ProcessConflictError(ExecutorError):
    """Raised when a client already owns a running background process."""


__all__ = [
    "ExecutorError",
    "SpawnError",
    "TimeoutExceeded",
    "NonZeroExit",
    "UnknownTaskError",
    "UnknownProcessError",
    "TerminalStateConflict",
    "WorkspaceError",
    "ProcessConflictError",
]
