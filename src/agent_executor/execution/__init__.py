"""Shell command execution primitives."""

from .runner import (
    TIMEOUT_EXIT_CODE,
    CommandResult,
    CommandRunner,
    ProcessHandle,
    RunningCommand,
)

__all__ = [
    "TIMEOUT_EXIT_CODE",
    "CommandResult",
    "CommandRunner",
    "ProcessHandle",
    "RunningCommand",
]
