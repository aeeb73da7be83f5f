"""Task data model and lifecycle rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import TerminalStateConflict
from .buffer import OutputBuffer

if TYPE_CHECKING:
    from ..execution import ProcessHandle


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


_ALLOWED_TRANSITIONS: frozenset[tuple[TaskStatus, TaskStatus]] = frozenset(
    {
        (TaskStatus.PENDING, TaskStatus.RUNNING),
        (TaskStatus.PENDING, TaskStatus.COMPLETED),
        (TaskStatus.PENDING, TaskStatus.FAILED),
        (TaskStatus.RUNNING, TaskStatus.COMPLETED),
        (TaskStatus.RUNNING, TaskStatus.FAILED),
    }
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Task:
    """A tracked command execution with bounded output."""

    id: str
    command: str
    output: OutputBuffer
    status: TaskStatus = TaskStatus.PENDING
    exit_code: int | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    handle: ProcessHandle | None = field(default=None, repr=False, compare=False)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def advance(self, status: TaskStatus | str) -> bool:
        """Move to ``status``; returns False when already there.

        Raises ``TerminalStateConflict`` when leaving a terminal state and
        ``ValueError`` for any other transition the lifecycle forbids.
        """

        target = TaskStatus(status)
        if target is self.status:
            return False
        if self.status.terminal:
            raise TerminalStateConflict(
                f"Task '{self.id}' is already {self.status.value}; cannot move to {target.value}"
            )
        if (self.status, target) not in _ALLOWED_TRANSITIONS:
            raise ValueError(f"Task '{self.id}' cannot move from {self.status.value} to {target.value}")
        self.status = target
        if target.terminal:
            self.handle = None
        return True

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_dict(self, *, include_output: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "command": self.command,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_output:
            payload["output"] = self.output.text()
            payload["output_truncated"] = self.output.truncated
        return payload


__all__ = ["Task", "TaskStatus"]
