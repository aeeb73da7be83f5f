"""In-memory registry that owns every Task."""

from __future__ import annotations

import logging
from uuid import uuid4

from ..config import DEFAULT_MAX_OUTPUT_BYTES
from ..errors import TerminalStateConflict
from ..execution import ProcessHandle
from .buffer import OutputBuffer
from .models import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskRegistry:
    """Creates and tracks tasks, their lifecycle and their bounded output.

    Operations never raise for unknown ids; they return ``None``, ``""`` or
    ``False`` so callers can map outcomes straight onto responses.
    """

    def __init__(self, max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES) -> None:
        self.max_output_bytes = max_output_bytes
        self._tasks: dict[str, Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def create_task(self, command: str) -> Task:
        task = Task(id=uuid4().hex, command=command, output=OutputBuffer(self.max_output_bytes))
        self._tasks[task.id] = task
        logger.info("Created task", extra={"task_id": task.id, "command": command})
        return task

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus | str | None = None,
        exit_code: int | None = None,
        error: str | None = None,
        output: str | None = None,
    ) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            return

        if output:
            kept = task.output.append(output)
            if kept < len(output.encode("utf-8")):
                logger.debug(
                    "Task output capped",
                    extra={"task_id": task_id, "capacity": task.output.capacity},
                )
        if status is not None:
            try:
                task.advance(status)
            except (TerminalStateConflict, ValueError) as exc:
                logger.debug("Ignored status change", extra={"task_id": task_id, "reason": str(exc)})
        if exit_code is not None:
            task.exit_code = exit_code
        if error is not None:
            task.error = error
        task.touch()

    def get_task_output(self, task_id: str) -> str:
        task = self._tasks.get(task_id)
        return task.output.text() if task is not None else ""

    def get_all_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def attach_process(self, task_id: str, handle: ProcessHandle) -> bool:
        task = self._tasks.get(task_id)
        if task is None or task.terminal:
            return False
        task.handle = handle
        return True

    def detach_process(self, task_id: str) -> ProcessHandle | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        handle, task.handle = task.handle, None
        return handle

    def end_task(self, task_id: str) -> bool:
        """Stop a pending or running task and mark it completed."""

        task = self._tasks.get(task_id)
        if task is None or task.terminal:
            return False

        handle = self.detach_process(task_id)
        if handle is not None:
            handle.kill()
        task.advance(TaskStatus.COMPLETED)
        task.touch()
        logger.info(
            "Ended task",
            extra={"task_id": task_id, "pid": handle.pid if handle is not None else None},
        )
        return True


__all__ = ["TaskRegistry"]
