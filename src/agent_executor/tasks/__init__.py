"""Task lifecycle tracking."""

from .buffer import OutputBuffer
from .models import Task, TaskStatus
from .registry import TaskRegistry

__all__ = ["OutputBuffer", "Task", "TaskRegistry", "TaskStatus"]
