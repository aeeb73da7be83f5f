"""Background process tracking."""

from .registry import ManagedProcess, ProcessRegistry

__all__ = ["ManagedProcess", "ProcessRegistry"]
