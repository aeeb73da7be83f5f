"""Per-client working directory bindings."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ..errors import WorkspaceError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkspaceBinding:
    client_id: str
    path: Path
    touched_at: float


class WorkspaceRouter:
    """Maps client identities to absolute working directories.

    Paths handed to ``set`` must already be validated; use ``resolve_within``
    to keep a requested path inside a base directory.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._bindings: dict[str, WorkspaceBinding] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def set(self, client_id: str, path: Path | str) -> None:
        resolved = Path(path)
        if not resolved.is_absolute():
            raise ValueError(f"Workspace path must be absolute: {path}")
        self._bindings[client_id] = WorkspaceBinding(client_id, resolved, self._clock())
        logger.info("Set working directory", extra={"client_id": client_id, "path": str(resolved)})

    def get(self, client_id: str, base_dir: Path | str) -> Path:
        binding = self._bindings.get(client_id)
        if binding is None:
            return Path(base_dir)
        binding.touched_at = self._clock()
        return binding.path

    def reset(self, client_id: str) -> None:
        if self._bindings.pop(client_id, None) is not None:
            logger.info("Reset working directory", extra={"client_id": client_id})

    def bindings(self) -> dict[str, Path]:
        return {client_id: binding.path for client_id, binding in self._bindings.items()}

    def last_activity(self, client_id: str) -> float | None:
        """Latest of the router's own touch time and the directory's access time."""

        binding = self._bindings.get(client_id)
        if binding is None:
            return None
        try:
            accessed = binding.path.stat().st_atime
        except OSError as exc:
            logger.warning(
                "Could not stat workspace directory",
                extra={"client_id": client_id, "path": str(binding.path), "error": str(exc)},
            )
            return binding.touched_at
        return max(binding.touched_at, accessed)

    def sweep(self, idle_threshold: float) -> list[str]:
        """Drop bindings idle for longer than ``idle_threshold`` seconds."""

        now = self._clock()
        removed: list[str] = []
        for client_id in list(self._bindings):
            last_seen = self.last_activity(client_id)
            if last_seen is not None and now - last_seen > idle_threshold:
                del self._bindings[client_id]
                removed.append(client_id)
                logger.info(
                    "Evicted idle working directory",
                    extra={"client_id": client_id, "idle_seconds": round(now - last_seen, 3)},
                )
        return removed


def resolve_within(base_dir: Path | str, requested: Path | str) -> Path:
    """Resolve ``requested`` against ``base_dir`` and require an existing directory inside it."""

    base = Path(base_dir).resolve()
    candidate = (base / Path(requested).expanduser()).resolve()
    if candidate != base and base not in candidate.parents:
        raise WorkspaceError(f"Invalid directory path: {requested}")
    if not candidate.exists():
        raise WorkspaceError(f"Directory does not exist: {candidate}")
    if not candidate.is_dir():
        raise WorkspaceError(f"Path is not a directory: {candidate}")
    return candidate


__all__ = ["WorkspaceBinding", "WorkspaceRouter", "resolve_within"]
