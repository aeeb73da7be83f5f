"""Registry of detached background processes such as dev servers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from ..config import DEFAULT_MAX_OUTPUT_BYTES
from ..execution import CommandRunner, ProcessHandle
from ..execution.runner import read_stream
from ..execution.utils import AnsiStripper
from ..tasks import OutputBuffer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ManagedProcess:
    id: str
    command: str
    working_directory: Path
    handle: ProcessHandle
    stdout: OutputBuffer
    stderr: OutputBuffer
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def running(self) -> bool:
        return self.handle.running

    def snapshot(self) -> dict[str, Any]:
        return {
            "stdout": self.stdout.text(),
            "stderr": self.stderr.text(),
            "running": self.running,
        }

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "working_directory": str(self.working_directory),
            "pid": self.handle.pid,
            "running": self.running,
            "started_at": self.started_at.isoformat(),
        }


class ProcessRegistry:
    """Tracks long-running processes independently of the task lifecycle.

    An entry disappears either through ``stop``/``stop_all`` or when its
    process exits on its own.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        self._runner = runner
        self.max_output_bytes = max_output_bytes
        self._entries: dict[str, ManagedProcess] = {}
        self._watchers: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, process_id: object) -> bool:
        return process_id in self._entries

    async def start(self, command: str, working_directory: Path | str) -> str:
        """Spawn ``command`` in the background and return its process id."""

        handle = await self._runner.spawn(command, working_directory, merge_stderr=False)
        entry = ManagedProcess(
            id=f"proc_{uuid4().hex[:12]}",
            command=command,
            working_directory=Path(working_directory),
            handle=handle,
            stdout=OutputBuffer(self.max_output_bytes),
            stderr=OutputBuffer(self.max_output_bytes),
        )
        self._entries[entry.id] = entry

        watcher = asyncio.create_task(self._watch(entry), name=f"watch-{entry.id}")
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

        logger.info(
            "Started background process",
            extra={"process_id": entry.id, "command": command, "pid": handle.pid},
        )
        return entry.id

    def get(self, process_id: str) -> ManagedProcess | None:
        return self._entries.get(process_id)

    def status(self, process_id: str) -> dict[str, Any] | None:
        entry = self._entries.get(process_id)
        return entry.snapshot() if entry is not None else None

    def list_processes(self) -> list[dict[str, Any]]:
        return [entry.summary() for entry in self._entries.values()]

    def stop(self, process_id: str) -> bool:
        entry = self._entries.pop(process_id, None)
        if entry is None:
            return False
        entry.handle.kill()
        logger.info("Stopped background process", extra={"process_id": process_id})
        return True

    def stop_all(self) -> int:
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.handle.kill()
        if entries:
            logger.info("Stopped all background processes", extra={"count": len(entries)})
        return len(entries)

    async def aclose(self) -> None:
        self.stop_all()
        if self._watchers:
            await asyncio.gather(*list(self._watchers), return_exceptions=True)

    async def _watch(self, entry: ManagedProcess) -> None:
        def _sink(buffer: OutputBuffer, stripper: AnsiStripper):
            return lambda text: buffer.append(stripper.feed(text))

        streams = [
            (entry.handle.stdout, entry.stdout, AnsiStripper()),
            (entry.handle.stderr, entry.stderr, AnsiStripper()),
        ]
        readers = [
            asyncio.create_task(read_stream(stream, _sink(buffer, stripper)))
            for stream, buffer, stripper in streams
        ]
        try:
            exit_code = await entry.handle.wait()
            await asyncio.wait(readers, timeout=2.0)
        finally:
            for reader in readers:
                reader.cancel()
            for _, buffer, stripper in streams:
                buffer.append(stripper.flush())

        if self._entries.get(entry.id) is entry:
            del self._entries[entry.id]
            logger.info(
                "Background process exited",
                extra={"process_id": entry.id, "exit_code": exit_code},
            )


__all__ = ["ManagedProcess", "ProcessRegistry"]
