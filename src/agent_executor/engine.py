"""Executor engine: the single owner of runner, registries and workspace bindings."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from pathlib import Path
from typing import Any

from .config import ExecutorSettings
from .errors import ProcessConflictError, SpawnError, WorkspaceError
from .execution import CommandResult, CommandRunner, RunningCommand
from .processes import ProcessRegistry
from .tasks import Task, TaskRegistry, TaskStatus
from .workspaces import WorkspaceRouter, resolve_within

logger = logging.getLogger(__name__)

DEFAULT_DEV_COMMAND = "npm run dev"
_DEV_SCRIPT_COMMANDS = (
    ("dev", "npm run dev"),
    ("start", "npm start"),
    ("serve", "npm run serve"),
)


class ExecutorEngine:
    """Created once at startup and shut down explicitly.

    All state lives in memory on one event loop; request handlers receive the
    engine rather than reaching for module-level state.
    """

    def __init__(
        self,
        settings: ExecutorSettings,
        *,
        runner: CommandRunner | None = None,
        tasks: TaskRegistry | None = None,
        processes: ProcessRegistry | None = None,
        workspaces: WorkspaceRouter | None = None,
    ) -> None:
        self.settings = settings
        self.base_directory = Path(settings.working_directory)
        self.runner = runner or CommandRunner(settings.shell, timeout=settings.command_timeout)
        self.tasks = tasks or TaskRegistry(settings.max_output_bytes)
        self.processes = processes or ProcessRegistry(
            self.runner, max_output_bytes=settings.max_output_bytes
        )
        self.workspaces = workspaces or WorkspaceRouter()
        self._supervisors: dict[str, asyncio.Task[None]] = {}
        self._dev_servers: dict[str, str] = {}
        self._dev_server_starts: set[str] = set()
        self._sweeper: asyncio.Task[None] | None = None

    # ----- lifecycle -----

    @property
    def started(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def start(self) -> None:
        if self.started:
            return
        self._sweeper = asyncio.create_task(self._sweep_periodically(), name="workspace-sweeper")
        logger.info(
            "Executor engine started",
            extra={
                "working_directory": str(self.base_directory),
                "sweep_interval": self.settings.sweep_interval,
                "idle_threshold": self.settings.idle_threshold,
            },
        )

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for task in self.tasks.get_all_tasks():
            if task.handle is not None:
                task.handle.kill()
        if self._supervisors:
            await asyncio.gather(*list(self._supervisors.values()), return_exceptions=True)

        await self.processes.aclose()
        self._dev_servers.clear()
        logger.info("Executor engine stopped")

    async def _sweep_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            self.sweep_workspaces()

    # ----- workspaces -----

    def working_directory(self, client_id: str) -> Path:
        return self.workspaces.get(client_id, self.base_directory)

    def change_directory(self, client_id: str, new_path: str | Path) -> Path:
        resolved = resolve_within(self.base_directory, new_path)
        self.workspaces.set(client_id, resolved)
        return resolved

    def reset_directory(self, client_id: str) -> Path:
        self.workspaces.reset(client_id)
        return self.base_directory

    def sweep_workspaces(self) -> list[str]:
        return self.workspaces.sweep(self.settings.idle_threshold)

    # ----- tasks -----

    async def submit(self, command: str, client_id: str, *, timeout: float | None = None) -> Task:
        """Start ``command`` as a tracked task and return without waiting for it."""

        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be > 0 seconds")
        task = self.tasks.create_task(command)
        cwd = self.working_directory(client_id)
        limit = self.settings.command_timeout if timeout is None else timeout
        channel: asyncio.Queue[str | None] = asyncio.Queue(maxsize=self.settings.output_channel_size)

        try:
            running = await self.runner.run(command, cwd, channel.put, timeout=limit)
        except SpawnError as exc:
            self.tasks.update_task(
                task.id,
                status=TaskStatus.FAILED,
                exit_code=exc.exit_code,
                error=str(exc),
                output=exc.output,
            )
            return task

        self.tasks.attach_process(task.id, running.handle)
        self.tasks.update_task(task.id, status=TaskStatus.RUNNING)

        supervisor = asyncio.create_task(
            self._supervise(task.id, running, channel, limit), name=f"task-{task.id}"
        )
        self._supervisors[task.id] = supervisor
        supervisor.add_done_callback(lambda _: self._supervisors.pop(task.id, None))

        logger.info(
            "Submitted task",
            extra={"task_id": task.id, "client_id": client_id, "cwd": str(cwd), "pid": running.handle.pid},
        )
        return task

    async def wait_for_task(self, task_id: str) -> Task | None:
        supervisor = self._supervisors.get(task_id)
        if supervisor is not None:
            await asyncio.wait({supervisor})
        return self.tasks.get_task(task_id)

    async def _drain(self, task_id: str, channel: asyncio.Queue[str | None]) -> None:
        while True:
            chunk = await channel.get()
            if chunk is None:
                return
            self.tasks.update_task(task_id, output=chunk)

    async def _supervise(
        self,
        task_id: str,
        running: RunningCommand,
        channel: asyncio.Queue[str | None],
        limit: float,
    ) -> None:
        consumer = asyncio.create_task(self._drain(task_id, channel))
        try:
            result = await running.result
        except asyncio.CancelledError:
            consumer.cancel()
            raise
        except Exception as exc:
            logger.exception("Task supervision failed", extra={"task_id": task_id})
            consumer.cancel()
            self.tasks.detach_process(task_id)
            self.tasks.update_task(task_id, status=TaskStatus.FAILED, error=str(exc))
            return

        await channel.put(None)
        await consumer
        self._finalize(task_id, result, limit)

    def _finalize(self, task_id: str, result: CommandResult, limit: float) -> None:
        self.tasks.detach_process(task_id)
        task = self.tasks.get_task(task_id)
        if task is None:
            return
        if task.terminal:
            # Ended by the caller; only record how the process went down.
            self.tasks.update_task(task_id, exit_code=result.exit_code)
            return

        if result.success:
            self.tasks.update_task(task_id, status=TaskStatus.COMPLETED, exit_code=result.exit_code)
        elif result.timed_out:
            message = f"Command timed out after {limit:g}s"
            self.tasks.update_task(
                task_id,
                status=TaskStatus.FAILED,
                exit_code=result.exit_code,
                error=message,
                output=f"\nCommand terminated: {message}\n",
            )
        else:
            self.tasks.update_task(
                task_id,
                status=TaskStatus.FAILED,
                exit_code=result.exit_code,
                error=f"Command exited with code {result.exit_code}",
            )
        logger.info(
            "Task finished",
            extra={"task_id": task_id, "status": task.status.value, "exit_code": result.exit_code},
        )

    def task_status(self, task_id: str) -> dict[str, Any] | None:
        task = self.tasks.get_task(task_id)
        return task.to_dict() if task is not None else None

    def list_tasks(self) -> list[dict[str, Any]]:
        return [task.to_dict(include_output=False) for task in self.tasks.get_all_tasks()]

    def end_task(self, task_id: str) -> bool:
        return self.tasks.end_task(task_id)

    # ----- direct execution -----

    async def run_command(self, command: str, client_id: str) -> CommandResult:
        """Run ``command`` to completion; ``cd <dir>`` rebinds the client's directory instead."""

        stripped = command.strip()
        if stripped == "cd" or stripped.startswith("cd "):
            return self._change_directory_command(stripped, client_id)

        cwd = self.working_directory(client_id)
        logger.info("Executing command", extra={"client_id": client_id, "command": command, "cwd": str(cwd)})
        result = await self.runner.execute(command, cwd, timeout=self.settings.execute_timeout)
        logger.info(
            "Command result",
            extra={"client_id": client_id, "exit_code": result.exit_code, "timed_out": result.timed_out},
        )
        return result

    def _change_directory_command(self, command: str, client_id: str) -> CommandResult:
        target = command[2:].strip()
        if not target:
            base = self.reset_directory(client_id)
            return CommandResult(command=command, exit_code=0, output=f"Changed directory to: {base}")
        try:
            resolved = resolve_within(self.base_directory, self.working_directory(client_id) / target)
        except WorkspaceError as exc:
            return CommandResult(command=command, exit_code=1, output=str(exc))
        self.workspaces.set(client_id, resolved)
        return CommandResult(command=command, exit_code=0, output=f"Changed directory to: {resolved}")

    # ----- dev servers -----

    @staticmethod
    def detect_dev_command(directory: Path) -> str:
        manifest = Path(directory) / "package.json"
        try:
            document = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Could not read package.json, using default command", extra={"path": str(manifest)})
            return DEFAULT_DEV_COMMAND
        scripts = document.get("scripts") if isinstance(document, dict) else None
        if isinstance(scripts, dict):
            for script, dev_command in _DEV_SCRIPT_COMMANDS:
                if script in scripts:
                    return dev_command
        return DEFAULT_DEV_COMMAND

    async def start_dev_server(
        self,
        client_id: str,
        *,
        command: str | None = None,
        port: int | None = None,
    ) -> dict[str, Any]:
        existing = self._dev_servers.get(client_id)
        if client_id in self._dev_server_starts or (existing is not None and existing in self.processes):
            raise ProcessConflictError("Dev server is already running")

        cwd = self.working_directory(client_id)
        dev_command = f"PORT={port or self.settings.dev_server_port} {command or self.detect_dev_command(cwd)}"
        self._dev_server_starts.add(client_id)
        try:
            process_id = await self.processes.start(dev_command, cwd)
        finally:
            self._dev_server_starts.discard(client_id)
        self._dev_servers[client_id] = process_id
        return {"process_id": process_id, "command": dev_command, "working_directory": str(cwd)}

    def dev_server_status(self, client_id: str) -> dict[str, Any]:
        process_id = self._dev_servers.get(client_id)
        snapshot = self.processes.status(process_id) if process_id is not None else None
        if snapshot is None:
            self._dev_servers.pop(client_id, None)
            return {"process_id": None, "running": False, "stdout": "", "stderr": ""}
        return {"process_id": process_id, **snapshot}

    def stop_dev_server(self, client_id: str) -> bool:
        process_id = self._dev_servers.pop(client_id, None)
        if process_id is None:
            return False
        return self.processes.stop(process_id)

    # ----- reporting -----

    def describe(self) -> dict[str, Any]:
        status_counts: dict[str, int] = {}
        for task in self.tasks.get_all_tasks():
            status_counts[task.status.value] = status_counts.get(task.status.value, 0) + 1
        return {
            "working_directory": str(self.base_directory),
            "started": self.started,
            "tasks": {"count": len(self.tasks), "status_counts": status_counts},
            "processes": self.processes.list_processes(),
            "workspaces": {client: str(path) for client, path in self.workspaces.bindings().items()},
        }


__all__ = ["DEFAULT_DEV_COMMAND", "ExecutorEngine"]
