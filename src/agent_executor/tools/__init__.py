"""Tool registration for the Agent Executor MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..config import ExecutorSettings
from ..engine import ExecutorEngine
from ..errors import UnknownProcessError, UnknownTaskError

ANONYMOUS_CLIENT = "anonymous"


@dataclass(slots=True)
class ToolHandles:
    execute: Any
    run_command: Any
    task_status: Any
    list_tasks: Any
    end_task: Any
    dev_server: Any
    list_processes: Any
    change_directory: Any
    reset_directory: Any


def _resolve_client(client_id: str | None, context: Context | None) -> str:
    if client_id:
        return client_id
    context_client = getattr(context, "client_id", None) if context is not None else None
    return context_client or ANONYMOUS_CLIENT


def register_tools(
    server: FastMCP,
    *,
    engine: ExecutorEngine,
    settings: ExecutorSettings,
) -> ToolHandles:
    """Register the executor's MCP tools on the server."""

    async def _execute(
        command: str,
        *,
        client_id: str | None = None,
        timeout: float | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start a command as a tracked task and return its id immediately."""

        if not command or not command.strip():
            raise ValueError("command is required")
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be > 0 seconds")
        client = _resolve_client(client_id, context)
        task = await engine.submit(command, client, timeout=timeout)

        _emit_log(
            context,
            "info",
            "Submitted command",
            extra={"task_id": task.id, "client_id": client, "status": task.status.value},
        )
        return {"task_id": task.id, "status": task.status.value}

    async def _run_command(
        command: str,
        *,
        client_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run a command to completion and return its output and exit code."""

        if not command or not command.strip():
            raise ValueError("command is required")
        client = _resolve_client(client_id, context)
        result = await engine.run_command(command, client)

        _emit_log(
            context,
            "info" if result.success else "warning",
            "Command finished",
            extra={"client_id": client, "exit_code": result.exit_code, "timed_out": result.timed_out},
        )
        return result.to_dict()

    def _task_status(task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Fetch status and retained output for a task."""

        payload = engine.task_status(task_id)
        if payload is None:
            raise UnknownTaskError(f"Task '{task_id}' not found")
        _emit_log(context, "debug", "Task status", extra={"task_id": task_id, "status": payload["status"]})
        return payload

    def _list_tasks(context: Context | None = None) -> list[dict[str, Any]]:
        """List every task tracked since startup."""

        tasks = engine.list_tasks()
        _emit_log(context, "debug", "Listing tasks", extra={"count": len(tasks)})
        return tasks

    def _end_task(task_id: str, context: Context | None = None) -> dict[str, Any]:
        """Stop a pending or running task."""

        if engine.tasks.get_task(task_id) is None:
            raise UnknownTaskError(f"Task '{task_id}' not found")
        if not engine.end_task(task_id):
            raise ValueError(
                f"Task '{task_id}' could not be ended. It may already be completed or failed."
            )
        _emit_log(context, "warning", "Task ended", extra={"task_id": task_id})
        return {"task_id": task_id, "message": "Task ended successfully"}

    async def _dev_server(
        action: Literal["start", "stop", "status"] = "start",
        *,
        command: str | None = None,
        port: int | None = None,
        client_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start, stop, or inspect the client's background dev server."""

        client = _resolve_client(client_id, context)
        if action == "start":
            started = await engine.start_dev_server(client, command=command, port=port)
            _emit_log(context, "info", "Dev server started", extra={"client_id": client, **started})
            return {"action": "started", **started}
        if action == "stop":
            if not engine.stop_dev_server(client):
                raise UnknownProcessError("No dev server is running")
            _emit_log(context, "info", "Dev server stopped", extra={"client_id": client})
            return {"action": "stopped"}
        if action == "status":
            return engine.dev_server_status(client)
        raise ValueError("Invalid action. Use: start, stop, or status")

    def _list_processes(context: Context | None = None) -> list[dict[str, Any]]:
        """List background processes that are still tracked."""

        processes = engine.processes.list_processes()
        _emit_log(context, "debug", "Listing background processes", extra={"count": len(processes)})
        return processes

    def _change_directory(
        new_path: str,
        *,
        client_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Bind the client to a directory inside the base working directory."""

        if not new_path:
            raise ValueError("new_path is required")
        client = _resolve_client(client_id, context)
        resolved = engine.change_directory(client, new_path)
        return {"client_id": client, "working_directory": str(resolved)}

    def _reset_directory(
        *,
        client_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the client to the base working directory."""

        client = _resolve_client(client_id, context)
        base = engine.reset_directory(client)
        return {"client_id": client, "working_directory": str(base)}

    tool_execute = server.tool(
        name="execute",
        description=(
            "Run a shell command in the client's working directory as a background task. "
            "Returns a task id; poll task_status for streamed output."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": f"Commands run with a {settings.command_timeout:g}s limit inside the sandbox",
            }
        },
    )(_execute)

    tool_run = server.tool(
        name="run_command",
        description="Run a shell command to completion (cd <dir> changes directory).",
    )(_run_command)

    tool_status = server.tool(
        name="task_status",
        description="Fetch the status, exit code, and captured output for a task.",
    )(_task_status)

    tool_list = server.tool(
        name="list_tasks",
        description="List all tasks with their status.",
    )(_list_tasks)

    tool_end = server.tool(
        name="end_task",
        description="Stop a running task and mark it completed.",
    )(_end_task)

    tool_dev = server.tool(
        name="dev_server",
        description="Start, stop, or check the status of the client's dev server.",
    )(_dev_server)

    tool_processes = server.tool(
        name="list_processes",
        description="List tracked background processes.",
    )(_list_processes)

    tool_cd = server.tool(
        name="change_directory",
        description="Change the client's working directory (must stay inside the base directory).",
    )(_change_directory)

    tool_reset = server.tool(
        name="reset_directory",
        description="Reset the client's working directory to the base directory.",
    )(_reset_directory)

    return ToolHandles(
        execute=tool_execute,
        run_command=tool_run,
        task_status=tool_status,
        list_tasks=tool_list,
        end_task=tool_end,
        dev_server=tool_dev,
        list_processes=tool_processes,
        change_directory=tool_cd,
        reset_directory=tool_reset,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
