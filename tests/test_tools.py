from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from agent_executor.config import ExecutorSettings
from agent_executor.engine import ExecutorEngine
from agent_executor.errors import ProcessConflictError, UnknownProcessError, UnknownTaskError, WorkspaceError
from agent_executor.tools import register_tools


class StubTool:
    def __init__(self, fn, name, annotations=None):
        self.fn = fn
        self.name = name
        self.annotations = annotations


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name, kwargs.get("annotations"))
            self._tools[tool_name] = tool
            return tool

        return decorator


class RecordingLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str):
        def log(message: str, *, extra: dict[str, Any] | None = None) -> None:
            self.records.append((level, message, extra or {}))

        return log

    def __getattr__(self, level: str):
        return self._record(level)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    base = tmp_path / "workspace"
    base.mkdir()
    return base.resolve()


@pytest.fixture()
def settings(workspace: Path) -> ExecutorSettings:
    settings = ExecutorSettings()
    settings.working_directory = workspace
    settings.command_timeout = 10.0
    settings.execute_timeout = 10.0
    return settings


def _setup(settings: ExecutorSettings):
    server = StubServer()
    engine = ExecutorEngine(settings)
    handles = register_tools(server, engine=engine, settings=settings)
    return server, engine, handles


def test_registers_every_tool(settings: ExecutorSettings) -> None:
    server, _, _ = _setup(settings)

    assert set(server._tools) == {
        "execute",
        "run_command",
        "task_status",
        "list_tasks",
        "end_task",
        "dev_server",
        "list_processes",
        "change_directory",
        "reset_directory",
    }
    assert server._tools["execute"].annotations["safety"]["level"] == "caution"


def test_execute_then_task_status(settings: ExecutorSettings) -> None:
    _, engine, handles = _setup(settings)

    async def scenario():
        submitted = await handles.execute.fn("echo from tool", client_id="agent")
        await engine.wait_for_task(submitted["task_id"])
        status = handles.task_status.fn(submitted["task_id"])
        listed = handles.list_tasks.fn()
        await engine.shutdown()
        return submitted, status, listed

    submitted, status, listed = asyncio.run(scenario())

    assert submitted["status"] == "running"
    assert status["status"] == "completed"
    assert status["output"] == "from tool\n"
    assert [entry["id"] for entry in listed] == [submitted["task_id"]]


def test_execute_rejects_empty_command(settings: ExecutorSettings) -> None:
    _, _, handles = _setup(settings)

    with pytest.raises(ValueError):
        asyncio.run(handles.execute.fn("   "))


@pytest.mark.parametrize("timeout", [0, -5])
def test_execute_rejects_non_positive_timeout(settings: ExecutorSettings, timeout: float) -> None:
    _, engine, handles = _setup(settings)

    with pytest.raises(ValueError, match="timeout must be > 0"):
        asyncio.run(handles.execute.fn("echo hi", timeout=timeout))

    assert engine.list_tasks() == []


def test_task_status_unknown_task(settings: ExecutorSettings) -> None:
    _, _, handles = _setup(settings)

    with pytest.raises(UnknownTaskError):
        handles.task_status.fn("missing")
    with pytest.raises(UnknownTaskError):
        handles.end_task.fn("missing")


def test_end_task_twice_reports_error(settings: ExecutorSettings) -> None:
    _, engine, handles = _setup(settings)

    async def scenario():
        submitted = await handles.execute.fn("sleep 30", client_id="agent")
        first = handles.end_task.fn(submitted["task_id"])
        with pytest.raises(ValueError, match="could not be ended"):
            handles.end_task.fn(submitted["task_id"])
        await engine.shutdown()
        return first

    first = asyncio.run(scenario())

    assert first["message"] == "Task ended successfully"


def test_run_command_uses_context_client(settings: ExecutorSettings, workspace: Path) -> None:
    (workspace / "app").mkdir()
    _, engine, handles = _setup(settings)
    recorder = RecordingLogger()
    context = SimpleNamespace(client_id="ctx-client", logger=recorder)

    async def scenario():
        moved = handles.change_directory.fn("app", context=context)
        result = await handles.run_command.fn("pwd", context=context)
        await engine.shutdown()
        return moved, result

    moved, result = asyncio.run(scenario())

    assert moved["client_id"] == "ctx-client"
    assert Path(result["output"].strip()).resolve() == workspace / "app"
    assert result["success"] is True
    assert engine.working_directory("anonymous") == workspace
    assert ("info", "Command finished") in [(level, message) for level, message, _ in recorder.records]


def test_change_directory_rejects_escape(settings: ExecutorSettings) -> None:
    _, _, handles = _setup(settings)

    with pytest.raises(WorkspaceError):
        handles.change_directory.fn("..", client_id="agent")


def test_reset_directory_returns_base(settings: ExecutorSettings, workspace: Path) -> None:
    (workspace / "app").mkdir()
    _, engine, handles = _setup(settings)
    handles.change_directory.fn("app", client_id="agent")

    reset = handles.reset_directory.fn(client_id="agent")

    assert reset == {"client_id": "agent", "working_directory": str(workspace)}
    assert engine.working_directory("agent") == workspace


def test_dev_server_actions(settings: ExecutorSettings) -> None:
    _, engine, handles = _setup(settings)

    async def scenario():
        started = await handles.dev_server.fn("start", command="sleep 100", port=4555, client_id="agent")
        with pytest.raises(ProcessConflictError):
            await handles.dev_server.fn("start", command="sleep 100", client_id="agent")
        status = await handles.dev_server.fn("status", client_id="agent")
        processes = handles.list_processes.fn()
        stopped = await handles.dev_server.fn("stop", client_id="agent")
        with pytest.raises(UnknownProcessError):
            await handles.dev_server.fn("stop", client_id="agent")
        with pytest.raises(ValueError, match="Invalid action"):
            await handles.dev_server.fn("restart", client_id="agent")  # type: ignore[arg-type]
        await engine.shutdown()
        return started, status, processes, stopped

    started, status, processes, stopped = asyncio.run(scenario())

    assert started["action"] == "started"
    assert started["command"] == "PORT=4555 sleep 100"
    assert status["running"] is True
    assert status["process_id"] == started["process_id"]
    assert [entry["id"] for entry in processes] == [started["process_id"]]
    assert stopped == {"action": "stopped"}
