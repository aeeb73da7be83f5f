from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from agent_executor import __version__
from agent_executor.config import ExecutorSettings
from agent_executor.engine import ExecutorEngine
from agent_executor.server import build_status, create_server


@pytest.fixture()
def settings(tmp_path: Path) -> ExecutorSettings:
    settings = ExecutorSettings()
    settings.working_directory = tmp_path.resolve()
    return settings


def test_build_status_reports_limits_and_state(settings: ExecutorSettings, tmp_path: Path) -> None:
    (tmp_path / "app").mkdir()
    engine = ExecutorEngine(settings)
    engine.change_directory("agent", "app")

    status = build_status(engine, settings, request_id="req-1")

    assert status["server_version"] == __version__
    assert status["request_id"] == "req-1"
    assert status["limits"]["command_timeout"] == settings.command_timeout
    assert status["limits"]["max_output_bytes"] == settings.max_output_bytes
    assert status["started"] is False
    assert status["tasks"] == {"count": 0, "status_counts": {}}
    assert status["workspaces"] == {"agent": str((tmp_path / "app").resolve())}
    json.dumps(status)


def test_build_status_counts_tasks(settings: ExecutorSettings) -> None:
    async def scenario():
        engine = ExecutorEngine(settings)
        ok = await engine.submit("true", "agent")
        bad = await engine.submit("false", "agent")
        await engine.wait_for_task(ok.id)
        await engine.wait_for_task(bad.id)
        status = build_status(engine, settings)
        await engine.shutdown()
        return status

    status = asyncio.run(scenario())

    assert status["tasks"] == {"count": 2, "status_counts": {"completed": 1, "failed": 1}}


def test_create_server_wires_engine(settings: ExecutorSettings) -> None:
    engine = ExecutorEngine(settings)

    server = create_server(settings, engine)

    assert server.engine is engine
    assert server.tool_handles is not None
