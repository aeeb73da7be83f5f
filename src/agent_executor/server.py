"""FastMCP server bootstrap for Agent Executor."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import ExecutorSettings, ensure_working_directory, get_settings
from .engine import ExecutorEngine
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the executor server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_status(engine: ExecutorEngine, settings: ExecutorSettings, request_id: Any = None) -> dict[str, Any]:
    """Summarize runtime state for the status resource."""

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "limits": {
            "command_timeout": settings.command_timeout,
            "execute_timeout": settings.execute_timeout,
            "max_output_bytes": settings.max_output_bytes,
            "idle_threshold": settings.idle_threshold,
            "sweep_interval": settings.sweep_interval,
        },
        **engine.describe(),
        "request_id": request_id,
    }


def create_server(
    settings: Optional[ExecutorSettings] = None,
    engine: ExecutorEngine | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server around a single executor engine."""

    settings = settings or get_settings()
    engine = engine or ExecutorEngine(settings)

    @asynccontextmanager
    async def lifespan(_server: FastMCP):
        await engine.start()
        try:
            yield {"engine": engine}
        finally:
            await engine.shutdown()

    server = FastMCP(
        name="Agent Executor",
        version=__version__,
        instructions=(
            "Agent Executor runs shell commands and dev servers inside an isolated "
            "working directory. Use execute/task_status for long commands, "
            "run_command for quick ones, and dev_server for background processes."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(server, engine=engine, settings=settings)

    @server.resource(
        "resource://executor/status",
        name="executor_status",
        title="Agent Executor Status",
        description="Provides the current runtime status for the executor.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        return json.dumps(build_status(engine, settings, getattr(context, "request_id", None)))

    setattr(server, "engine", engine)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the executor MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)
    settings.working_directory = ensure_working_directory(settings.working_directory)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Agent Executor",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "working_directory": str(settings.working_directory),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
