"""Agent Executor diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from agent_executor.config import ExecutorSettings
from agent_executor.errors import ExecutorError
from agent_executor.execution import CommandRunner
from agent_executor.execution.runner import serialize_result


def cmd_settings(args: argparse.Namespace) -> None:
    settings = ExecutorSettings()
    print(json.dumps(settings.model_dump(mode="json"), indent=2))


def cmd_run(args: argparse.Namespace) -> None:
    settings = ExecutorSettings()
    cwd = Path(args.cwd) if args.cwd else settings.working_directory
    timeout = args.timeout if args.timeout is not None else settings.execute_timeout
    runner = CommandRunner(settings.shell, timeout=timeout)

    result = asyncio.run(runner.execute(args.command, cwd))
    print(serialize_result(result))
    if args.check:
        try:
            result.raise_for_status()
        except ExecutorError as exc:
            print(f"Command failed: {exc}")
    if result.exit_code != 0:
        raise SystemExit(result.exit_code if result.exit_code > 0 else 1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agent Executor diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_settings = sub.add_parser("settings", help="Show resolved settings")
    p_settings.set_defaults(func=cmd_settings)

    p_run = sub.add_parser("run", help="Run one command through the command runner")
    p_run.add_argument("command")
    p_run.add_argument("--cwd", help="Working directory (defaults to WORKING_DIRECTORY)")
    p_run.add_argument("--timeout", type=float, default=None, help="Timeout in seconds")
    p_run.add_argument(
        "--check",
        action="store_true",
        help="Report timeouts and non-zero exits as failures",
    )
    p_run.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
