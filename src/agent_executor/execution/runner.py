"""Async runner for sandboxed shell commands."""

from __future__ import annotations

import asyncio
import codecs
import inspect
import json
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

from ..errors import NonZeroExit, SpawnError, TimeoutExceeded
from .utils import AnsiStripper, build_environment, strip_ansi

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
TIMEOUT_EXIT_CODE = 124
SPAWN_FAILURE_EXIT_CODE = -1

_READ_SIZE = 4096
_DRAIN_GRACE = 2.0

OutputCallback = Callable[[str], "Awaitable[Any] | None"]


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a shell command."""

    command: str
    exit_code: int
    output: str
    timed_out: bool = False
    timeout: float | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "success": self.success,
            "exit_code": self.exit_code,
            "output": self.output,
            "timed_out": self.timed_out,
        }

    def raise_for_status(self) -> CommandResult:
        """Raise ``TimeoutExceeded`` or ``NonZeroExit`` when the command did not succeed."""

        if self.timed_out:
            raise TimeoutExceeded(self.output, timeout=self.timeout)
        if not self.success:
            raise NonZeroExit(
                f"Command exited with code {self.exit_code}: {self.command}",
                exit_code=self.exit_code,
            )
        return self


class ProcessHandle:
    """Exclusive owner of one spawned process and its process group."""

    def __init__(self, process: asyncio.subprocess.Process, command: str) -> None:
        self._process = process
        self.command = command
        self._killed = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def killed(self) -> bool:
        return self._killed

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._process.stderr

    def kill(self) -> bool:
        """Send SIGKILL to the process group.

        Returns True only for the call that delivered the signal; later calls
        and calls on an exited process are no-ops.
        """

        if self._killed or self._process.returncode is not None:
            return False
        self._killed = True
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return False
        except PermissionError:
            self._process.kill()
        logger.debug("Killed process group", extra={"pid": self._process.pid, "command": self.command})
        return True

    async def wait(self) -> int:
        return await self._process.wait()


@dataclass(slots=True)
class RunningCommand:
    """A spawned command: its handle plus the task resolving to its result."""

    handle: ProcessHandle
    result: asyncio.Task[CommandResult]


async def read_stream(
    stream: asyncio.StreamReader | None,
    sink: Callable[[str], Awaitable[Any] | None],
) -> None:
    """Decode ``stream`` incrementally as UTF-8 and feed text to ``sink`` in arrival order."""

    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        raw = await stream.read(_READ_SIZE)
        text = decoder.decode(raw, final=not raw)
        if text:
            outcome = sink(text)
            if inspect.isawaitable(outcome):
                await outcome
        if not raw:
            return


class CommandRunner:
    """Execute shell commands asynchronously inside a working directory."""

    def __init__(
        self,
        shell: str = "bash",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.shell = shell
        self.timeout = timeout
        self._extra_env = dict(env or {})

    async def spawn(
        self,
        command: str,
        working_directory: Path | str,
        *,
        merge_stderr: bool = True,
    ) -> ProcessHandle:
        """Start ``command`` in its own session and return the owning handle."""

        cwd = str(working_directory)
        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                command,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
                env=build_environment(self._extra_env),
                start_new_session=True,
            )
        except OSError as exc:
            logger.warning(
                "Failed to spawn command",
                extra={"command": command, "cwd": cwd, "error": str(exc)},
            )
            raise SpawnError(f"Failed to start command in {cwd}: {exc}", command=command) from exc

        logger.debug("Spawned command", extra={"command": command, "cwd": cwd, "pid": process.pid})
        return ProcessHandle(process, command)

    async def run(
        self,
        command: str,
        working_directory: Path | str,
        on_output: OutputCallback | None = None,
        *,
        timeout: float | None = None,
    ) -> RunningCommand:
        """Spawn ``command`` and return immediately with its handle and pending result.

        ``on_output`` receives escape-stripped text as it arrives. When it
        returns an awaitable (for example ``asyncio.Queue.put``) the reader
        waits on it before reading further.
        """

        handle = await self.spawn(command, working_directory)
        limit = self.timeout if timeout is None else timeout
        result = asyncio.create_task(
            self._complete(handle, on_output, limit),
            name=f"command-{handle.pid}",
        )
        return RunningCommand(handle=handle, result=result)

    async def execute(
        self,
        command: str,
        working_directory: Path | str,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``command`` to completion; spawn failures become exit code -1 results."""

        try:
            running = await self.run(command, working_directory, timeout=timeout)
        except SpawnError as exc:
            return CommandResult(command=command, exit_code=exc.exit_code, output=exc.output)
        return await running.result

    async def _complete(
        self,
        handle: ProcessHandle,
        on_output: OutputCallback | None,
        timeout: float,
    ) -> CommandResult:
        chunks: list[str] = []
        stripper = AnsiStripper()

        def _collect(text: str) -> Awaitable[Any] | None:
            chunks.append(text)
            if on_output is None:
                return None
            cleaned = stripper.feed(text)
            if not cleaned:
                return None
            return on_output(cleaned)

        reader = asyncio.create_task(read_stream(handle.stdout, _collect))
        waiter = asyncio.create_task(handle.wait())
        timer = asyncio.create_task(asyncio.sleep(timeout))
        try:
            done, _ = await asyncio.wait({waiter, timer}, return_when=asyncio.FIRST_COMPLETED)
            timed_out = waiter not in done
            if timed_out:
                handle.kill()
            exit_code = await waiter
            await self._drain(reader, handle)
            tail = stripper.flush()
            if tail and on_output is not None:
                outcome = on_output(tail)
                if inspect.isawaitable(outcome):
                    await outcome
        except asyncio.CancelledError:
            handle.kill()
            reader.cancel()
            waiter.cancel()
            raise
        finally:
            timer.cancel()

        output = strip_ansi("".join(chunks))
        if timed_out:
            message = f"Command terminated: Command timed out after {timeout:g}s"
            logger.warning(
                "Command timed out",
                extra={"command": handle.command, "pid": handle.pid, "timeout": timeout},
            )
            if output and not output.endswith("\n"):
                output += "\n"
            return CommandResult(
                command=handle.command,
                exit_code=TIMEOUT_EXIT_CODE,
                output=output + message,
                timed_out=True,
                timeout=timeout,
            )

        logger.debug(
            "Command finished",
            extra={"command": handle.command, "pid": handle.pid, "exit_code": exit_code},
        )
        return CommandResult(command=handle.command, exit_code=exit_code, output=output)

    @staticmethod
    async def _drain(reader: asyncio.Task[None], handle: ProcessHandle) -> None:
        # A detached grandchild can keep the pipe open after the shell exits.
        done, _ = await asyncio.wait({reader}, timeout=_DRAIN_GRACE)
        if reader not in done:
            logger.warning(
                "Output pipe still open after exit; abandoning reader",
                extra={"command": handle.command, "pid": handle.pid},
            )
            reader.cancel()
            return
        reader.result()


def serialize_result(result: CommandResult) -> str:
    """Serialize a command result as JSON."""

    return json.dumps(result.to_dict())


__all__ = [
    "DEFAULT_TIMEOUT",
    "SPAWN_FAILURE_EXIT_CODE",
    "TIMEOUT_EXIT_CODE",
    "CommandResult",
    "CommandRunner",
    "ProcessHandle",
    "RunningCommand",
    "read_stream",
    "serialize_result",
]
