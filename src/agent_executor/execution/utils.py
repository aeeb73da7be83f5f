"""Utility helpers for the command runner."""

from __future__ import annotations

import os
import re
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# Tools that branch on TTY presence get a consistent colour/terminal setup.
TERMINAL_ENV = {
    "FORCE_COLOR": "1",
    "TERM": "xterm-256color",
    "GIT_TERMINAL_PROMPT": "1",
    "CI": "true",
}

ANSI_ESCAPE_RE = re.compile(
    r"\x1B(?:"
    r"\[[0-?]*[ -/]*[@-~]"
    r"|\][^\x1B\x07]*(?:\x07|\x1B\\)"
    r"|P[^\x1B\x07]*(?:\x07|\x1B\\)"
    r"|[@-Z\\-_]"
    r")"
)

# An escape sequence cut off at the end of a chunk.
_PARTIAL_ESCAPE_RE = re.compile(r"\x1B(?:\[[0-?]*[ -/]*|[\]P][^\x1B\x07]*\x1B?)?\Z")

# Unterminated sequences longer than this are released as plain text.
_MAX_PENDING = 4096


def build_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment for a spawned command.

    The executor's own virtualenv variables are removed so commands resolve
    the workspace's interpreters, and the terminal variables are forced on.
    """

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.update(TERMINAL_ENV)
    if additional:
        env.update(additional)
    return env


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences from ``text``."""

    return ANSI_ESCAPE_RE.sub("", text)


class AnsiStripper:
    """Streaming ``strip_ansi`` that holds back a sequence split across chunks."""

    __slots__ = ("_pending",)

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, text: str) -> str:
        text = self._pending + text
        self._pending = ""
        partial = _PARTIAL_ESCAPE_RE.search(text)
        if partial is not None and len(text) - partial.start() <= _MAX_PENDING:
            self._pending = text[partial.start():]
            text = text[: partial.start()]
        return strip_ansi(text)

    def flush(self) -> str:
        text, self._pending = self._pending, ""
        return strip_ansi(text)


__all__ = ["TERMINAL_ENV", "AnsiStripper", "build_environment", "strip_ansi"]
