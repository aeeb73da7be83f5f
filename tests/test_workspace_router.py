from __future__ import annotations

import os
from pathlib import Path

import pytest

from agent_executor.errors import WorkspaceError
from agent_executor.workspaces import WorkspaceRouter, resolve_within


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_get_falls_back_to_base(tmp_path: Path) -> None:
    router = WorkspaceRouter()
    project = tmp_path / "project"

    assert router.get("unknown", tmp_path) == tmp_path

    router.set("client", project)
    assert router.get("client", tmp_path) == project

    router.reset("client")
    assert router.get("client", tmp_path) == tmp_path


def test_set_overwrites_previous_binding(tmp_path: Path) -> None:
    router = WorkspaceRouter()
    router.set("client", tmp_path / "one")
    router.set("client", tmp_path / "two")

    assert router.bindings() == {"client": tmp_path / "two"}


def test_set_rejects_relative_paths() -> None:
    router = WorkspaceRouter()

    with pytest.raises(ValueError):
        router.set("client", "relative/path")


def test_reset_is_idempotent(tmp_path: Path) -> None:
    router = WorkspaceRouter()
    router.reset("never-set")
    router.set("client", tmp_path)
    router.reset("client")
    router.reset("client")

    assert len(router) == 0


def test_sweep_removes_only_stale_bindings(tmp_path: Path) -> None:
    clock = FakeClock()
    router = WorkspaceRouter(clock=clock)
    stale = tmp_path / "stale"
    fresh = tmp_path / "fresh"
    stale.mkdir()
    fresh.mkdir()
    router.set("stale-client", stale)
    router.set("fresh-client", fresh)

    start = clock.now
    os.utime(stale, (start, start))
    os.utime(fresh, (start + 9_000, start + 9_000))
    clock.now = start + 10_000

    removed = router.sweep(5_000)

    assert removed == ["stale-client"]
    assert router.bindings() == {"fresh-client": fresh}


def test_sweep_counts_router_activity(tmp_path: Path) -> None:
    clock = FakeClock()
    router = WorkspaceRouter(clock=clock)
    idle = tmp_path / "idle"
    busy = tmp_path / "busy"
    idle.mkdir()
    busy.mkdir()
    for directory in (idle, busy):
        os.utime(directory, (0, 0))
    router.set("idle", idle)
    router.set("busy", busy)

    clock.now += 10_000
    router.get("busy", tmp_path)

    assert router.sweep(5_000) == ["idle"]
    assert "busy" in router.bindings()


def test_sweep_handles_missing_directory(tmp_path: Path) -> None:
    clock = FakeClock()
    router = WorkspaceRouter(clock=clock)
    router.set("ghost", tmp_path / "gone")

    clock.now += 100
    assert router.sweep(1_000) == []

    clock.now += 5_000
    assert router.sweep(1_000) == ["ghost"]


def test_resolve_within_accepts_nested_directory(tmp_path: Path) -> None:
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert resolve_within(tmp_path, "a/b") == nested.resolve()
    assert resolve_within(tmp_path, ".") == tmp_path.resolve()


@pytest.mark.parametrize("requested", ["..", "../outside", "/etc"])
def test_resolve_within_rejects_escape(tmp_path: Path, requested: str) -> None:
    with pytest.raises(WorkspaceError, match="Invalid directory path"):
        resolve_within(tmp_path, requested)


def test_resolve_within_rejects_missing_and_files(tmp_path: Path) -> None:
    (tmp_path / "file.txt").write_text("x", encoding="utf-8")

    with pytest.raises(WorkspaceError, match="does not exist"):
        resolve_within(tmp_path, "missing")
    with pytest.raises(WorkspaceError, match="not a directory"):
        resolve_within(tmp_path, "file.txt")
