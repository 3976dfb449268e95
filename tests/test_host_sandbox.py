from __future__ import annotations

import os
import time
from dataclasses import replace
from pathlib import Path

import psutil
import pytest

from tse.config import ExecutorSettings
from tse.dsl.schema import ApplyDiffChange, ContextBasedChange, ReplaceFileContents
from tse.errors import CommandTimeoutError, EditError, OutputLimitError, SandboxError
from tse.sandbox import HostSandbox


def test_initialize_creates_named_workspace(settings: ExecutorSettings) -> None:
    sandbox = HostSandbox("My Tutorial", settings=settings)
    sandbox.initialize()
    try:
        assert sandbox.workspace_root.is_dir()
        assert sandbox.workspace_root.name.startswith("tutorial-validator-My-Tutorial-")
        assert sandbox.command_root == str(sandbox.workspace_root)
    finally:
        sandbox.cleanup()
    assert not sandbox.workspace_root.exists()


def test_initialize_twice_is_an_infrastructure_error(host_sandbox: HostSandbox) -> None:
    with pytest.raises(SandboxError):
        host_sandbox.initialize()


def test_run_captures_output_and_exit_code(host_sandbox: HostSandbox) -> None:
    result = host_sandbox.run("echo out; echo err >&2; exit 3")

    assert result.exit_code == 3
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert not result.ok


def test_run_resolves_and_creates_working_dir(host_sandbox: HostSandbox) -> None:
    result = host_sandbox.run("pwd", "nested/dir")

    assert result.stdout.strip() == str(host_sandbox.workspace_root / "nested" / "dir")


def test_run_merges_env_over_ambient(host_sandbox: HostSandbox, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TSE_AMBIENT", "ambient")

    result = host_sandbox.run('echo "$TSE_AMBIENT-$TSE_STEP"', env={"TSE_STEP": "step"})

    assert result.stdout == "ambient-step\n"


def test_run_timeout_raises(host_sandbox: HostSandbox) -> None:
    started = time.monotonic()

    with pytest.raises(CommandTimeoutError) as excinfo:
        host_sandbox.run("sleep 20", timeout=0.5)

    assert time.monotonic() - started < 10
    assert excinfo.value.timeout == 0.5


def test_output_overflow_is_a_hard_failure(settings: ExecutorSettings) -> None:
    sandbox = HostSandbox("overflow", settings=replace(settings, max_output_bytes=16))
    sandbox.initialize()
    try:
        with pytest.raises(OutputLimitError):
            sandbox.run("printf '%040d' 0")
    finally:
        sandbox.cleanup()


def test_file_round_trip_and_absolute_paths(host_sandbox: HostSandbox, tmp_path: Path) -> None:
    host_sandbox.write_file("src/app.txt", "hello\r\nworld\n")

    assert host_sandbox.file_exists("src/app.txt")
    assert host_sandbox.read_file("src/app.txt") == "hello\r\nworld\n"

    outside = tmp_path / "outside.txt"
    host_sandbox.write_file(str(outside), "abs")
    assert outside.read_text(encoding="utf-8") == "abs"
    assert host_sandbox.file_exists(str(outside))


def test_apply_edit_on_missing_file_starts_from_empty(host_sandbox: HostSandbox) -> None:
    change = ApplyDiffChange(type="diff", path="new/list.txt", insertLines={"at": 0, "lines": ["one", "two"]})

    host_sandbox.apply_edit(change)

    assert host_sandbox.read_file("new/list.txt") == "one\ntwo\n"


def test_apply_edit_replace_and_context(host_sandbox: HostSandbox) -> None:
    host_sandbox.apply_edit(ReplaceFileContents(type="replace", path="app.py", contents="import os\n"))
    host_sandbox.apply_edit(
        ContextBasedChange(type="context", path="app.py", searchPattern="import os", action="after", content="import sys")
    )

    assert host_sandbox.read_file("app.py") == "import os\nimport sys\n"

    with pytest.raises(EditError):
        host_sandbox.apply_edit(
            ContextBasedChange(type="context", path="app.py", searchPattern="missing", action="before", content="x")
        )


def test_cleanup_preserve_keeps_workspace(settings: ExecutorSettings) -> None:
    sandbox = HostSandbox("keep", settings=settings)
    sandbox.initialize()
    sandbox.write_file("marker", "1")

    sandbox.cleanup(preserve=True)

    assert (sandbox.workspace_root / "marker").exists()


def _is_gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def test_cleanup_reaps_background_processes(settings: ExecutorSettings) -> None:
    sandbox = HostSandbox("bg", settings=replace(settings, background_settle_delay=0.3))
    sandbox.initialize()
    result = sandbox.run("sleep 60 > /dev/null 2>&1 & echo $! > sleeper.pid")
    assert result.ok
    pid = int(sandbox.read_file("sleeper.pid").strip())
    assert psutil.pid_exists(pid)

    sandbox.cleanup()

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if _is_gone(pid):
            break
        time.sleep(0.1)
    else:
        os.kill(pid, 9)
        pytest.fail("background process survived cleanup")


def test_cleanup_never_raises_when_workspace_missing(settings: ExecutorSettings) -> None:
    sandbox = HostSandbox("never-initialized", settings=settings)

    sandbox.cleanup()
