from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from tse.sandbox.tracker import BackgroundProcessTracker, ProcessHandle


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("npm run dev &", True),
        ("python -m http.server 8000 & sleep 1", True),
        ("nohup node server.js > log.txt", True),
        ("setsid ./serve", True),
        ("npm install && npm test", False),
        ("make 2>&1 | tee build.log", False),
        ("cmd &> out.log", False),
    ],
)
def test_is_background(command: str, expected: bool) -> None:
    assert BackgroundProcessTracker.is_background(command) is expected


@pytest.mark.parametrize(
    ("command", "ports"),
    [
        ("vite --port 5174 &", [5174]),
        ("npx serve -p 4000 &", [4000]),
        ("PORT=3005 npm start &", [3005]),
        ("curl http://localhost:8081/health", [8081]),
        ("python -m http.server 9000 &", [9000]),
        ("python manage.py runserver 0.0.0.0:8002 &", [8002]),
        ("echo 12:30", []),
    ],
)
def test_extract_ports(command: str, ports: list[int]) -> None:
    assert BackgroundProcessTracker.extract_ports(command) == ports


def test_infer_ports_uses_well_known_ports_for_dev_servers(tmp_path: Path) -> None:
    tracker = BackgroundProcessTracker(tmp_path, well_known_ports=(3000, 5173))

    assert tracker.infer_ports("npm run dev &") == [3000, 5173]
    assert tracker.infer_ports("uvicorn app:api --port 8010 &") == [8010]
    assert tracker.infer_ports("sleep 100 &") == []


def test_kill_missing_process_is_not_an_error(tmp_path: Path) -> None:
    tracker = BackgroundProcessTracker(tmp_path, grace_period=0.1)

    assert tracker.kill(ProcessHandle(pid=2**22 + 12345, command="ghost")) is True


def test_track_and_sweep_find_processes_running_in_workspace(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    tracker = BackgroundProcessTracker(workspace, grace_period=1.0)
    sleeper = subprocess.Popen(["sleep", "30"], cwd=workspace)
    try:
        handles = tracker.track("sleep 30 &", workspace)
        assert sleeper.pid in {handle.pid for handle in handles}
        assert sleeper.pid in {handle.pid for handle in tracker.handles}

        tracker.kill_all()
        sleeper.wait(timeout=5)
        assert tracker.handles == ()
    finally:
        if sleeper.poll() is None:
            sleeper.kill()
            sleeper.wait()


def test_sweep_kills_leftovers(tmp_path: Path) -> None:
    workspace = tmp_path / "ws"
    workspace.mkdir()
    tracker = BackgroundProcessTracker(workspace, grace_period=1.0)
    sleeper = subprocess.Popen(["sleep", "30"], cwd=workspace)
    try:
        assert tracker.sweep() >= 1
        sleeper.wait(timeout=5)
    finally:
        if sleeper.poll() is None:
            sleeper.kill()
            sleeper.wait()
