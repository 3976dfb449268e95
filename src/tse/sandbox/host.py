"""Sandbox that runs tutorial commands as host subprocesses."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import tempfile
import time
from pathlib import Path
from typing import IO, Mapping

from ..config import ExecutorSettings
from ..errors import CommandTimeoutError, OutputLimitError, SandboxError
from ..telemetry import emit_event
from .base import CommandResult, Sandbox
from .tracker import BackgroundProcessTracker

LOGGER = logging.getLogger(__name__)


class HostSandbox(Sandbox):
    """Workspace directory on the local filesystem; commands run through ``/bin/sh``."""

    def __init__(
        self,
        run_id: str | None = None,
        *,
        settings: ExecutorSettings | None = None,
        base_dir: Path | str | None = None,
        tracker: BackgroundProcessTracker | None = None,
    ) -> None:
        super().__init__(run_id, settings=settings, base_dir=base_dir)
        self.tracker = tracker or BackgroundProcessTracker(
            self.workspace_root,
            well_known_ports=self.settings.well_known_ports,
            grace_period=self.settings.kill_grace_period,
        )
        self._process_groups: list[int] = []

    def initialize(self) -> None:
        try:
            self.workspace_root.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise SandboxError(
                f"Unable to create workspace {self.workspace_root}: {exc}",
                details={"workspace": str(self.workspace_root)},
            ) from exc
        LOGGER.info("Created host workspace at %s", self.workspace_root)

    def run(
        self,
        command: str,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        cwd = self.resolve_path(working_dir) if working_dir else self.workspace_root
        cwd.mkdir(parents=True, exist_ok=True)
        merged_env = dict(os.environ)
        merged_env.update(env or {})
        limit = self.effective_timeout(timeout)
        background = self.tracker.is_background(command)

        LOGGER.debug("Running %r in %s", command, cwd)
        with tempfile.TemporaryFile() as stdout_file, tempfile.TemporaryFile() as stderr_file:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=str(cwd),
                env=merged_env,
                stdin=subprocess.DEVNULL,
                stdout=stdout_file,
                stderr=stderr_file,
                start_new_session=True,
            )
            try:
                returncode = process.wait(timeout=limit)
            except subprocess.TimeoutExpired:
                self._signal_group(process.pid, signal.SIGKILL)
                process.wait()
                raise CommandTimeoutError(command, limit or 0.0) from None
            stdout = self._read_stream(stdout_file, "stdout")
            stderr = self._read_stream(stderr_file, "stderr")

        if background:
            self._process_groups.append(process.pid)
            if self.settings.background_settle_delay > 0:
                time.sleep(self.settings.background_settle_delay)
            self.tracker.track(command, cwd)

        # A shell killed by a signal reports 128 + signum.
        exit_code = returncode if returncode >= 0 else 128 - returncode
        return CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    def _read_stream(self, handle: IO[bytes], name: str) -> str:
        limit = self.settings.max_output_bytes
        handle.seek(0)
        data = handle.read(limit + 1)
        if len(data) > limit:
            raise OutputLimitError(name, limit)
        return data.decode("utf-8", errors="replace")

    def read_file(self, path: str) -> str:
        # Bytes keep CRLF intact; text mode would translate it away.
        return self.resolve_path(path).read_bytes().decode("utf-8")

    def write_file(self, path: str, content: str) -> None:
        target = self.resolve_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content.encode("utf-8"))

    def file_exists(self, path: str) -> bool:
        return self.resolve_path(path).exists()

    def cleanup(self, preserve: bool = False) -> None:
        self.tracker.kill_all()
        for pgid in self._process_groups:
            self._signal_group(pgid, signal.SIGTERM)
        self._process_groups.clear()
        self.tracker.sweep(self.workspace_root)

        removed = False
        if preserve:
            LOGGER.info("Preserving workspace at %s", self.workspace_root)
        elif self.workspace_root.exists():
            try:
                shutil.rmtree(self.workspace_root)
                removed = True
            except OSError as exc:
                LOGGER.warning("Failed to remove workspace %s: %s", self.workspace_root, exc)
        emit_event(
            "sandbox.cleanup",
            backend="host",
            workspace=self.workspace_root,
            preserved=preserve,
            removed=removed,
        )

    @staticmethod
    def _signal_group(pgid: int, signum: int) -> None:
        try:
            os.killpg(pgid, signum)
        except ProcessLookupError:
            pass
        except OSError as exc:
            LOGGER.warning("Failed to signal process group %d: %s", pgid, exc)


__all__ = ["HostSandbox"]
