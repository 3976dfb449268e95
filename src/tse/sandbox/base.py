"""Capability contract shared by every sandbox backend.

The execution engine depends only on :class:`Sandbox`; backends differ in how
commands reach the workspace (host subprocesses vs. container exec) but
resolve paths, apply edits, and tear down the same way.
"""

from __future__ import annotations

import abc
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Mapping, Optional, Type

from ..config import ExecutorSettings
from ..dsl.schema import FileChange, ReplaceFileContents
from ..edits import apply_edit
from ..utils.slug import slugify

LOGGER = logging.getLogger(__name__)

WORKSPACE_PREFIX = "tutorial-validator"


@dataclass(slots=True)
class CommandResult:
    """Exit status and captured output of a single command."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def combined(self) -> str:
        return self.stdout + self.stderr


def resolve_workspace_path(path: str, workspace_root: Path) -> Path:
    """Resolve ``path`` against the workspace; absolute paths pass through verbatim."""
    if path.startswith("/"):
        return Path(path)
    return Path(os.path.normpath(workspace_root / path))


def build_workspace_root(run_id: str, base_dir: Path) -> Path:
    """Return a collision-resistant workspace directory for ``run_id``."""
    timestamp = int(time.time() * 1000)
    return Path(base_dir).expanduser().resolve() / f"{WORKSPACE_PREFIX}-{slugify(run_id)}-{timestamp}"


class Sandbox(abc.ABC):
    """Disposable environment in which tutorial steps run."""

    def __init__(
        self,
        run_id: str | None = None,
        *,
        settings: ExecutorSettings | None = None,
        base_dir: Path | str | None = None,
    ) -> None:
        self.settings = settings or ExecutorSettings()
        self.run_id = run_id.strip() if run_id and run_id.strip() else uuid.uuid4().hex
        base = Path(base_dir) if base_dir is not None else self.settings.resolve_workspace_base()
        self.workspace_root = build_workspace_root(self.run_id, base)

    # ------------------------------------------------------------------ contract
    @property
    def command_root(self) -> str:
        """Absolute path at which commands observe the workspace root."""
        return str(self.workspace_root)

    @abc.abstractmethod
    def initialize(self) -> None:
        """Create the workspace and any backing resources."""

    @abc.abstractmethod
    def run(
        self,
        command: str,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """Execute ``command`` through a shell inside the workspace."""

    @abc.abstractmethod
    def read_file(self, path: str) -> str:
        """Return the text content of ``path``."""

    @abc.abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write ``content`` to ``path``, creating parent directories."""

    @abc.abstractmethod
    def file_exists(self, path: str) -> bool:
        """Return True when ``path`` exists as a file or directory."""

    @abc.abstractmethod
    def cleanup(self, preserve: bool = False) -> None:
        """Release every resource; never raises."""

    # ------------------------------------------------------------------ shared behaviour
    def apply_edit(self, change: FileChange) -> None:
        """Read, transform, and write back the file targeted by ``change``."""
        if isinstance(change, ReplaceFileContents):
            self.write_file(change.path, change.contents)
            return
        current = self.read_file(change.path) if self.file_exists(change.path) else ""
        self.write_file(change.path, apply_edit(current, change, change.path))

    def resolve_path(self, path: str) -> Path:
        return resolve_workspace_path(path, self.workspace_root)

    def effective_timeout(self, timeout: float | None) -> float | None:
        """Per-call timeout, falling back to the configured default."""
        value = self.settings.command_timeout if timeout is None else timeout
        if value is None or value <= 0:
            return None
        return float(value)

    def __enter__(self) -> "Sandbox":
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.cleanup()


__all__ = [
    "CommandResult",
    "Sandbox",
    "WORKSPACE_PREFIX",
    "build_workspace_root",
    "resolve_workspace_path",
]
