"""Isolation backends for tutorial execution."""

from __future__ import annotations

from pathlib import Path

from ..config import ExecutorSettings
from .base import CommandResult, Sandbox, resolve_workspace_path
from .container import ContainerSandbox
from .frames import FrameDecoder
from .host import HostSandbox
from .tracker import BackgroundProcessTracker, ProcessHandle


def create_sandbox(
    settings: ExecutorSettings | None = None,
    run_id: str | None = None,
    *,
    base_dir: Path | str | None = None,
) -> Sandbox:
    """Instantiate the backend selected by ``settings.sandbox``."""
    settings = settings or ExecutorSettings()
    if settings.sandbox == "container":
        return ContainerSandbox(run_id, settings=settings, base_dir=base_dir)
    return HostSandbox(run_id, settings=settings, base_dir=base_dir)


__all__ = [
    "BackgroundProcessTracker",
    "CommandResult",
    "ContainerSandbox",
    "FrameDecoder",
    "HostSandbox",
    "ProcessHandle",
    "Sandbox",
    "create_sandbox",
    "resolve_workspace_path",
]
