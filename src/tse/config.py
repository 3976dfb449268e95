"""Executor settings loaded from an optional YAML file and the environment."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml

LOGGER = logging.getLogger(__name__)

SandboxKind = Literal["host", "container"]

WORKSPACE_ROOT_ENV = "TUTORIAL_WORKSPACE_ROOT"
SANDBOX_ENV = "TSE_SANDBOX"
COMMAND_TIMEOUT_ENV = "TSE_COMMAND_TIMEOUT"
MAX_OUTPUT_BYTES_ENV = "TSE_MAX_OUTPUT_BYTES"
CONTAINER_IMAGE_ENV = "TSE_CONTAINER_IMAGE"

DEFAULT_CONTAINER_IMAGE = "tutorial-validator:latest"
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_WELL_KNOWN_PORTS: tuple[int, ...] = (3000, 3001, 4200, 5000, 5173, 8000, 8080, 8888)


@dataclass(slots=True)
class ExecutorSettings:
    """Tunable knobs for sandboxes and the execution engine."""

    sandbox: SandboxKind = "host"
    workspace_base: Optional[Path] = None
    command_timeout: Optional[float] = 600.0
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    max_step_output_chars: int = 20_000
    background_settle_delay: float = 2.0
    kill_grace_period: float = 5.0
    well_known_ports: tuple[int, ...] = DEFAULT_WELL_KNOWN_PORTS
    container_image: str = DEFAULT_CONTAINER_IMAGE
    use_volume_mount: bool = True
    dockerfile: Optional[Path] = None
    capture_screenshots: bool = False

    def resolve_workspace_base(self) -> Path:
        """Directory under which disposable workspaces are created."""
        if self.workspace_base is not None:
            return Path(self.workspace_base)
        override = os.environ.get(WORKSPACE_ROOT_ENV, "").strip()
        if override:
            return Path(override).expanduser()
        return Path(tempfile.gettempdir())


def _coerce_float(name: str, value: Any) -> float | None:
    try:
        parsed = float(str(value).strip())
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value: %r", name, value)
        return None
    return parsed


def _coerce_positive_int(name: str, value: Any) -> int | None:
    try:
        parsed = int(str(value).strip())
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value: %r", name, value)
        return None
    if parsed <= 0:
        LOGGER.warning("Ignoring non-positive %s value: %r", name, value)
        return None
    return parsed


def _coerce_sandbox(name: str, value: Any) -> SandboxKind | None:
    candidate = str(value).strip().lower()
    if candidate in {"host", "local"}:
        return "host"
    if candidate in {"container", "docker"}:
        return "container"
    LOGGER.warning("Ignoring unknown %s value: %r", name, value)
    return None


def _timeout_or_none(name: str, value: Any) -> float | None:
    """Timeouts of ``0``/``none`` disable the limit."""
    if value is None or str(value).strip().lower() in {"", "none", "0", "off"}:
        return None
    parsed = _coerce_float(name, value)
    if parsed is None or parsed <= 0:
        return None
    return parsed


def _apply_section(settings: ExecutorSettings, section: Mapping[str, Any]) -> ExecutorSettings:
    """Overlay values from the ``executor`` section of a config file."""
    known = {item.name for item in fields(ExecutorSettings)}
    updates: Dict[str, Any] = {}
    for key, value in section.items():
        name = str(key).replace("-", "_")
        if name not in known:
            LOGGER.warning("Ignoring unknown setting %r in config file", key)
            continue
        if name == "sandbox":
            kind = _coerce_sandbox(name, value)
            if kind is not None:
                updates[name] = kind
        elif name in {"workspace_base", "dockerfile"}:
            updates[name] = Path(str(value)).expanduser() if value else None
        elif name == "command_timeout":
            updates[name] = _timeout_or_none(name, value)
        elif name in {"max_output_bytes", "max_step_output_chars"}:
            parsed = _coerce_positive_int(name, value)
            if parsed is not None:
                updates[name] = parsed
        elif name in {"background_settle_delay", "kill_grace_period"}:
            parsed_float = _coerce_float(name, value)
            if parsed_float is not None and parsed_float >= 0:
                updates[name] = parsed_float
        elif name == "well_known_ports":
            ports = tuple(int(port) for port in value or () if str(port).strip().isdigit())
            updates[name] = ports
        elif name in {"use_volume_mount", "capture_screenshots"}:
            updates[name] = bool(value)
        else:
            updates[name] = str(value)
    return replace(settings, **updates)


def _apply_environment(settings: ExecutorSettings, env: Mapping[str, str]) -> ExecutorSettings:
    updates: Dict[str, Any] = {}
    base = env.get(WORKSPACE_ROOT_ENV)
    if base and base.strip():
        updates["workspace_base"] = Path(base.strip()).expanduser()
    kind = env.get(SANDBOX_ENV)
    if kind:
        parsed_kind = _coerce_sandbox(SANDBOX_ENV, kind)
        if parsed_kind is not None:
            updates["sandbox"] = parsed_kind
    if COMMAND_TIMEOUT_ENV in env:
        updates["command_timeout"] = _timeout_or_none(COMMAND_TIMEOUT_ENV, env[COMMAND_TIMEOUT_ENV])
    limit = env.get(MAX_OUTPUT_BYTES_ENV)
    if limit is not None:
        parsed_limit = _coerce_positive_int(MAX_OUTPUT_BYTES_ENV, limit)
        if parsed_limit is not None:
            updates["max_output_bytes"] = parsed_limit
    image = env.get(CONTAINER_IMAGE_ENV)
    if image and image.strip():
        updates["container_image"] = image.strip()
    return replace(settings, **updates) if updates else settings


def load_settings(
    config_path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ExecutorSettings:
    """Build settings from defaults, an optional YAML file, then the environment.

    The YAML file may hold the settings at the top level or under an
    ``executor`` key.  Environment variables win over the file.
    """
    settings = ExecutorSettings()
    if config_path is not None:
        path = Path(config_path)
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, Mapping):
            raise ValueError(f"Configuration must be a mapping at the top level: {path}")
        section = loaded.get("executor", loaded)
        if isinstance(section, Mapping):
            settings = _apply_section(settings, section)
    return _apply_environment(settings, os.environ if env is None else env)


__all__ = [
    "COMMAND_TIMEOUT_ENV",
    "CONTAINER_IMAGE_ENV",
    "DEFAULT_CONTAINER_IMAGE",
    "DEFAULT_WELL_KNOWN_PORTS",
    "ExecutorSettings",
    "MAX_OUTPUT_BYTES_ENV",
    "SANDBOX_ENV",
    "SandboxKind",
    "WORKSPACE_ROOT_ENV",
    "load_settings",
]
