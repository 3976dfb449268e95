from __future__ import annotations

import logging
import tempfile
from pathlib import Path

import pytest

from tse.config import (
    COMMAND_TIMEOUT_ENV,
    CONTAINER_IMAGE_ENV,
    DEFAULT_CONTAINER_IMAGE,
    MAX_OUTPUT_BYTES_ENV,
    SANDBOX_ENV,
    WORKSPACE_ROOT_ENV,
    ExecutorSettings,
    load_settings,
)
from tse.sandbox import ContainerSandbox, HostSandbox, create_sandbox


def test_defaults_without_file_or_environment() -> None:
    settings = load_settings(env={})

    assert settings.sandbox == "host"
    assert settings.container_image == DEFAULT_CONTAINER_IMAGE
    assert settings.command_timeout == 600.0
    assert settings.use_volume_mount is True


def test_yaml_executor_section(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    config = tmp_path / "tse.yaml"
    config.write_text(
        "executor:\n"
        "  sandbox: docker\n"
        "  command-timeout: 45\n"
        "  max_output_bytes: 2048\n"
        "  use_volume_mount: false\n"
        "  well_known_ports: [3000, 9000]\n"
        "  reporter: html\n",
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING, logger="tse.config"):
        settings = load_settings(config, env={})

    assert settings.sandbox == "container"
    assert settings.command_timeout == 45.0
    assert settings.max_output_bytes == 2048
    assert settings.use_volume_mount is False
    assert settings.well_known_ports == (3000, 9000)
    assert "Ignoring unknown setting 'reporter'" in caplog.text


def test_environment_overrides_file(tmp_path: Path) -> None:
    config = tmp_path / "tse.yaml"
    config.write_text("sandbox: container\ncommand_timeout: 10\n", encoding="utf-8")
    env = {
        SANDBOX_ENV: "host",
        COMMAND_TIMEOUT_ENV: "0",
        MAX_OUTPUT_BYTES_ENV: "4096",
        CONTAINER_IMAGE_ENV: "custom:dev",
        WORKSPACE_ROOT_ENV: str(tmp_path / "ws"),
    }

    settings = load_settings(config, env=env)

    assert settings.sandbox == "host"
    assert settings.command_timeout is None
    assert settings.max_output_bytes == 4096
    assert settings.container_image == "custom:dev"
    assert settings.resolve_workspace_base() == tmp_path / "ws"


def test_invalid_environment_values_are_ignored_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="tse.config"):
        settings = load_settings(env={MAX_OUTPUT_BYTES_ENV: "lots", SANDBOX_ENV: "vm"})

    assert settings.max_output_bytes == ExecutorSettings().max_output_bytes
    assert settings.sandbox == "host"
    assert "Ignoring invalid" in caplog.text
    assert "Ignoring unknown" in caplog.text


def test_non_mapping_config_is_rejected(tmp_path: Path) -> None:
    config = tmp_path / "tse.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings(config, env={})


def test_workspace_base_falls_back_to_env_then_tempdir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv(WORKSPACE_ROOT_ENV, raising=False)
    assert ExecutorSettings().resolve_workspace_base() == Path(tempfile.gettempdir())

    monkeypatch.setenv(WORKSPACE_ROOT_ENV, str(tmp_path))
    assert ExecutorSettings().resolve_workspace_base() == tmp_path


def test_create_sandbox_selects_backend(tmp_path: Path) -> None:
    host = create_sandbox(ExecutorSettings(workspace_base=tmp_path), "demo run")
    container = create_sandbox(ExecutorSettings(workspace_base=tmp_path, sandbox="container"), "demo")

    assert isinstance(host, HostSandbox)
    assert isinstance(container, ContainerSandbox)
    assert host.workspace_root.parent == tmp_path.resolve()
    assert host.workspace_root.name.startswith("tutorial-validator-demo-run-")
    assert container.command_root == "/workspace"
