from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tse.config import ExecutorSettings  # noqa: E402
from tse.dsl import TutorialSpec, parse_document  # noqa: E402
from tse.sandbox import HostSandbox  # noqa: E402


@pytest.fixture()
def settings(tmp_path: Path) -> ExecutorSettings:
    """Fast settings rooted under the test's temporary directory."""

    return ExecutorSettings(
        workspace_base=tmp_path / "workspaces",
        command_timeout=30.0,
        background_settle_delay=0.0,
        kill_grace_period=0.5,
    )


@pytest.fixture()
def host_sandbox(settings: ExecutorSettings) -> Iterator[HostSandbox]:
    sandbox = HostSandbox("pytest", settings=settings)
    sandbox.initialize()
    try:
        yield sandbox
    finally:
        sandbox.cleanup()


@pytest.fixture()
def make_spec() -> Callable[..., TutorialSpec]:
    """Build a validated document from step mappings; ids and numbers are filled in."""

    def _build(*steps: Mapping[str, Any], **document: Any) -> TutorialSpec:
        payload_steps = []
        for index, step in enumerate(steps, start=1):
            entry = {"id": f"step-{index}", "stepNumber": index}
            entry.update(step)
            payload_steps.append(entry)
        payload = {"metadata": {"title": "Test tutorial"}, **document, "steps": payload_steps}
        return parse_document(payload)

    return _build
