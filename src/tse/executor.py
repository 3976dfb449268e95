"""Step interpreter that drives a tutorial document through a sandbox."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import ExecutorSettings
from .dsl.schema import (
    ChangeFileStep,
    RunCommandStep,
    TutorialSpec,
    TutorialStep,
    ValidateBrowser,
    ValidateCliOutput,
    ValidateFileContents,
    ValidateStep,
)
from .errors import ExecutorError, PrerequisiteError, SandboxError
from .sandbox import Sandbox, create_sandbox
from .shell import (
    absolute_to_logical,
    cd_segment,
    join_logical,
    needs_probe,
    parse_cd_target,
    parse_exports,
    resolve_working_dir,
)
from .telemetry import emit_event

LOGGER = logging.getLogger(__name__)

BROWSER_NOT_IMPLEMENTED = "Browser validation not yet implemented"
_VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+)*)")


class FailureKind(str, Enum):
    """Why a run stopped short of success."""

    PREREQUISITE = "prerequisite"
    STEP = "step"
    INFRASTRUCTURE = "infrastructure"


@dataclass(frozen=True, slots=True)
class InterpreterState:
    """Logical shell state threaded through the dispatch loop.

    ``cwd`` is relative to the workspace root (``""`` is the root) or
    absolute when a ``cd`` left the workspace.  ``env`` holds variables
    exported by earlier steps.
    """

    cwd: str = ""
    env: Mapping[str, str] = field(default_factory=dict)

    def with_cwd(self, cwd: str) -> "InterpreterState":
        return replace(self, cwd=cwd)

    def with_env(self, updates: Mapping[str, str]) -> "InterpreterState":
        merged = dict(self.env)
        merged.update(updates)
        return replace(self, env=merged)


@dataclass(slots=True)
class StepResult:
    step_id: str
    step_number: int
    success: bool
    error: Optional[str] = None
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "stepId": self.step_id,
            "stepNumber": self.step_number,
            "success": self.success,
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.output is not None:
            payload["output"] = self.output
        return payload


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one run.

    ``step_results`` lists only the steps that actually executed; compare
    ``executed_steps`` with ``total_steps`` (or use ``complete``) before
    treating a successful result as a valid tutorial.
    """

    workspace_root: Path
    step_results: List[StepResult]
    success: bool
    title: Optional[str] = None
    total_steps: int = 0
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None

    @property
    def executed_steps(self) -> int:
        return len(self.step_results)

    @property
    def complete(self) -> bool:
        return self.success and self.executed_steps == self.total_steps

    @property
    def failed_step(self) -> Optional[StepResult]:
        for result in self.step_results:
            if not result.success:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "workspaceRoot": str(self.workspace_root),
            "success": self.success,
            "complete": self.complete,
            "totalSteps": self.total_steps,
            "executedSteps": self.executed_steps,
            "failureKind": self.failure_kind.value if self.failure_kind else None,
            "error": self.error,
            "stepResults": [result.to_dict() for result in self.step_results],
        }


def _normalise_newlines(text: str) -> str:
    return text.replace("\r\n", "\n")


def _parse_version(text: str) -> Tuple[int, ...] | None:
    match = _VERSION_PATTERN.search(text)
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def _version_at_least(found: Sequence[int], minimum: Sequence[int]) -> bool:
    width = max(len(found), len(minimum))
    padded_found = tuple(found) + (0,) * (width - len(found))
    padded_minimum = tuple(minimum) + (0,) * (width - len(minimum))
    return padded_found >= padded_minimum


def _file_target(step: TutorialStep) -> str | None:
    if isinstance(step, ChangeFileStep):
        return step.change.path
    if isinstance(step, ValidateStep) and isinstance(step.validation, ValidateFileContents):
        return step.validation.path
    return None


class TutorialExecutor:
    """Execute the steps of a :class:`TutorialSpec` inside one sandbox."""

    def __init__(
        self,
        spec: TutorialSpec,
        sandbox: Sandbox | None = None,
        settings: ExecutorSettings | None = None,
        *,
        run_id: str | None = None,
    ) -> None:
        self.spec = spec
        if settings is None:
            settings = sandbox.settings if sandbox is not None else ExecutorSettings()
        self.settings = settings
        self.sandbox = sandbox or create_sandbox(settings, run_id or spec.title)
        self.global_env: Dict[str, str] = dict(spec.env or {})

    # ------------------------------------------------------------------ run
    def execute(self) -> ExecutionResult:
        emit_event(
            "run.started",
            title=self.spec.title,
            total_steps=len(self.spec.steps),
            sandbox=type(self.sandbox).__name__,
            workspace=self.sandbox.workspace_root,
        )
        try:
            self.sandbox.initialize()
        except (SandboxError, OSError) as exc:
            LOGGER.error("Sandbox initialisation failed: %s", exc)
            return self._finish([], FailureKind.INFRASTRUCTURE, str(exc))

        try:
            self.check_prerequisites()
        except SandboxError as exc:
            LOGGER.error("Sandbox failed during prerequisite checks: %s", exc)
            return self._finish([], FailureKind.INFRASTRUCTURE, str(exc))
        except (ExecutorError, OSError) as exc:
            LOGGER.error("%s", exc)
            return self._finish([], FailureKind.PREREQUISITE, str(exc))

        state = InterpreterState(cwd=resolve_working_dir("", self.spec.working_directory) or "")
        results: List[StepResult] = []
        for step in self.spec.steps:
            LOGGER.info("Step %d (%s): %s", step.step_number, step.id, step.description or step.type)
            result, state = self.dispatch(step, state)
            results.append(result)
            emit_event(
                "step.finished",
                step_id=result.step_id,
                step_number=result.step_number,
                success=result.success,
                error=result.error,
                cwd=state.cwd,
            )
            if not result.success:
                LOGGER.warning("Step %d (%s) failed: %s", result.step_number, result.step_id, result.error)
                return self._finish(results, FailureKind.STEP, result.error)
        return self._finish(results)

    def _finish(
        self,
        results: List[StepResult],
        failure_kind: FailureKind | None = None,
        error: str | None = None,
    ) -> ExecutionResult:
        result = ExecutionResult(
            workspace_root=self.sandbox.workspace_root,
            step_results=results,
            success=failure_kind is None and all(item.success for item in results),
            title=self.spec.title,
            total_steps=len(self.spec.steps),
            failure_kind=failure_kind,
            error=error,
        )
        emit_event(
            "run.finished",
            title=result.title,
            success=result.success,
            executed_steps=result.executed_steps,
            total_steps=result.total_steps,
            failure_kind=failure_kind.value if failure_kind else None,
        )
        return result

    def cleanup(self, keep_workspace: bool = False) -> None:
        try:
            self.sandbox.cleanup(preserve=keep_workspace)
        except Exception:
            LOGGER.exception("Sandbox cleanup failed for %s", self.sandbox.workspace_root)

    # ------------------------------------------------------------------ prerequisites
    def check_prerequisites(self) -> None:
        """Raise :class:`PrerequisiteError` for the first unmet prerequisite."""
        prerequisites = self.spec.prerequisites
        if prerequisites is None or prerequisites.is_empty:
            return

        for command in prerequisites.commands:
            name = command.split()[0] if command.split() else command
            probe = f"command -v {name} > /dev/null 2>&1 || which {name} > /dev/null 2>&1"
            if not self.sandbox.run(probe).ok:
                raise PrerequisiteError(
                    f"Prerequisite command not found: {name}", details={"command": name}
                )

        for variable in prerequisites.env_vars:
            if not os.environ.get(variable):
                raise PrerequisiteError(
                    f"Required environment variable not set: {variable}",
                    details={"env_var": variable},
                )

        for name, minimum in prerequisites.versions.items():
            required = _parse_version(minimum)
            if required is None:
                LOGGER.warning("Ignoring unparseable version requirement %s=%r", name, minimum)
                continue
            output = self.sandbox.run(f"{name} --version")
            found = _parse_version(output.combined) if output.ok else None
            if found is None:
                raise PrerequisiteError(
                    f"Unable to determine version of {name}",
                    details={"command": name, "required": minimum},
                )
            if not _version_at_least(found, required):
                found_text = ".".join(str(part) for part in found)
                raise PrerequisiteError(
                    f"{name} {found_text} is older than the required {minimum}",
                    details={"command": name, "found": found_text, "required": minimum},
                )

    # ------------------------------------------------------------------ dispatch
    def dispatch(self, step: TutorialStep, state: InterpreterState) -> Tuple[StepResult, InterpreterState]:
        """Execute one step and return its result with the updated state."""
        try:
            if isinstance(step, RunCommandStep):
                return self._run_command(step, state)
            if isinstance(step, ChangeFileStep):
                self.sandbox.apply_edit(step.change)
                message = f"Applied {step.change.type} change to {step.change.path}"
                return self._result(step, True, output=message), state
            if isinstance(step, ValidateStep):
                return self._validate(step, state), state
            return self._result(step, False, error=f"Unknown step type: {step.type}"), state
        except UnicodeDecodeError as exc:
            target = _file_target(step)
            where = f": {target}" if target else ""
            error = f"File is not valid UTF-8{where} ({exc.reason} at byte {exc.start})"
            return self._result(step, False, error=error), state
        except (ExecutorError, OSError, re.error) as exc:
            return self._result(step, False, error=str(exc)), state

    def _command_env(self, state: InterpreterState, step_env: Mapping[str, str] | None = None) -> Dict[str, str]:
        env = dict(self.global_env)
        env.update(state.env)
        env.update(step_env or {})
        return env

    def _run_command(self, step: RunCommandStep, state: InterpreterState) -> Tuple[StepResult, InterpreterState]:
        working_dir = resolve_working_dir(state.cwd, step.working_directory)
        outcome = self.sandbox.run(step.command, working_dir, self._command_env(state, step.env))

        expected = step.expected_exit_code if step.expected_exit_code is not None else 0
        success = outcome.exit_code == expected
        if outcome.exit_code == 0:
            state = self._track_directory(step.command, working_dir, state)
            exports = parse_exports(step.command)
            if exports:
                state = state.with_env(exports)

        output = outcome.combined if step.capture_output is not False else None
        error = None if success else f"Expected exit code {expected}, got {outcome.exit_code}"
        return self._result(step, success, error=error, output=output), state

    def _track_directory(
        self,
        command: str,
        working_dir: str | None,
        state: InterpreterState,
    ) -> InterpreterState:
        segment = cd_segment(command)
        if segment is None:
            return state
        target = parse_cd_target(segment)
        base = working_dir or ""
        if not needs_probe(target):
            return state.with_cwd(join_logical(base, target or ""))

        probe = self.sandbox.run(f"{segment} && pwd", working_dir, self._command_env(state))
        lines = [line.strip() for line in probe.stdout.splitlines() if line.strip()]
        if not probe.ok or not lines:
            LOGGER.warning("Could not resolve directory for %r; keeping %r", segment, state.cwd)
            return state
        logical = absolute_to_logical(lines[-1], self.sandbox.command_root)
        LOGGER.debug("cd probe %r resolved to %r", segment, logical)
        return state.with_cwd(logical)

    # ------------------------------------------------------------------ validations
    def _validate(self, step: ValidateStep, state: InterpreterState) -> StepResult:
        validation = step.validation
        if isinstance(validation, ValidateCliOutput):
            return self._validate_cli_output(step, validation, state)
        if isinstance(validation, ValidateFileContents):
            return self._validate_file_contents(step, validation, state)
        if isinstance(validation, ValidateBrowser):
            return self._result(step, False, error=BROWSER_NOT_IMPLEMENTED)
        return self._result(step, False, error=f"Unknown validation type: {validation.type}")

    def _validate_cli_output(
        self,
        step: ValidateStep,
        validation: ValidateCliOutput,
        state: InterpreterState,
    ) -> StepResult:
        working_dir = resolve_working_dir(state.cwd, validation.working_directory)
        outcome = self.sandbox.run(validation.command, working_dir, self._command_env(state))
        check = validation.check
        errors: List[str] = []

        if check.exit_code is not None and outcome.exit_code != check.exit_code:
            errors.append(f"Expected exit code {check.exit_code}, got {outcome.exit_code}")
        if check.contains and check.contains not in outcome.stdout:
            errors.append(f'Expected stdout to contain "{check.contains}"')
        if check.contains_error and check.contains_error not in outcome.stderr:
            errors.append(f'Expected stderr to contain "{check.contains_error}"')
        if check.matches and not re.search(check.matches, outcome.combined.strip()):
            errors.append(f"Output did not match pattern: {check.matches}")

        output = outcome.stdout + (f"\n[stderr]\n{outcome.stderr}" if outcome.stderr else "")
        return self._result(step, not errors, error="; ".join(errors) or None, output=output)

    def _validate_file_contents(
        self,
        step: ValidateStep,
        validation: ValidateFileContents,
        state: InterpreterState,
    ) -> StepResult:
        path = validation.path if validation.path.startswith("/") else join_logical(state.cwd, validation.path) or "."
        check = validation.check
        exists = self.sandbox.file_exists(path)

        if check.exists is True and not exists:
            return self._result(step, False, error=f"File does not exist: {validation.path}")
        if check.exists is False and exists:
            return self._result(step, False, error=f"File should not exist: {validation.path}")
        wants_content = check.contains is not None or check.matches is not None or check.equals is not None
        if not wants_content:
            return self._result(step, True, output=f"File existence check passed: {validation.path}")
        if not exists:
            return self._result(step, False, error=f"File does not exist: {validation.path}")

        try:
            raw = self.sandbox.read_file(path)
        except IsADirectoryError:
            return self._result(step, False, error=f"Path is a directory, not a file: {validation.path}")
        contents = _normalise_newlines(raw)
        errors: List[str] = []
        if check.contains is not None and _normalise_newlines(check.contains) not in contents:
            errors.append(f'File does not contain: "{check.contains}"')
        if check.equals is not None and contents != _normalise_newlines(check.equals):
            errors.append("File contents do not match exactly")
        if check.matches is not None and not re.search(check.matches, contents):
            errors.append(f"File contents do not match pattern: {check.matches}")

        if errors:
            return self._result(step, False, error="; ".join(errors), output=contents[:500])
        return self._result(step, True, output=f"File validation passed: {validation.path}")

    # ------------------------------------------------------------------ helpers
    def _result(
        self,
        step: TutorialStep,
        success: bool,
        *,
        error: str | None = None,
        output: str | None = None,
    ) -> StepResult:
        return StepResult(
            step_id=step.id,
            step_number=step.step_number,
            success=success,
            error=error,
            output=self._truncate(output),
        )

    def _truncate(self, output: str | None) -> str | None:
        limit = self.settings.max_step_output_chars
        if output is None or limit <= 0 or len(output) <= limit:
            return output
        return f"{output[:limit]}\n... [truncated {len(output) - limit} chars]"


def run_tutorial(
    spec: TutorialSpec,
    *,
    sandbox: Sandbox | None = None,
    settings: ExecutorSettings | None = None,
    run_id: str | None = None,
    keep_workspace: bool = False,
) -> ExecutionResult:
    """Execute ``spec`` and always release the sandbox afterwards."""
    executor = TutorialExecutor(spec, sandbox=sandbox, settings=settings, run_id=run_id)
    try:
        return executor.execute()
    finally:
        executor.cleanup(keep_workspace=keep_workspace)


__all__ = [
    "BROWSER_NOT_IMPLEMENTED",
    "ExecutionResult",
    "FailureKind",
    "InterpreterState",
    "StepResult",
    "TutorialExecutor",
    "run_tutorial",
]
