"""Exception taxonomy shared by the executor, sandboxes, and edit engine."""

from __future__ import annotations

from typing import Any, Mapping, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .dsl.validation import ValidationIssue


class ExecutorError(RuntimeError):
    """Base class for failures raised while executing a tutorial document."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class SandboxError(ExecutorError):
    """Raised when a sandbox cannot be created, used, or torn down."""


class CommandTimeoutError(ExecutorError):
    """Raised when a command exceeds its configured timeout."""

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(
            f"Command timed out after {timeout:g} seconds: {command}",
            details={"command": command, "timeout": timeout},
        )
        self.command = command
        self.timeout = timeout


class OutputLimitError(ExecutorError):
    """Raised when captured command output exceeds the configured buffer."""

    def __init__(self, stream: str, limit: int) -> None:
        super().__init__(
            f"Captured {stream} exceeded the {limit} byte limit",
            details={"stream": stream, "limit": limit},
        )
        self.stream = stream
        self.limit = limit


class FrameDecodeError(ExecutorError):
    """Raised when a multiplexed container stream is malformed."""


class EditError(ExecutorError):
    """Raised when a file edit cannot be applied (e.g. anchor not found)."""


class PrerequisiteError(ExecutorError):
    """Raised when a declared prerequisite is not satisfied."""


class DocumentValidationError(ExecutorError):
    """Raised when a tutorial document fails schema validation."""

    def __init__(self, issues: Sequence["ValidationIssue"]) -> None:
        self.issues: tuple["ValidationIssue", ...] = tuple(issues)
        summary = "; ".join(f"{issue.path}: {issue.message}" for issue in self.issues[:5])
        if len(self.issues) > 5:
            summary += f"; ... ({len(self.issues) - 5} more)"
        super().__init__(
            f"Tutorial document is invalid: {summary}",
            details={"issues": [issue.to_dict() for issue in self.issues]},
        )


__all__ = [
    "CommandTimeoutError",
    "DocumentValidationError",
    "EditError",
    "ExecutorError",
    "FrameDecodeError",
    "OutputLimitError",
    "PrerequisiteError",
    "SandboxError",
]
