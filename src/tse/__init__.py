"""Tutorial step executor: run declarative tutorial steps inside a sandbox."""

from .config import ExecutorSettings, load_settings
from .dsl import TutorialSpec, load_document, parse_document, validate_document
from .errors import (
    CommandTimeoutError,
    DocumentValidationError,
    EditError,
    ExecutorError,
    SandboxError,
)
from .executor import ExecutionResult, FailureKind, StepResult, TutorialExecutor, run_tutorial
from .sandbox import ContainerSandbox, HostSandbox, Sandbox, create_sandbox

__version__ = "0.1.0"

__all__ = [
    "CommandTimeoutError",
    "ContainerSandbox",
    "DocumentValidationError",
    "EditError",
    "ExecutionResult",
    "ExecutorError",
    "ExecutorSettings",
    "FailureKind",
    "HostSandbox",
    "Sandbox",
    "StepResult",
    "TutorialExecutor",
    "TutorialSpec",
    "create_sandbox",
    "load_document",
    "load_settings",
    "parse_document",
    "run_tutorial",
    "validate_document",
]
