"""Boundary validation that reports every problem in a tutorial document.

The extraction agent retries with the complete list of field-level issues,
so validation never stops at the first error.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, List

from pydantic import ValidationError

from ..errors import DocumentValidationError
from .schema import TutorialSpec

DOCUMENT_PATH = "<document>"

# Tag values pydantic inserts into error locations for discriminated unions.
_UNION_TAGS = frozenset(
    {
        "run-command",
        "change-file",
        "validate",
        "replace",
        "diff",
        "context",
        "cli-output",
        "file-contents",
        "browser",
    }
)


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    """Single field-level problem found in a tutorial document."""

    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message}


@dataclass(slots=True)
class DocumentValidation:
    """Outcome of validating a raw document."""

    spec: TutorialSpec | None
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.spec is not None and not self.issues


def _format_location(location: Sequence[Any]) -> str:
    parts = [str(part) for part in location if not (isinstance(part, str) and part in _UNION_TAGS)]
    return ".".join(parts) if parts else DOCUMENT_PATH


def _issues_from_error(error: ValidationError) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for entry in error.errors(include_url=False):
        path = _format_location(entry.get("loc", ()))
        message = str(entry.get("msg", "invalid value"))
        if entry.get("type") == "union_tag_invalid":
            context = entry.get("ctx") or {}
            tag = context.get("tag")
            expected = context.get("expected_tags")
            if tag is not None:
                message = f"unknown type {tag!r}; expected one of {expected}"
        issues.append(ValidationIssue(path=path, message=message))
    return issues


def _duplicate_id_issues(data: Mapping[str, Any]) -> List[ValidationIssue]:
    """Flag step ids that appear more than once in the raw step list."""
    steps = data.get("steps")
    if not isinstance(steps, Sequence) or isinstance(steps, (str, bytes)):
        return []
    seen: dict[str, int] = {}
    issues: List[ValidationIssue] = []
    for index, step in enumerate(steps):
        if not isinstance(step, Mapping):
            continue
        step_id = step.get("id")
        if not isinstance(step_id, str):
            continue
        if step_id in seen:
            issues.append(
                ValidationIssue(
                    path=f"steps.{index}.id",
                    message=f"duplicate step id {step_id!r} (first used by steps.{seen[step_id]})",
                )
            )
        else:
            seen[step_id] = index
    return issues


def validate_document(data: Any) -> DocumentValidation:
    """Validate ``data`` against the tutorial schema, collecting all issues."""
    if not isinstance(data, Mapping):
        kind = type(data).__name__
        return DocumentValidation(
            spec=None,
            issues=[ValidationIssue(path=DOCUMENT_PATH, message=f"expected a mapping at the top level, got {kind}")],
        )

    issues: List[ValidationIssue] = []
    spec: TutorialSpec | None = None
    try:
        spec = TutorialSpec.model_validate(dict(data))
    except ValidationError as error:
        issues.extend(_issues_from_error(error))

    issues.extend(_duplicate_id_issues(data))
    if issues:
        return DocumentValidation(spec=None, issues=issues)
    return DocumentValidation(spec=spec, issues=[])


def parse_document(data: Any) -> TutorialSpec:
    """Return a validated :class:`TutorialSpec` or raise with every issue."""
    outcome = validate_document(data)
    if outcome.spec is None:
        raise DocumentValidationError(outcome.issues)
    return outcome.spec


__all__ = [
    "DOCUMENT_PATH",
    "DocumentValidation",
    "ValidationIssue",
    "parse_document",
    "validate_document",
]
