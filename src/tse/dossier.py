"""Failure dossiers handed back to the step-extraction agent for retries."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import Field

from .dsl.schema import DocumentModel, TutorialSpec
from .dsl.validation import ValidationIssue
from .executor import ExecutionResult


class FailureSummary(DocumentModel):
    step_id: str = Field(alias="stepId")
    step_number: int = Field(alias="stepNumber")
    step_type: str = Field(alias="stepType")
    description: Optional[str] = None
    error: str


class StepReference(DocumentModel):
    step_id: str = Field(alias="stepId")
    step_number: int = Field(alias="stepNumber")
    description: Optional[str] = None
    type: Optional[str] = None


class ExecutionFailureDossier(DocumentModel):
    """Everything the extraction agent needs to understand a failed run."""

    kind: Literal["execution-failure"] = "execution-failure"
    summary: FailureSummary
    step_definition: Optional[Dict[str, Any]] = Field(default=None, alias="stepDefinition")
    successful_steps_before_failure: List[StepReference] = Field(
        default_factory=list, alias="successfulStepsBeforeFailure"
    )
    output: str = ""
    workspace_root: str = Field(alias="workspaceRoot")
    tutorial_context: Optional[str] = Field(default=None, alias="tutorialContext")


class SchemaValidationDossier(DocumentModel):
    kind: Literal["schema-validation"] = "schema-validation"
    schema_errors_json: str = Field(alias="schemaErrorsJson")
    message: str


FailureDossier = Union[ExecutionFailureDossier, SchemaValidationDossier]


def build_execution_dossier(
    result: ExecutionResult,
    spec: TutorialSpec,
    *,
    tutorial_context: str | None = None,
) -> ExecutionFailureDossier | None:
    """Summarise a failed run; returns None when the run succeeded."""
    if result.success:
        return None

    failed = result.failed_step
    successful = [
        StepReference(
            step_id=item.step_id,
            step_number=item.step_number,
            description=_description(spec, item.step_id),
            type=_step_type(spec, item.step_id),
        )
        for item in result.step_results
        if item.success
    ]

    if failed is None:
        # Prerequisite or infrastructure failures happen before any step runs.
        kind = result.failure_kind.value if result.failure_kind else "unknown"
        summary = FailureSummary(
            step_id="",
            step_number=0,
            step_type=kind,
            error=result.error or "Run failed before any step executed",
        )
        return ExecutionFailureDossier(
            summary=summary,
            successful_steps_before_failure=successful,
            workspace_root=str(result.workspace_root),
            tutorial_context=tutorial_context,
        )

    step = spec.step_by_id(failed.step_id)
    summary = FailureSummary(
        step_id=failed.step_id,
        step_number=failed.step_number,
        step_type=step.type if step is not None else "unknown",
        description=step.description if step is not None else None,
        error=failed.error or "Step failed",
    )
    return ExecutionFailureDossier(
        summary=summary,
        step_definition=step.model_dump(by_alias=True, exclude_none=True) if step is not None else None,
        successful_steps_before_failure=successful,
        output=failed.output or "",
        workspace_root=str(result.workspace_root),
        tutorial_context=tutorial_context,
    )


def build_schema_dossier(issues: Sequence[ValidationIssue]) -> SchemaValidationDossier:
    payload = [issue.to_dict() for issue in issues]
    noun = "issue" if len(payload) == 1 else "issues"
    return SchemaValidationDossier(
        schema_errors_json=json.dumps(payload, indent=2),
        message=f"Tutorial document failed schema validation with {len(payload)} {noun}",
    )


def _description(spec: TutorialSpec, step_id: str) -> str | None:
    step = spec.step_by_id(step_id)
    return step.description if step is not None else None


def _step_type(spec: TutorialSpec, step_id: str) -> str | None:
    step = spec.step_by_id(step_id)
    return step.type if step is not None else None


__all__ = [
    "ExecutionFailureDossier",
    "FailureDossier",
    "FailureSummary",
    "SchemaValidationDossier",
    "StepReference",
    "build_execution_dossier",
    "build_schema_dossier",
]
