"""Typed vocabulary of tutorial steps, file changes, and validations.

Documents are authored with camelCase keys (``stepNumber``,
``workingDirectory``, ``searchPattern`` ...).  The models expose snake_case
attributes and accept either spelling on input; ``model_dump(by_alias=True)``
reproduces the document form.
"""

from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DocumentModel(BaseModel):
    """Base model for document records: unknown keys rejected, values frozen."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


# --------------------------------------------------------------------------- file changes
class LineRange(DocumentModel):
    """Inclusive, 0-indexed range of lines to delete."""

    start: int = Field(ge=0)
    end: int = Field(ge=0)


class LineInsertion(DocumentModel):
    """Lines to insert before the 0-indexed position ``at``."""

    at: int = Field(ge=0)
    lines: List[str]


class FindReplace(DocumentModel):
    """Literal substring substitution (first occurrence only)."""

    find: str
    replace: str


class ReplaceFileContents(DocumentModel):
    """Replace the entire contents of a file."""

    type: Literal["replace"]
    path: str
    contents: str


class ApplyDiffChange(DocumentModel):
    """Line-oriented delete/insert and literal find/replace on a file."""

    type: Literal["diff"]
    path: str
    remove_lines: Optional[LineRange] = Field(default=None, alias="removeLines")
    insert_lines: Optional[LineInsertion] = Field(default=None, alias="insertLines")
    find_replace: Optional[FindReplace] = Field(default=None, alias="findReplace")


AnchorAction = Literal["before", "after", "replace"]


class ContextBasedChange(DocumentModel):
    """Insert or substitute content relative to a literal anchor pattern."""

    type: Literal["context"]
    path: str
    search_pattern: str = Field(alias="searchPattern")
    action: AnchorAction
    content: str


FileChange = Annotated[
    Union[ReplaceFileContents, ApplyDiffChange, ContextBasedChange],
    Field(discriminator="type"),
]


# --------------------------------------------------------------------------- validations
class CliOutputCheck(DocumentModel):
    contains: Optional[str] = None
    contains_error: Optional[str] = Field(default=None, alias="containsError")
    matches: Optional[str] = None
    exit_code: Optional[int] = Field(default=None, alias="exitCode")


class ValidateCliOutput(DocumentModel):
    """Run a command and assert on its output and exit code."""

    type: Literal["cli-output"]
    command: str
    working_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    check: CliOutputCheck


class FileContentsCheck(DocumentModel):
    contains: Optional[str] = None
    matches: Optional[str] = None
    equals: Optional[str] = None
    exists: Optional[bool] = None


class ValidateFileContents(DocumentModel):
    """Assert on the existence and contents of a file."""

    type: Literal["file-contents"]
    path: str
    check: FileContentsCheck


class AttributeCheck(DocumentModel):
    name: str
    value: str


class BrowserCheck(DocumentModel):
    contains_text: Optional[str] = Field(default=None, alias="containsText")
    selector: Optional[str] = None
    element_text: Optional[str] = Field(default=None, alias="elementText")
    attribute: Optional[AttributeCheck] = None
    evaluate: Optional[str] = None


class ValidateBrowser(DocumentModel):
    """Browser state assertion; accepted by the schema, executed externally."""

    type: Literal["browser"]
    url: str
    check: BrowserCheck


Validation = Annotated[
    Union[ValidateCliOutput, ValidateFileContents, ValidateBrowser],
    Field(discriminator="type"),
]


# --------------------------------------------------------------------------- steps
class BaseStep(DocumentModel):
    id: str
    step_number: int = Field(gt=0, alias="stepNumber")
    description: Optional[str] = None


class RunCommandStep(BaseStep):
    """Run a shell command in the sandbox."""

    type: Literal["run-command"]
    command: str
    working_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    env: Optional[Dict[str, str]] = None
    expected_exit_code: Optional[int] = Field(default=None, alias="expectedExitCode")
    capture_output: Optional[bool] = Field(default=None, alias="captureOutput")


class ChangeFileStep(BaseStep):
    """Apply a single file change."""

    type: Literal["change-file"]
    change: FileChange


class ValidateStep(BaseStep):
    """Assert on command output, file state, or browser state."""

    type: Literal["validate"]
    validation: Validation


TutorialStep = Annotated[
    Union[RunCommandStep, ChangeFileStep, ValidateStep],
    Field(discriminator="type"),
]


# --------------------------------------------------------------------------- document
class TutorialMetadata(DocumentModel):
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None


class Prerequisites(DocumentModel):
    """Tools and environment a tutorial needs before its first step."""

    commands: List[str] = Field(default_factory=list)
    env_vars: List[str] = Field(default_factory=list, alias="envVars")
    versions: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.commands or self.env_vars or self.versions)


class TutorialSpec(DocumentModel):
    """Complete tutorial document: metadata, prerequisites, and ordered steps."""

    metadata: Optional[TutorialMetadata] = None
    prerequisites: Optional[Prerequisites] = None
    working_directory: Optional[str] = Field(default=None, alias="workingDirectory")
    env: Optional[Dict[str, str]] = None
    steps: List[TutorialStep]

    @property
    def title(self) -> str | None:
        return self.metadata.title if self.metadata else None

    def step_by_id(self, step_id: str) -> TutorialStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


__all__ = [
    "AnchorAction",
    "ApplyDiffChange",
    "AttributeCheck",
    "BaseStep",
    "BrowserCheck",
    "ChangeFileStep",
    "CliOutputCheck",
    "ContextBasedChange",
    "DocumentModel",
    "FileChange",
    "FileContentsCheck",
    "FindReplace",
    "LineInsertion",
    "LineRange",
    "Prerequisites",
    "ReplaceFileContents",
    "RunCommandStep",
    "TutorialMetadata",
    "TutorialSpec",
    "TutorialStep",
    "ValidateBrowser",
    "ValidateCliOutput",
    "ValidateFileContents",
    "ValidateStep",
    "Validation",
]
