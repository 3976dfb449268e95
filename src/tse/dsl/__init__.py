"""Tutorial document model, validation, and loading."""

from .loader import load_document, read_document
from .schema import (
    ApplyDiffChange,
    ChangeFileStep,
    ContextBasedChange,
    FileChange,
    Prerequisites,
    ReplaceFileContents,
    RunCommandStep,
    TutorialMetadata,
    TutorialSpec,
    TutorialStep,
    ValidateBrowser,
    ValidateCliOutput,
    ValidateFileContents,
    ValidateStep,
    Validation,
)
from .validation import DocumentValidation, ValidationIssue, parse_document, validate_document

__all__ = [
    "ApplyDiffChange",
    "ChangeFileStep",
    "ContextBasedChange",
    "DocumentValidation",
    "FileChange",
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
    "ValidationIssue",
    "load_document",
    "parse_document",
    "read_document",
    "validate_document",
]
