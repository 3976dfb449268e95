"""Load tutorial documents from YAML or JSON files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ..errors import DocumentValidationError
from .schema import TutorialSpec
from .validation import DOCUMENT_PATH, ValidationIssue, parse_document


def read_document(path: Path | str) -> Any:
    """Read the raw document payload; JSON is parsed as a YAML subset."""
    document_path = Path(path)
    try:
        with document_path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as error:
        raise DocumentValidationError(
            [ValidationIssue(path=DOCUMENT_PATH, message=f"failed to parse {document_path.name}: {error}")]
        ) from error


def load_document(path: Path | str) -> TutorialSpec:
    """Read and validate a tutorial document from disk."""
    return parse_document(read_document(path))


__all__ = ["load_document", "read_document"]
