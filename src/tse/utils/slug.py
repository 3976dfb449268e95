"""Utilities for generating filesystem-safe run identifiers."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_UNSAFE_PATTERN: Pattern[str] = re.compile(r"[^A-Za-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "run", max_length: int = 64) -> str:
    """Normalize ``value`` (e.g. a tutorial title) into a directory-name slug.

    Case is preserved; spaces and other unsafe characters collapse to ``-``.
    Overlong slugs are shortened with a hash suffix so distinct titles stay
    distinct.
    """
    slug = _normalize((value or "").strip())
    if not slug:
        slug = _normalize(fallback) or "run"
    if len(slug) <= max_length:
        return slug

    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
    return f"{prefix}-{digest}"


def _normalize(value: str) -> str:
    slug = _UNSAFE_PATTERN.sub("-", value)
    slug = _HYPHEN_COLLAPSE.sub("-", slug)
    return slug.strip("-.")
