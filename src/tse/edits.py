"""Pure text transformations behind ``change-file`` steps.

Every function here maps ``(old content, change) -> new content`` without
touching the filesystem; sandboxes own the reads and writes.  Content is
treated as a buffer of ``"\\n"``-separated lines so that joining the buffer
reproduces the original text exactly, trailing newline included.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

from .dsl.schema import ApplyDiffChange, ContextBasedChange, FileChange, ReplaceFileContents
from .errors import EditError

_TRAILING_COMMA = re.compile(r",\s*$")
_SCOPE_OPENERS = "{["
_SCOPE_CLOSERS = "}]"


@dataclass(slots=True, frozen=True)
class AnchorMatch:
    """Line span (inclusive, 0-indexed) covered by a matched search pattern."""

    first_line: int
    last_line: int


def _split_lines(content: str) -> List[str]:
    return content.split("\n")


def _join_lines(lines: List[str]) -> str:
    return "\n".join(lines)


def find_anchor(content: str, pattern: str, path: str) -> AnchorMatch:
    """Locate ``pattern`` in ``content``.

    Single-line patterns match the first line containing them.  Patterns with
    embedded newlines are searched across the whole content and the match
    covers every line the pattern touches.
    """
    if not pattern:
        raise EditError(f"Search pattern is empty for file {path}", details={"path": path})

    if "\n" in pattern:
        offset = content.find(pattern)
        if offset < 0:
            raise EditError(
                f"Search pattern not found in file {path}",
                details={"path": path, "pattern": pattern},
            )
        first = content.count("\n", 0, offset)
        last = content.count("\n", 0, offset + len(pattern) - 1)
        return AnchorMatch(first_line=first, last_line=last)

    for index, line in enumerate(_split_lines(content)):
        if pattern in line:
            return AnchorMatch(first_line=index, last_line=index)

    raise EditError(
        f'Search pattern "{pattern}" not found in file {path}',
        details={"path": path, "pattern": pattern},
    )


def apply_diff_change(content: str, change: ApplyDiffChange) -> str:
    """Apply line deletion, line insertion, or a literal find/replace.

    A ``find_replace`` takes precedence: it is applied to the original content
    and any line operations in the same change are ignored.
    """
    if change.find_replace is not None:
        rule = change.find_replace
        return content.replace(rule.find, rule.replace, 1)

    lines = _split_lines(content)
    if change.remove_lines is not None:
        start, end = change.remove_lines.start, change.remove_lines.end
        # Out-of-range indices clamp like a splice.
        del lines[start : end + 1]
    if change.insert_lines is not None:
        at = min(change.insert_lines.at, len(lines))
        lines[at:at] = list(change.insert_lines.lines)
    return _join_lines(lines)


def _line_break_suffix(line: str) -> str:
    return "\r" if line.endswith("\r") else ""


def _ensure_trailing_comma(line: str) -> str:
    suffix = _line_break_suffix(line)
    return line.rstrip() + "," + suffix


def _has_following_property(lines: List[str], start: int) -> bool:
    """Return True when another property follows ``start`` in the same scope.

    Brace/bracket depth is counted per character without tracking string
    literals, so values containing ``{`` or ``}`` can confuse the scan.
    """
    depth = 0
    for line in lines[start:]:
        stripped = line.strip()
        if not stripped:
            continue
        if depth == 0:
            if stripped.startswith('"'):
                return True
            if stripped[0] in _SCOPE_CLOSERS:
                return False
        for char in stripped:
            if char in _SCOPE_OPENERS:
                depth += 1
            elif char in _SCOPE_CLOSERS:
                depth -= 1
        if depth < 0:
            return False
    return False


def _splice_inline_property(line: str, pattern: str, inserted: str) -> str | None:
    """Insert a property inside a compact line such as ``{"a":1}``."""
    column = line.find(pattern)
    if column < 0:
        return None
    head_end = column + len(pattern)
    tail = line[head_end:]
    stripped_tail = tail.strip()
    if not stripped_tail or stripped_tail == ",":
        return None
    if stripped_tail[0] not in "}],":
        return None
    prop = _TRAILING_COMMA.sub("", inserted.strip())
    return f"{line[:head_end]},{prop}{tail}"


def _insert_after_json(lines: List[str], match: AnchorMatch, change: ContextBasedChange) -> List[str]:
    """Insert after the anchor while keeping commas valid in a JSON file."""
    index = match.last_line
    inserted = change.content
    looks_like_property = inserted.strip().startswith('"')

    if looks_like_property and match.first_line == match.last_line:
        spliced = _splice_inline_property(lines[index], change.search_pattern, inserted)
        if spliced is not None:
            lines[index] = spliced
            return lines

    matched = lines[index]
    trimmed = matched.strip()
    if looks_like_property and trimmed and not trimmed.endswith((",",) + tuple(_SCOPE_OPENERS + _SCOPE_CLOSERS)):
        lines[index] = _ensure_trailing_comma(matched)

    if _has_following_property(lines, index + 1):
        if looks_like_property and not inserted.rstrip().endswith(","):
            inserted = inserted.rstrip() + ","
    else:
        inserted = _TRAILING_COMMA.sub("", inserted)

    lines.insert(index + 1, inserted)
    return lines


def apply_context_change(content: str, change: ContextBasedChange, path: str) -> str:
    """Insert before/after or replace the lines matched by the search pattern."""
    match = find_anchor(content, change.search_pattern, path)
    lines = _split_lines(content)

    if change.action == "before":
        lines.insert(match.first_line, change.content)
    elif change.action == "replace":
        lines[match.first_line : match.last_line + 1] = [change.content]
    elif path.endswith(".json"):
        lines = _insert_after_json(lines, match, change)
    else:
        lines.insert(match.last_line + 1, change.content)

    return _join_lines(lines)


def apply_edit(content: str, change: FileChange, path: str | None = None) -> str:
    """Return ``content`` transformed by ``change``.

    ``path`` defaults to the change's own path and only influences the
    JSON-specific comma handling and error messages.
    """
    target = path if path is not None else change.path
    if isinstance(change, ReplaceFileContents):
        return change.contents
    if isinstance(change, ApplyDiffChange):
        return apply_diff_change(content, change)
    if isinstance(change, ContextBasedChange):
        return apply_context_change(content, change, target)
    raise EditError(f"Unsupported file change type: {type(change).__name__}")


__all__ = [
    "AnchorMatch",
    "apply_context_change",
    "apply_diff_change",
    "apply_edit",
    "find_anchor",
]
