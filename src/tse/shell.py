"""Logical working-directory tracking for ``cd`` commands.

Each command runs in a fresh shell, so a ``cd`` only matters for the steps
that follow it if the executor replays its effect.  Targets that only a real
shell can resolve (home directory, absolute paths, ``cd -``, expansions) are
probed; everything else is resolved with plain path arithmetic.
"""

from __future__ import annotations

import posixpath
import re
import shlex
from typing import Optional

_CD_PATTERN = re.compile(r"^cd(\s.*)?$", re.DOTALL)
_SEPARATORS = ("&&", "||", ";", "|", "\n")


def first_segment(command: str) -> str:
    """Return the text before the first unquoted ``&&``, ``||``, ``;`` or ``|``."""
    quote: Optional[str] = None
    index = 0
    while index < len(command):
        char = command[index]
        if quote:
            if char == "\\" and quote == '"':
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in {"'", '"'}:
            quote = char
        elif char == "\\":
            index += 2
            continue
        else:
            for separator in _SEPARATORS:
                if command.startswith(separator, index):
                    return command[:index].strip()
        index += 1
    return command.strip()


def cd_segment(command: str) -> Optional[str]:
    """The leading ``cd ...`` segment of ``command``, or None."""
    segment = first_segment(command)
    return segment if _CD_PATTERN.match(segment) else None


def parse_cd_target(segment: str) -> Optional[str]:
    """Extract the directory argument of a ``cd`` segment; None means no argument."""
    try:
        tokens = shlex.split(segment, posix=True)
    except ValueError:
        tokens = segment.split()
    if not tokens or tokens[0] != "cd":
        return None
    args = tokens[1:]
    while args and args[0] in {"-L", "-P", "-e", "-@"}:
        args = args[1:]
    if args and args[0] == "--":
        args = args[1:]
    return args[0] if args else None


def needs_probe(target: Optional[str]) -> bool:
    """True when only the shell itself can tell where ``cd target`` lands."""
    if target is None or target == "":
        return True
    if target == "-" or target.startswith("~") or target.startswith("/"):
        return True
    return "$" in target or "`" in target


def join_logical(cwd: str, target: str) -> str:
    """Apply a relative ``cd`` target to a logical directory.

    Logical directories are workspace-relative (``""`` is the root) unless a
    previous probe landed outside the workspace, in which case they are
    absolute.  ``..`` beyond the workspace root clamps to the root.
    """
    if cwd.startswith("/"):
        return posixpath.normpath(posixpath.join(cwd, target))
    segments = [part for part in cwd.split("/") if part and part != "."]
    for part in target.split("/"):
        if part in {"", "."}:
            continue
        if part == "..":
            if segments:
                segments.pop()
            continue
        segments.append(part)
    return "/".join(segments)


def absolute_to_logical(absolute: str, command_root: str) -> str:
    """Map an absolute path reported by ``pwd`` back onto the workspace."""
    path = posixpath.normpath(absolute.strip())
    root = posixpath.normpath(command_root)
    if path == root:
        return ""
    if path.startswith(root.rstrip("/") + "/"):
        return path[len(root.rstrip("/")) + 1 :]
    return path


_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_exports(command: str) -> dict[str, str]:
    """Literal ``export NAME=value`` assignments in the leading segment.

    Values containing expansions are skipped; only the shell knows them.
    """
    segment = first_segment(command)
    try:
        tokens = shlex.split(segment, posix=True)
    except ValueError:
        return {}
    if not tokens or tokens[0] != "export":
        return {}
    exports: dict[str, str] = {}
    for token in tokens[1:]:
        name, sep, value = token.partition("=")
        if not sep or not _ENV_NAME.match(name):
            continue
        if "$" in value or "`" in value:
            continue
        exports[name] = value
    return exports


def resolve_working_dir(cwd: str, override: Optional[str]) -> Optional[str]:
    """Working directory for a command: the override resolved against ``cwd``.

    Returns None for the workspace root so sandboxes use their default.
    """
    if override:
        if override.startswith("/"):
            return override
        resolved = join_logical(cwd, override)
    else:
        resolved = cwd
    return resolved or None


__all__ = [
    "absolute_to_logical",
    "cd_segment",
    "first_segment",
    "join_logical",
    "needs_probe",
    "parse_cd_target",
    "parse_exports",
    "resolve_working_dir",
]
