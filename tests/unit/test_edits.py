from __future__ import annotations

import json

import pytest

from tse.dsl.schema import ApplyDiffChange, ContextBasedChange, ReplaceFileContents
from tse.edits import apply_edit, find_anchor
from tse.errors import EditError


def _context(path: str, pattern: str, action: str, content: str) -> ContextBasedChange:
    return ContextBasedChange(type="context", path=path, searchPattern=pattern, action=action, content=content)


def _diff(**fields: object) -> ApplyDiffChange:
    return ApplyDiffChange(type="diff", path="notes.txt", **fields)


def test_replace_is_idempotent() -> None:
    change = ReplaceFileContents(type="replace", path="a.txt", contents="hello\n")

    once = apply_edit("old", change)
    twice = apply_edit(once, change)

    assert once == twice == "hello\n"


def test_find_anchor_single_line_returns_first_match() -> None:
    content = "alpha\nbeta\nbeta again\n"

    match = find_anchor(content, "beta", "f.txt")

    assert (match.first_line, match.last_line) == (1, 1)


def test_find_anchor_multiline_spans_every_touched_line() -> None:
    content = "one\ntwo\nthree\nfour\n"

    match = find_anchor(content, "wo\nthr", "f.txt")

    assert (match.first_line, match.last_line) == (1, 2)


def test_missing_anchor_raises_pattern_not_found() -> None:
    change = _context("app.py", "does-not-exist", "after", "x")

    with pytest.raises(EditError, match="not found in file app.py"):
        apply_edit("print('hi')\n", change)


def test_missing_multiline_anchor_raises() -> None:
    change = _context("app.py", "a\nb", "before", "x")

    with pytest.raises(EditError, match="not found"):
        apply_edit("a\nc\n", change)


@pytest.mark.parametrize("action", ["before", "after"])
def test_context_insert_grows_line_count_by_inserted_lines(action: str) -> None:
    content = "first\nsecond\nthird"
    inserted = "new one\nnew two"
    change = _context("notes.txt", "second", action, inserted)

    result = apply_edit(content, change)

    assert len(result.split("\n")) == len(content.split("\n")) + inserted.count("\n") + 1


def test_context_before_and_after_positions() -> None:
    content = "a\nb\nc"

    assert apply_edit(content, _context("f.txt", "b", "before", "X")) == "a\nX\nb\nc"
    assert apply_edit(content, _context("f.txt", "b", "after", "X")) == "a\nb\nX\nc"


def test_context_replace_covers_multiline_match() -> None:
    content = "keep\nold one\nold two\nkeep too\n"

    result = apply_edit(content, _context("f.txt", "old one\nold two", "replace", "new"))

    assert result == "keep\nnew\nkeep too\n"


def test_context_after_multiline_inserts_after_last_matched_line() -> None:
    content = "def f():\n    return 1\n\nprint(f())\n"

    result = apply_edit(content, _context("f.py", "def f():\n    return 1", "after", "# done"))

    assert result == "def f():\n    return 1\n# done\n\nprint(f())\n"


def test_diff_remove_then_insert_restores_length() -> None:
    content = "l0\nl1\nl2\nl3\nl4"
    change = _diff(removeLines={"start": 1, "end": 2}, insertLines={"at": 1, "lines": ["n1", "n2", "n3"]})

    result = apply_edit(content, change)

    assert result == "l0\nn1\nn2\nn3\nl3\nl4"
    assert len(result.split("\n")) == 5 + 3 - 2


def test_diff_out_of_range_indices_clamp() -> None:
    content = "a\nb"

    assert apply_edit(content, _diff(removeLines={"start": 5, "end": 9})) == content
    assert apply_edit(content, _diff(insertLines={"at": 99, "lines": ["z"]})) == "a\nb\nz"


def test_diff_find_replace_wins_and_replaces_first_occurrence_only() -> None:
    content = "x = 1\nx = 1\n"
    change = _diff(
        removeLines={"start": 0, "end": 0},
        findReplace={"find": "x = 1", "replace": "x = 2"},
    )

    assert apply_edit(content, change) == "x = 2\nx = 1\n"


def test_json_compact_object_gets_inline_property() -> None:
    change = _context("data.json", '"a":1', "after", '"b":2')

    result = apply_edit('{"a":1}', change)

    assert result == '{"a":1,"b":2}'
    assert json.loads(result) == {"a": 1, "b": 2}


def test_json_last_property_gets_comma_and_insert_has_none() -> None:
    content = '{\n  "name": "demo",\n  "version": "1.0.0"\n}\n'
    change = _context("package.json", '"version": "1.0.0"', "after", '  "main": "index.js",')

    result = apply_edit(content, change)

    assert json.loads(result) == {"name": "demo", "version": "1.0.0", "main": "index.js"}
    assert '"version": "1.0.0",' in result
    assert '"main": "index.js"\n' in result


def test_json_middle_property_gets_trailing_comma_on_insert() -> None:
    content = '{\n  "name": "demo",\n  "version": "1.0.0"\n}\n'
    change = _context("package.json", '"name": "demo"', "after", '  "private": true')

    result = apply_edit(content, change)

    assert json.loads(result) == {"name": "demo", "private": True, "version": "1.0.0"}


def test_json_nested_scope_is_respected() -> None:
    content = (
        "{\n"
        '  "scripts": {\n'
        '    "dev": "vite"\n'
        "  },\n"
        '  "name": "demo"\n'
        "}\n"
    )
    change = _context("package.json", '"dev": "vite"', "after", '    "build": "vite build"')

    result = apply_edit(content, change)

    assert json.loads(result)["scripts"] == {"dev": "vite", "build": "vite build"}


def test_json_rules_only_apply_to_json_paths() -> None:
    change = _context("data.txt", '"a":1', "after", '"b":2')

    assert apply_edit('{"a":1}', change) == '{"a":1}\n"b":2'
