# tests/test_patch.py
"""
Fixer patch handling
====================

Covers validation of raw Fixer objects, the size guard, in-place
application (add / remove / edit / splice), previews, diff summaries and
snapshot rollback.  Everything runs inside ``tmp_path``.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from refinery.dev.patch import (
    AddOp,
    EditOp,
    Patch,
    PatchApplyError,
    PatchGuardError,
    PatchLimits,
    PatchSnapshot,
    RemoveOp,
    SpliceOp,
    UnsafePathError,
    apply_patch,
    content_bytes,
    diff_size_guard,
    preview_patch,
    resolve_in_root,
    summarize_patch,
    validate_fixer_patch,
)


def _write(root: Path, rel: str, text: str) -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


# --------------------------------------------------------------------------- #
# Validation
# --------------------------------------------------------------------------- #
def test_valid_patch_builds_typed_ops():
    parsed = validate_fixer_patch({"ops": [
        {"kind": "add", "path": "src/a.py", "content": "x = 1\n"},
        {"kind": "remove", "path": "src/old.py"},
        {"kind": "edit", "path": "src/b.py", "find": "foo", "replace": "bar"},
        {"kind": "splice", "path": "src/c.py", "start": 0, "deleteCount": 2, "insert": "zz"},
    ]})
    assert parsed.ok
    patch = parsed.unwrap()
    assert [type(op) for op in patch.ops] == [AddOp, RemoveOp, EditOp, SpliceOp]
    assert patch.ops[2].occurrences == 1
    assert patch.counts() == {"add": 1, "remove": 1, "edit": 1, "splice": 1}


def test_empty_ops_is_a_valid_noop():
    parsed = validate_fixer_patch({"ops": []})
    assert parsed.ok
    assert parsed.unwrap().ops == ()


@pytest.mark.parametrize("obj", [None, [], {"ops": "nope"}, {}])
def test_ops_array_required(obj):
    parsed = validate_fixer_patch(obj)
    assert not parsed.ok
    assert parsed.errors == ("`ops` array required",)


def test_every_problem_is_reported():
    parsed = validate_fixer_patch({"ops": [
        "not-an-object",
        {"kind": "edit"},
        {"kind": "rename", "path": "a.py"},
        {"kind": "add", "path": "a.py"},
        {"kind": "edit", "path": "a.py", "find": "", "replace": "x"},
        {"kind": "edit", "path": "a.py", "find": "a", "replace": "b", "occurrences": 0},
        {"kind": "splice", "path": "a.py", "start": True, "deleteCount": 1},
        {"kind": "splice", "path": "a.py", "start": -1, "deleteCount": 0},
    ]})
    assert not parsed.ok
    assert parsed.errors == (
        "op[0] must be an object",
        "op[1] missing kind/path",
        "op[2] invalid kind rename",
        "op[3] add requires content",
        "op[4] edit requires a non-empty find string",
        "op[5] edit occurrences must be a positive integer",
        "op[6] splice requires start/deleteCount numbers",
        "op[7] splice start/deleteCount must be non-negative",
    )


@pytest.mark.parametrize(
    "path, problem",
    [
        ("/etc/passwd", "must be relative"),
        ("../outside.py", "escapes the repository root"),
        ("src/../../x.py", "escapes the repository root"),
        (".", "names the repository root"),
    ],
)
def test_unsafe_paths_rejected(path, problem):
    parsed = validate_fixer_patch({"ops": [{"kind": "remove", "path": path}]})
    assert not parsed.ok
    assert parsed.errors[0] == f"op[0] path {path!r} {problem}"


def test_op_count_and_byte_limits():
    limits = PatchLimits(max_ops=2, max_bytes=4)
    ops = [{"kind": "add", "path": f"f{i}.txt", "content": "abc"} for i in range(3)]
    parsed = validate_fixer_patch({"ops": ops}, limits)
    assert "too many ops: 3 > 2" in parsed.errors
    assert "patch content too large: 9 > 4" in parsed.errors


def test_byte_budget_counts_utf8_bytes():
    # "é" is two bytes
    patch = Patch(ops=(
        AddOp("a.txt", "é"),
        EditOp("b.txt", "x", "éé"),
        SpliceOp("c.txt", 0, 0, "z"),
        RemoveOp("d.txt"),
    ))
    assert content_bytes(patch) == 2 + 4 + 1


def test_diff_size_guard_raises():
    patch = Patch(ops=(AddOp("a.txt", "x" * 10),))
    diff_size_guard(patch, PatchLimits(max_ops=5, max_bytes=10))
    with pytest.raises(PatchGuardError):
        diff_size_guard(patch, PatchLimits(max_ops=5, max_bytes=9))
    with pytest.raises(PatchGuardError):
        diff_size_guard(Patch(ops=(RemoveOp("a"), RemoveOp("b"))), PatchLimits(max_ops=1))


# --------------------------------------------------------------------------- #
# Application
# --------------------------------------------------------------------------- #
def test_add_writes_exact_content(tmp_path: Path):
    content = "line one\n\tline two  \n"
    touched = apply_patch(tmp_path, Patch(ops=(AddOp("pkg/new.py", content),)))
    assert touched == ["pkg/new.py"]
    assert (tmp_path / "pkg" / "new.py").read_text(encoding="utf-8") == content


def test_remove_missing_file_is_ignored(tmp_path: Path):
    _write(tmp_path, "gone.py", "x")
    apply_patch(tmp_path, Patch(ops=(RemoveOp("gone.py"), RemoveOp("never.py"))))
    assert not (tmp_path / "gone.py").exists()


def test_edit_replaces_only_requested_occurrences(tmp_path: Path):
    _write(tmp_path, "a.txt", "foo foo foo")
    apply_patch(tmp_path, Patch(ops=(EditOp("a.txt", "foo", "bar", occurrences=2),)))
    assert (tmp_path / "a.txt").read_text() == "bar bar foo"


def test_edit_does_not_rematch_its_own_replacement(tmp_path: Path):
    _write(tmp_path, "a.txt", "a-a")
    apply_patch(tmp_path, Patch(ops=(EditOp("a.txt", "a", "aa", occurrences=5),)))
    assert (tmp_path / "a.txt").read_text() == "aa-aa"


def test_edit_without_match_leaves_file(tmp_path: Path):
    _write(tmp_path, "a.txt", "hello")
    apply_patch(tmp_path, Patch(ops=(EditOp("a.txt", "absent", "x"),)))
    assert (tmp_path / "a.txt").read_text() == "hello"


def test_splice_uses_character_offsets(tmp_path: Path):
    _write(tmp_path, "a.txt", "héllo world")
    apply_patch(tmp_path, Patch(ops=(SpliceOp("a.txt", 1, 4, "ey"),)))
    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "hey world"


def test_ops_apply_in_order(tmp_path: Path):
    patch = Patch(ops=(
        AddOp("a.txt", "one two"),
        EditOp("a.txt", "two", "three"),
        SpliceOp("a.txt", 0, 3, "1"),
    ))
    apply_patch(tmp_path, patch)
    assert (tmp_path / "a.txt").read_text() == "1 three"


def test_edit_on_missing_file_fails(tmp_path: Path):
    with pytest.raises(PatchApplyError, match=r"op\[0\]"):
        apply_patch(tmp_path, Patch(ops=(EditOp("missing.py", "a", "b"),)))


def test_escape_rejected_at_apply_time(tmp_path: Path):
    root = tmp_path / "repo"
    root.mkdir()
    with pytest.raises(PatchApplyError):
        apply_patch(root, Patch(ops=(AddOp("../evil.txt", "x"),)))
    assert not (tmp_path / "evil.txt").exists()


def test_resolve_in_root(tmp_path: Path):
    assert resolve_in_root(tmp_path, "a/b.txt") == (tmp_path / "a" / "b.txt").resolve()
    for bad in ("", "/abs", "../up", "a/../.."):
        with pytest.raises(UnsafePathError):
            resolve_in_root(tmp_path, bad)


# --------------------------------------------------------------------------- #
# Preview / summary / rollback
# --------------------------------------------------------------------------- #
def test_preview_does_not_touch_tree(tmp_path: Path):
    _write(tmp_path, "a.txt", "old\n")
    patch = Patch(ops=(EditOp("a.txt", "old", "new"), AddOp("b.txt", "b\n")))
    after = preview_patch(tmp_path, patch)
    assert after == {"a.txt": ("old\n", "new\n"), "b.txt": (None, "b\n")}
    assert (tmp_path / "a.txt").read_text() == "old\n"
    assert not (tmp_path / "b.txt").exists()


def test_summary_counts_lines(tmp_path: Path):
    _write(tmp_path, "a.txt", "1\n2\n3\n")
    patch = Patch(ops=(EditOp("a.txt", "2\n", "two\nextra\n"), RemoveOp("a2.txt")))
    summary = summarize_patch(tmp_path, patch)
    assert summary[0] == {"path": "a.txt", "added": 2, "removed": 1}
    assert summary[1] == {"path": "a2.txt", "added": 0, "removed": 0}


def test_snapshot_restores_modified_and_created_files(tmp_path: Path):
    _write(tmp_path, "keep.txt", "original")
    snap = PatchSnapshot.capture(tmp_path, ["keep.txt", "created.txt"])
    apply_patch(tmp_path, Patch(ops=(
        EditOp("keep.txt", "original", "changed"),
        AddOp("created.txt", "new"),
    )))
    snap.restore()
    assert (tmp_path / "keep.txt").read_text() == "original"
    assert not (tmp_path / "created.txt").exists()


def test_patch_dict_round_trip_keeps_wire_names():
    patch = Patch(ops=(SpliceOp("a.txt", 3, 1, "x"),))
    wire = patch.to_dict()
    assert wire["ops"][0]["deleteCount"] == 1
    assert Patch.from_dict(wire) == patch
