"""Unit tests for traversal, checksums and path-map diffs."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest
from helpers import write_files

from restorekit.core.errors import OperationCancelled
from restorekit.core.store.tree import (
    apply_changes,
    capture_tree,
    diff_trees,
    file_checksum,
    is_excluded,
    iter_tree,
    tree_checksum,
)


def test_file_checksum_is_sha256() -> None:
    assert file_checksum(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_tree_checksum_ignores_insertion_order(project: Path) -> None:
    """The aggregate checksum depends on content, not on dict order."""
    files = capture_tree(project, [])
    reordered = dict(reversed(list(files.items())))
    assert tree_checksum(files) == tree_checksum(reordered)


def test_tree_checksum_sees_renames(project: Path) -> None:
    """Same bytes under a different path is a different tree."""
    before = capture_tree(project, [])
    (project / "README.md").rename(project / "README.txt")
    after = capture_tree(project, [])
    assert tree_checksum(before) != tree_checksum(after)


def test_is_excluded_matches_components_and_globs() -> None:
    patterns = ["node_modules", "*.pyc", "build/*"]
    assert is_excluded("node_modules/pkg/index.js", patterns)
    assert is_excluded("src/node_modules", patterns)
    assert is_excluded("src/__cache__/mod.pyc", patterns)
    assert is_excluded("build/out.txt", patterns)
    assert not is_excluded("src/app.py", patterns)


def test_iter_tree_prunes_excluded_dirs(project: Path) -> None:
    write_files(project, {"logs/run.log": "x", "node_modules/a/b.js": "y"})
    rels = list(iter_tree(project, ["logs", "node_modules"]))
    assert "logs/run.log" not in rels
    assert not any(r.startswith("node_modules/") for r in rels)
    assert "src/util/helpers.py" in rels


def test_iter_tree_skips_symlinks(project: Path) -> None:
    """Linked files and directories are never captured, even when cyclic."""
    try:
        os.symlink(project / "README.md", project / "link.md")
        os.symlink(project, project / "src" / "loop", target_is_directory=True)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported on this platform")

    rels = list(iter_tree(project, []))
    assert "link.md" not in rels
    assert not any(r.startswith("src/loop") for r in rels)
    assert "README.md" in rels


def test_diff_then_apply_reproduces_new_tree(project: Path) -> None:
    old = capture_tree(project, [])
    (project / "README.md").write_text("# changed\n", encoding="utf-8")
    (project / "src/app.py").unlink()
    write_files(project, {"docs/new.md": "fresh"})
    new = capture_tree(project, [])

    changes = diff_trees(old, new)

    assert changes["README.md"].op == "modified"
    assert changes["README.md"].previous_checksum == old["README.md"].checksum
    assert changes["src/app.py"].op == "deleted"
    assert changes["docs/new.md"].op == "added"
    assert "data/blob.bin" not in changes
    assert apply_changes(old, changes) == new


def test_capture_tree_stops_when_cancelled(project: Path) -> None:
    cancelled = threading.Event()
    cancelled.set()
    with pytest.raises(OperationCancelled):
        capture_tree(project, [], cancelled)

    assert len(capture_tree(project, [], threading.Event())) == 4
