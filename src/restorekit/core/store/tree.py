"""
File-tree model: traversal, checksums, diffs.

A working tree is modelled as a flat map ``relative posix path -> FileEntry``.
Directories are implicit; empty directories are not captured.

Traversal rules
---------------
- Exclude patterns are ``fnmatch`` globs tested against every path component
  and against the full relative path (``"logs"``, ``"*.pyc"``, ``"build/*"``).
- Symbolic links are never followed nor captured. This keeps the path set
  acyclic no matter how the tree is wired.
"""

from __future__ import annotations

import hashlib
import os
import threading
from collections.abc import Iterable, Iterator, Mapping
from fnmatch import fnmatch
from pathlib import Path

from restorekit.core.contracts.restore_point import DeltaChange, FileEntry
from restorekit.core.errors import OperationCancelled
from restorekit.core.settings import get_logger

logger = get_logger(__name__)

FileMap = dict[str, FileEntry]


def file_checksum(data: bytes) -> str:
    """Return the hex SHA-256 of ``data``."""
    return hashlib.sha256(data).hexdigest()


def tree_checksum(files: Mapping[str, FileEntry]) -> str:
    """Aggregate checksum over paths and per-file checksums (order independent)."""
    digest = hashlib.sha256()
    for rel in sorted(files):
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        digest.update(files[rel].checksum.encode("ascii"))
        digest.update(b"\n")
    return digest.hexdigest()


def is_excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    """Return True if ``rel_path`` (posix, relative) matches any exclude pattern."""
    parts = rel_path.split("/")
    for pattern in patterns:
        if fnmatch(rel_path, pattern):
            return True
        if any(fnmatch(part, pattern) for part in parts):
            return True
    return False


def iter_tree(root: Path, patterns: Iterable[str]) -> Iterator[str]:
    """Yield relative posix paths of regular files under ``root``, sorted per directory."""
    pats = tuple(patterns)
    root = Path(root)
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        base = Path(dirpath)
        rel_dir = base.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        # Prune in place so os.walk never descends into excluded or linked dirs.
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not (base / d).is_symlink() and not is_excluded(prefix + d, pats)
        )
        for name in sorted(filenames):
            rel = prefix + name
            full = base / name
            if full.is_symlink() or not full.is_file():
                continue
            if is_excluded(rel, pats):
                continue
            yield rel


def capture_tree(
    root: Path, patterns: Iterable[str], cancelled: threading.Event | None = None
) -> FileMap:
    """Read every non-excluded file under ``root`` into a :data:`FileMap`.

    Raises :class:`OperationCancelled` before the next file once ``cancelled``
    is set.
    """
    files: FileMap = {}
    root = Path(root)
    for rel in iter_tree(root, patterns):
        if cancelled is not None and cancelled.is_set():
            raise OperationCancelled(rel)
        try:
            data = (root / rel).read_bytes()
        except FileNotFoundError:
            # Vanished between listing and reading; the next capture sees the truth.
            logger.warning("File disappeared during capture: %s", rel)
            continue
        files[rel] = FileEntry.from_bytes(data, file_checksum(data))
    return files


def diff_trees(old: Mapping[str, FileEntry], new: Mapping[str, FileEntry]) -> dict[str, DeltaChange]:
    """Return the changes that turn ``old`` into ``new``."""
    changes: dict[str, DeltaChange] = {}
    for rel, entry in new.items():
        before = old.get(rel)
        if before is None:
            changes[rel] = DeltaChange(op="added", content=entry.content, checksum=entry.checksum)
        elif before.checksum != entry.checksum:
            changes[rel] = DeltaChange(
                op="modified",
                content=entry.content,
                checksum=entry.checksum,
                previous_checksum=before.checksum,
            )
    for rel, entry in old.items():
        if rel not in new:
            changes[rel] = DeltaChange(op="deleted", previous_checksum=entry.checksum)
    return changes


def apply_changes(files: Mapping[str, FileEntry], changes: Mapping[str, DeltaChange]) -> FileMap:
    """Return a new map with ``changes`` applied on top of ``files``."""
    out: FileMap = dict(files)
    for rel, change in changes.items():
        if change.op == "deleted":
            out.pop(rel, None)
        else:
            out[rel] = change.to_entry()
    return out


def tree_stats(files: Mapping[str, FileEntry]) -> tuple[int, int, str]:
    """Return ``(file_count, total_bytes, aggregate_checksum)``."""
    return len(files), sum(f.size for f in files.values()), tree_checksum(files)


__all__ = [
    "FileMap",
    "apply_changes",
    "capture_tree",
    "diff_trees",
    "file_checksum",
    "is_excluded",
    "iter_tree",
    "tree_checksum",
    "tree_stats",
]
