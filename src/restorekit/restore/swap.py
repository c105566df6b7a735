"""
Staging and atomic swap of a reconstructed file tree into the working tree.

Restores never write into the live tree directly. A restore happens in two
phases:

1. **Stage**: every target file is written under
   ``<staging_root>/<op-id>/tree`` and verified against its checksum. This
   phase may be cancelled (timeout); the live tree is untouched.
2. **Swap**: live managed files are moved into ``<op-id>/backup`` and the
   staged files are moved into place with ``os.replace``. Any ``OSError``
   undoes the moves already made, so the tree ends up exactly as it was.

Staging lives inside the working tree (and is excluded from capture) so
every ``os.replace`` is a same-filesystem rename.
"""

from __future__ import annotations

import shutil
import threading
import uuid
from collections.abc import Iterable
from pathlib import Path

from restorekit.core.errors import OperationCancelled
from restorekit.core.settings import get_logger
from restorekit.core.store.tree import FileMap, file_checksum, iter_tree

logger = get_logger(__name__)

STAGING_DIRNAME = ".restore-staging"


class TreeSwapper:
    """Stage a :data:`FileMap` and swap it into ``root``."""

    def __init__(self, root: Path, exclude: Iterable[str]) -> None:
        self.root = Path(root)
        self.exclude: tuple[str, ...] = tuple(exclude)
        self.staging_root = self.root / STAGING_DIRNAME

    # ------------------------------- Stage ----------------------------------

    def stage(self, files: FileMap, cancelled: threading.Event | None = None) -> Path:
        """Write ``files`` to a fresh staging directory and return it.

        The staging directory is removed if writing fails or is cancelled.
        """
        op_dir = self.staging_root / uuid.uuid4().hex
        tree = op_dir / "tree"
        tree.mkdir(parents=True)
        try:
            for rel, entry in files.items():
                if cancelled is not None and cancelled.is_set():
                    raise OperationCancelled(rel)
                data = entry.data()
                if file_checksum(data) != entry.checksum:
                    raise OSError(f"checksum mismatch while staging {rel}")
                target = tree / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        except BaseException:
            self.discard(tree)
            raise
        if cancelled is not None and cancelled.is_set():
            self.discard(tree)
            raise OperationCancelled("after staging")
        return tree

    def discard(self, staged: Path) -> None:
        """Remove a staging directory (the parent of ``staged``)."""
        shutil.rmtree(staged.parent, ignore_errors=True)
        self._remove_if_empty(self.staging_root)

    # ------------------------------- Swap -----------------------------------

    def swap(self, staged: Path, target: Iterable[str]) -> None:
        """Replace the managed files of the live tree with the staged ones.

        Raises
        ------
        OSError
            If any move fails. Moves already performed are reverted first.
        """
        op_dir = staged.parent
        backup = op_dir / "backup"
        current = list(iter_tree(self.root, self.exclude))
        moved: list[str] = []
        placed: list[str] = []

        try:
            for rel in current:
                dst = backup / rel
                dst.parent.mkdir(parents=True, exist_ok=True)
                (self.root / rel).replace(dst)
                moved.append(rel)
            self._prune_emptied_dirs(moved)
            for rel in sorted(target):
                dst = self.root / rel
                dst.parent.mkdir(parents=True, exist_ok=True)
                (staged / rel).replace(dst)
                placed.append(rel)
        except OSError:
            self._revert(backup, moved, placed)
            raise

        self.discard(staged)
        logger.debug("Swapped %d files out and %d files in", len(moved), len(placed))

    # ------------------------------- Internals ------------------------------

    def _revert(self, backup: Path, moved: list[str], placed: list[str]) -> None:
        try:
            for rel in reversed(placed):
                (self.root / rel).unlink(missing_ok=True)
            self._prune_emptied_dirs(placed)
            for rel in reversed(moved):
                dst = self.root / rel
                dst.parent.mkdir(parents=True, exist_ok=True)
                (backup / rel).replace(dst)
        except OSError:
            logger.critical(
                "Could not revert a failed swap; original files remain under %s", backup
            )
            raise
        shutil.rmtree(backup.parent, ignore_errors=True)
        self._remove_if_empty(self.staging_root)

    def _prune_emptied_dirs(self, rels: Iterable[str]) -> None:
        """Remove directories left empty by moving ``rels`` out (deepest first)."""
        candidates: set[Path] = set()
        for rel in rels:
            parent = (self.root / rel).parent
            while parent != self.root and self.root in parent.parents:
                candidates.add(parent)
                parent = parent.parent
        for directory in sorted(candidates, key=lambda p: len(p.parts), reverse=True):
            self._remove_if_empty(directory)

    @staticmethod
    def _remove_if_empty(directory: Path) -> None:
        try:
            directory.rmdir()
        except OSError:
            pass


__all__ = ["STAGING_DIRNAME", "TreeSwapper"]
