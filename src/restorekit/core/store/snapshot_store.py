"""Disk-backed store for snapshots, deltas and their metadata.

Layout under ``base_dir``
-------------------------
- ``snapshots/<id>.json.gz``  full capture (gzip'd JSON)
- ``deltas/<id>.json.gz``     changed-path map + parent ids (gzip'd JSON)
- ``metadata/<id>.json``      uncompressed :class:`RestorePoint`

Commit protocol
---------------
The payload is written first and the metadata file last; a restore point
exists once its metadata exists. Deletion runs in the opposite order. Every
write goes through a temp file plus ``os.replace`` so a crash never leaves a
half-written file under its final name.

The store is synchronous. The restore point manager runs it through
``asyncio.to_thread`` and serializes mutations with the working-tree lock.
"""

from __future__ import annotations

import gzip
import json
import os
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from restorekit.core.contracts.restore_point import (
    Delta,
    DeltaChange,
    FileEntry,
    RestorePoint,
    RestorePointType,
    Snapshot,
)
from restorekit.core.errors import OperationCancelled
from restorekit.core.settings import get_logger
from restorekit.core.store.tree import FileMap, apply_changes, capture_tree, diff_trees, tree_stats

logger = get_logger(__name__)

_COMPRESS_LEVEL = 6


@dataclass(frozen=True, slots=True)
class CaptureInfo:
    """Descriptive fields shared by snapshots and deltas at capture time."""

    id: str
    type: RestorePointType
    timestamp: datetime
    sequence: int
    description: str = ""
    phase: str = "development"
    tags: tuple[str, ...] = field(default_factory=tuple)
    version: str = ""


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a sibling temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with tmp.open("wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


class SnapshotStore:
    """Persist and load restore point payloads and metadata."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.snapshots_dir = self.base_dir / "snapshots"
        self.deltas_dir = self.base_dir / "deltas"
        self.metadata_dir = self.base_dir / "metadata"
        for d in (self.snapshots_dir, self.deltas_dir, self.metadata_dir):
            d.mkdir(parents=True, exist_ok=True)

    # ------------------------------- Paths ----------------------------------

    def snapshot_path(self, point_id: str) -> Path:
        return self.snapshots_dir / f"{point_id}.json.gz"

    def delta_path(self, point_id: str) -> Path:
        return self.deltas_dir / f"{point_id}.json.gz"

    def metadata_path(self, point_id: str) -> Path:
        return self.metadata_dir / f"{point_id}.json"

    def payload_path(self, point: RestorePoint) -> Path:
        return self.snapshot_path(point.id) if point.is_snapshot else self.delta_path(point.id)

    # ------------------------------- Capture --------------------------------

    def capture_snapshot(
        self,
        root: Path,
        exclude: Iterable[str],
        info: CaptureInfo,
        cancelled: threading.Event | None = None,
    ) -> Snapshot:
        """Walk ``root``, compress every file and persist a full snapshot."""
        files = capture_tree(root, exclude, cancelled)
        count, total, checksum = tree_stats(files)
        meta = RestorePoint(
            id=info.id,
            type=info.type,
            description=info.description,
            timestamp=info.timestamp,
            sequence=info.sequence,
            phase=info.phase,
            tags=list(info.tags),
            is_snapshot=True,
            checksum=checksum,
            file_count=count,
            total_bytes=total,
            version=info.version,
        )
        payload = {
            "id": meta.id,
            "files": {rel: entry.model_dump() for rel, entry in files.items()},
        }
        size = self._write_payload(self.snapshot_path(meta.id), payload)
        self._abort_if_cancelled(self.snapshot_path(meta.id), cancelled)
        meta = meta.model_copy(update={"size": size})
        self._write_metadata(meta)
        return Snapshot(meta=meta, files=files)

    def capture_delta(
        self,
        root: Path,
        exclude: Iterable[str],
        info: CaptureInfo,
        *,
        base: RestorePoint,
        base_files: FileMap,
        cancelled: threading.Event | None = None,
    ) -> tuple[Delta, FileMap]:
        """Diff ``root`` against ``base_files`` and persist only the changes.

        Returns the stored delta and the full map it reconstructs to.
        """
        current = capture_tree(root, exclude, cancelled)
        changes = diff_trees(base_files, current)
        count, total, checksum = tree_stats(current)
        parent_snapshot_id = base.id if base.is_snapshot else base.parent_snapshot_id
        meta = RestorePoint(
            id=info.id,
            type=info.type,
            description=info.description,
            timestamp=info.timestamp,
            sequence=info.sequence,
            phase=info.phase,
            tags=list(info.tags),
            is_snapshot=False,
            parent_snapshot_id=parent_snapshot_id,
            base_id=base.id,
            checksum=checksum,
            file_count=count,
            total_bytes=total,
            files_changed=len(changes),
            version=info.version,
        )
        payload = {
            "id": meta.id,
            "parent_snapshot_id": parent_snapshot_id,
            "base_id": base.id,
            "changes": {rel: change.model_dump() for rel, change in changes.items()},
        }
        size = self._write_payload(self.delta_path(meta.id), payload)
        self._abort_if_cancelled(self.delta_path(meta.id), cancelled)
        meta = meta.model_copy(update={"size": size})
        self._write_metadata(meta)
        return Delta(meta=meta, changes=changes), current

    # ------------------------------- Load -----------------------------------

    def load_metadata(self, point_id: str) -> RestorePoint | None:
        """Return metadata for ``point_id`` or None if it does not exist."""
        path = self.metadata_path(point_id)
        if not path.exists():
            return None
        return RestorePoint.model_validate_json(path.read_text(encoding="utf-8"))

    def list_metadata(self) -> list[RestorePoint]:
        """Return all metadata records in chronological order."""
        points: list[RestorePoint] = []
        for path in self.metadata_dir.glob("*.json"):
            try:
                points.append(RestorePoint.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, PydanticValidationError) as exc:
                # Unreadable metadata is not listed; its payload stays untouched on disk.
                logger.warning("Skipping unreadable metadata %s: %s", path.name, exc)
        points.sort(key=RestorePoint.sort_key)
        return points

    def load_snapshot(self, meta: RestorePoint) -> Snapshot:
        """Decompress a snapshot payload. Raises ``FileNotFoundError`` if missing."""
        payload = self._read_payload(self.snapshot_path(meta.id))
        files = {rel: FileEntry.model_validate(raw) for rel, raw in payload["files"].items()}
        return Snapshot(meta=meta, files=files)

    def load_delta(self, meta: RestorePoint) -> Delta:
        """Decompress a delta payload. Raises ``FileNotFoundError`` if missing."""
        payload = self._read_payload(self.delta_path(meta.id))
        changes = {rel: DeltaChange.model_validate(raw) for rel, raw in payload["changes"].items()}
        return Delta(meta=meta, changes=changes)

    def reconstruct(self, chain: list[RestorePoint]) -> FileMap:
        """Rebuild a full map from ``chain`` (snapshot first, deltas in order)."""
        if not chain or not chain[0].is_snapshot:
            raise ValueError("a chain must start with a snapshot")
        files: FileMap = dict(self.load_snapshot(chain[0]).files)
        for meta in chain[1:]:
            files = apply_changes(files, self.load_delta(meta).changes)
        return files

    # ------------------------------- Delete ---------------------------------

    def delete(self, meta: RestorePoint) -> None:
        """Remove metadata first, then the payload."""
        self.metadata_path(meta.id).unlink(missing_ok=True)
        self.payload_path(meta).unlink(missing_ok=True)

    # ------------------------------- Internals ------------------------------

    @staticmethod
    def _abort_if_cancelled(payload: Path, cancelled: threading.Event | None) -> None:
        """Drop an uncommitted payload if the caller stopped waiting."""
        if cancelled is not None and cancelled.is_set():
            payload.unlink(missing_ok=True)
            raise OperationCancelled(payload.name)

    def _write_payload(self, path: Path, payload: dict[str, Any]) -> int:
        raw = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        compressed = gzip.compress(raw, compresslevel=_COMPRESS_LEVEL)
        _atomic_write(path, compressed)
        return len(compressed)

    def _read_payload(self, path: Path) -> dict[str, Any]:
        with gzip.open(path, "rb") as fh:
            data: dict[str, Any] = json.loads(fh.read().decode("utf-8"))
        return data

    def _write_metadata(self, meta: RestorePoint) -> None:
        text = meta.model_dump_json(indent=2) + "\n"
        _atomic_write(self.metadata_path(meta.id), text.encode("utf-8"))


__all__ = ["CaptureInfo", "SnapshotStore"]
