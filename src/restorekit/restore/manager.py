"""
Restore Point Manager: create, restore, list, delete and clean up restore points.

Snapshot vs delta
-----------------
A new restore point is a full snapshot when any of these hold:

- the caller passes ``force_snapshot=True``;
- the point type is ``auto_phase`` (phase boundaries always get a full copy);
- there is no previous restore point, or its chain cannot be reconstructed;
- ``snapshot_interval`` consecutive deltas already follow the last snapshot.

Otherwise it is a delta diffed against the most recent restore point, so a
delta chain always reads ``snapshot → delta → delta → ...`` in creation
order.

Restore discipline
------------------
``restore(id)`` resolves the chain down to its snapshot (``CHAIN_BROKEN`` if a
link is missing), reconstructs the full map, verifies its aggregate checksum,
stages it, and only then swaps it into the working tree. A timeout can only
fire before the swap begins.

Concurrency
-----------
All mutating operations hold the shared :class:`WorkingTreeLock`. Listing and
statistics only read immutable metadata and take no lock.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

from restorekit import __version__
from restorekit.core.contracts.restore_point import (
    RestorePoint,
    RestorePointFilter,
    RestorePointType,
    RestoreStatistics,
)
from restorekit.core.errors import OperationCancelled, RestoreError, RestoreReason
from restorekit.core.locking import WorkingTreeLock
from restorekit.core.settings import Settings, get_logger, load_settings
from restorekit.core.store.snapshot_store import CaptureInfo, SnapshotStore
from restorekit.core.store.tree import FileMap, capture_tree, tree_checksum
from restorekit.restore.swap import STAGING_DIRNAME, TreeSwapper

logger = get_logger(__name__)

T = TypeVar("T")


class RestorePointManager:
    """
    Owns the snapshot/delta store of one working tree.

    Parameters
    ----------
    project_root:
        Working tree to capture and restore. Defaults to ``settings.project_root``.
    store_dir:
        Store location. Defaults to ``settings.resolved_store_dir()``. When it
        lives inside the working tree it is excluded from capture automatically.
    retention_days, snapshot_interval, exclude, auto_cleanup:
        Override the matching settings.
    lock:
        Mutex shared with the command manager. A fresh one is created if omitted.
    """

    def __init__(
        self,
        project_root: Path | str | None = None,
        store_dir: Path | str | None = None,
        *,
        retention_days: int | None = None,
        snapshot_interval: int | None = None,
        exclude: Iterable[str] | None = None,
        auto_cleanup: bool | None = None,
        lock: WorkingTreeLock | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or load_settings()
        self.root = Path(project_root if project_root is not None else cfg.project_root).resolve()
        if store_dir is not None:
            resolved_store = Path(store_dir).resolve()
        elif project_root is not None and cfg.store_dir is None:
            resolved_store = self.root / ".restore"
        else:
            resolved_store = cfg.resolved_store_dir().resolve()
        self.store = SnapshotStore(resolved_store)
        self.retention_days = retention_days if retention_days is not None else cfg.retention_days
        self.snapshot_interval = max(
            1, snapshot_interval if snapshot_interval is not None else cfg.snapshot_interval
        )
        self.auto_cleanup = auto_cleanup if auto_cleanup is not None else cfg.auto_cleanup
        self.exclude: tuple[str, ...] = self._build_excludes(
            exclude if exclude is not None else cfg.exclude
        )
        self.lock = lock or WorkingTreeLock()
        self.swapper = TreeSwapper(self.root, self.exclude)
        # (restore point id, full file map) of the newest point we created.
        self._latest: tuple[str, FileMap] | None = None

    def _build_excludes(self, patterns: Iterable[str]) -> tuple[str, ...]:
        out = list(patterns)
        out.append(STAGING_DIRNAME)
        store_dir = self.store.base_dir
        if self.root == store_dir or self.root in store_dir.parents:
            out.append(store_dir.relative_to(self.root).as_posix())
        return tuple(dict.fromkeys(out))

    # ------------------------------- Create ---------------------------------

    async def create_restore_point(
        self,
        type: RestorePointType = RestorePointType.MANUAL,
        description: str = "",
        *,
        phase: str | None = None,
        tags: Iterable[str] | None = None,
        force_snapshot: bool = False,
        timeout: float | None = None,
    ) -> RestorePoint:
        """Capture the working tree as a snapshot or delta and persist it.

        Raises
        ------
        RestoreError
            ``IO_ERROR`` if the tree or store cannot be read/written,
            ``TIMEOUT`` if ``timeout`` expired before the point was committed.
        """
        async with self.lock:
            started = time.perf_counter()
            point = await self._in_thread(
                self._create_blocking,
                RestorePointType(type),
                description,
                phase,
                tuple(tags or ()),
                force_snapshot,
                timeout=timeout,
                what="create restore point",
            )
            elapsed = (time.perf_counter() - started) * 1000
            kind = "snapshot" if point.is_snapshot else "delta"
            logger.info("Restore point created: %s (%s, %.0fms)", point.id, kind, elapsed)
            if self.auto_cleanup:
                await self.cleanup()
            return point

    def _create_blocking(
        self,
        type: RestorePointType,
        description: str,
        phase: str | None,
        tags: tuple[str, ...],
        force_snapshot: bool,
        cancelled: threading.Event,
    ) -> RestorePoint:
        points = self.store.list_metadata()
        newest = points[-1] if points else None

        timestamp = datetime.now(UTC)
        if newest is not None and timestamp < newest.timestamp:
            timestamp = newest.timestamp
        info = CaptureInfo(
            id=uuid.uuid4().hex,
            type=type,
            timestamp=timestamp,
            sequence=max((p.sequence for p in points), default=-1) + 1,
            description=description,
            phase=phase or "development",
            tags=tags,
            version=__version__,
        )

        base_files: FileMap | None = None
        use_snapshot = (
            force_snapshot
            or newest is None
            or type is RestorePointType.AUTO_PHASE
            or self._deltas_since_snapshot(points) >= self.snapshot_interval
        )
        if not use_snapshot and newest is not None:
            try:
                base_files = self._files_for(newest, points)
            except RestoreError as exc:
                logger.warning("Cannot diff against %s (%s); taking a full snapshot", newest.id, exc)

        try:
            if base_files is None or newest is None:
                snapshot = self.store.capture_snapshot(self.root, self.exclude, info, cancelled)
                meta, files = snapshot.meta, snapshot.files
            else:
                delta, files = self.store.capture_delta(
                    self.root,
                    self.exclude,
                    info,
                    base=newest,
                    base_files=base_files,
                    cancelled=cancelled,
                )
                meta = delta.meta
        except OSError as exc:
            raise RestoreError(
                f"Could not capture restore point: {exc}",
                reason=RestoreReason.IO_ERROR,
                restore_point_id=info.id,
            ) from exc

        self._latest = (meta.id, files)
        return meta

    @staticmethod
    def _deltas_since_snapshot(points: list[RestorePoint]) -> int:
        """Count consecutive deltas at the newest end of ``points``."""
        run = 0
        for point in reversed(points):
            if point.is_snapshot:
                break
            run += 1
        return run

    def _files_for(self, point: RestorePoint, points: list[RestorePoint]) -> FileMap:
        if self._latest is not None and self._latest[0] == point.id:
            return self._latest[1]
        return self._reconstruct(point.id, {p.id: p for p in points})

    # ------------------------------- Restore --------------------------------

    async def restore(self, point_id: str, *, timeout: float | None = None) -> RestorePoint:
        """Reconstruct ``point_id`` and atomically swap it into the working tree.

        Raises
        ------
        RestoreError
            ``NOT_FOUND``, ``CHAIN_BROKEN``, ``IO_ERROR`` (tree left untouched)
            or ``TIMEOUT`` (raised before the swap starts).
        """
        async with self.lock:
            started = time.perf_counter()
            meta, staged, targets = await self._in_thread(
                self._stage_blocking,
                point_id,
                timeout=timeout,
                what=f"restore {point_id}",
                on_abandon=lambda late: self.swapper.discard(late[1]),
            )
            try:
                await asyncio.to_thread(self.swapper.swap, staged, targets)
            except OSError as exc:
                raise RestoreError(
                    f"Swap into working tree failed, tree left unchanged: {exc}",
                    reason=RestoreReason.IO_ERROR,
                    restore_point_id=point_id,
                ) from exc
            elapsed = (time.perf_counter() - started) * 1000
            logger.info("Restored to point %s (%d files, %.0fms)", point_id, len(targets), elapsed)
            return meta

    def _stage_blocking(
        self, point_id: str, cancelled: threading.Event
    ) -> tuple[RestorePoint, Path, list[str]]:
        index = {p.id: p for p in self.store.list_metadata()}
        files = self._reconstruct(point_id, index)
        meta = index[point_id]
        if tree_checksum(files) != meta.checksum:
            raise RestoreError(
                f"Reconstructed tree does not match checksum of {point_id}",
                reason=RestoreReason.IO_ERROR,
                restore_point_id=point_id,
            )
        try:
            staged = self.swapper.stage(files, cancelled)
        except OSError as exc:
            raise RestoreError(
                f"Could not stage restore point: {exc}",
                reason=RestoreReason.IO_ERROR,
                restore_point_id=point_id,
            ) from exc
        return meta, staged, sorted(files)

    def resolve_chain(self, point_id: str, index: dict[str, RestorePoint] | None = None) -> list[RestorePoint]:
        """Return ``[snapshot, delta, ..., point]`` for ``point_id``.

        Raises
        ------
        RestoreError
            ``NOT_FOUND`` if the point has no metadata, ``CHAIN_BROKEN`` if any
            ancestor is missing or the chain does not end at its recorded snapshot.
        """
        if index is None:
            index = {p.id: p for p in self.store.list_metadata()}
        target = index.get(point_id)
        if target is None:
            raise RestoreError(
                f"Restore point not found: {point_id}",
                reason=RestoreReason.NOT_FOUND,
                restore_point_id=point_id,
            )
        chain = [target]
        seen = {target.id}
        while not chain[-1].is_snapshot:
            base_id = chain[-1].base_id or ""
            base = index.get(base_id)
            if base is None or base_id in seen:
                raise RestoreError(
                    f"Delta chain of {point_id} is broken at {chain[-1].id} (missing {base_id})",
                    reason=RestoreReason.CHAIN_BROKEN,
                    restore_point_id=point_id,
                )
            seen.add(base_id)
            chain.append(base)
        chain.reverse()
        if target.is_delta and chain[0].id != target.parent_snapshot_id:
            raise RestoreError(
                f"Delta {point_id} does not lead back to snapshot {target.parent_snapshot_id}",
                reason=RestoreReason.CHAIN_BROKEN,
                restore_point_id=point_id,
            )
        return chain

    def _reconstruct(self, point_id: str, index: dict[str, RestorePoint]) -> FileMap:
        chain = self.resolve_chain(point_id, index)
        try:
            return self.store.reconstruct(chain)
        except FileNotFoundError as exc:
            raise RestoreError(
                f"Payload missing while rebuilding {point_id}: {exc.filename}",
                reason=RestoreReason.CHAIN_BROKEN,
                restore_point_id=point_id,
            ) from exc
        except (OSError, EOFError, ValueError, KeyError) as exc:
            raise RestoreError(
                f"Payload unreadable while rebuilding {point_id}: {exc}",
                reason=RestoreReason.IO_ERROR,
                restore_point_id=point_id,
            ) from exc

    async def verify(self, point_id: str) -> bool:
        """Return True if ``point_id`` reconstructs to its recorded checksum."""
        async with self.lock:
            index = {p.id: p for p in self.store.list_metadata()}
            files = await asyncio.to_thread(self._reconstruct, point_id, index)
            return tree_checksum(files) == index[point_id].checksum

    def current_checksum(self) -> str:
        """Aggregate checksum of the live working tree (excludes applied)."""
        return tree_checksum(capture_tree(self.root, self.exclude))

    # ------------------------------- Queries --------------------------------

    def list_restore_points(self, filter: RestorePointFilter | None = None) -> list[RestorePoint]:
        """Return metadata, newest first. Never decompresses payloads."""
        points = self.store.list_metadata()
        if filter is not None:
            points = [p for p in points if filter.matches(p)]
        return list(reversed(points))

    def get_restore_point(self, point_id: str) -> RestorePoint | None:
        return self.store.load_metadata(point_id)

    def get_statistics(self) -> RestoreStatistics:
        points = self.store.list_metadata()
        if not points:
            return RestoreStatistics()
        snapshots = sum(1 for p in points if p.is_snapshot)
        return RestoreStatistics(
            total_restore_points=len(points),
            snapshots=snapshots,
            deltas=len(points) - snapshots,
            total_size=sum(p.size for p in points),
            oldest_point=points[0].timestamp,
            newest_point=points[-1].timestamp,
        )

    def dependents_of(self, point_id: str, points: list[RestorePoint] | None = None) -> list[RestorePoint]:
        """Return every restore point whose chain passes through ``point_id``."""
        if points is None:
            points = self.store.list_metadata()
        closure: set[str] = {point_id}
        out: list[RestorePoint] = []
        # Dependents are always newer than what they depend on.
        for point in points:
            if point.id in closure:
                continue
            if point.base_id in closure or point.parent_snapshot_id in closure:
                closure.add(point.id)
                out.append(point)
        return out

    # ------------------------------- Delete ---------------------------------

    async def delete_restore_point(self, point_id: str, *, cascade: bool = False) -> list[str]:
        """Delete ``point_id`` (and, with ``cascade``, every dependent).

        Returns the deleted ids, leaves first.

        Raises
        ------
        RestoreError
            ``NOT_FOUND`` or ``HAS_DEPENDENTS`` (when dependents exist and
            ``cascade`` is False).
        """
        async with self.lock:
            points = self.store.list_metadata()
            target = next((p for p in points if p.id == point_id), None)
            if target is None:
                raise RestoreError(
                    f"Restore point not found: {point_id}",
                    reason=RestoreReason.NOT_FOUND,
                    restore_point_id=point_id,
                )
            dependents = self.dependents_of(point_id, points)
            if dependents and not cascade:
                raise RestoreError(
                    f"Restore point {point_id} has {len(dependents)} dependent restore point(s); "
                    "pass cascade=True to delete them too",
                    reason=RestoreReason.HAS_DEPENDENTS,
                    restore_point_id=point_id,
                )
            victims = sorted(dependents, key=RestorePoint.sort_key, reverse=True) + [target]
            self._delete_all(victims)
            logger.info("Deleted restore point %s (%d dependents)", point_id, len(dependents))
            return [v.id for v in victims]

    async def cleanup(self, retention_days: int | None = None) -> list[str]:
        """Delete restore points older than the retention window.

        A point is only removed when everything that depends on it is removed
        too, so a retained delta never loses its chain. Deletion runs newest
        first, which removes leaf deltas before the snapshots they hang off.
        """
        days = self.retention_days if retention_days is None else retention_days
        async with self.lock:
            cutoff = datetime.now(UTC) - timedelta(days=days)
            points = self.store.list_metadata()
            expired = {p.id for p in points if p.timestamp < cutoff}
            removable = [
                p
                for p in points
                if p.id in expired and all(d.id in expired for d in self.dependents_of(p.id, points))
            ]
            victims = sorted(removable, key=RestorePoint.sort_key, reverse=True)
            self._delete_all(victims)
            if victims:
                logger.info("Cleanup removed %d restore point(s) older than %d days", len(victims), days)
            return [v.id for v in victims]

    def _delete_all(self, victims: list[RestorePoint]) -> None:
        for victim in victims:
            try:
                self.store.delete(victim)
            except OSError as exc:
                raise RestoreError(
                    f"Could not delete restore point {victim.id}: {exc}",
                    reason=RestoreReason.IO_ERROR,
                    restore_point_id=victim.id,
                ) from exc
            if self._latest is not None and self._latest[0] == victim.id:
                self._latest = None

    # ------------------------------- Internals ------------------------------

    async def _in_thread(
        self,
        fn: Callable[..., T],
        *args: Any,
        timeout: float | None,
        what: str,
        on_abandon: Callable[[T], None] | None = None,
    ) -> T:
        """Run blocking ``fn(*args, cancelled)`` in a worker thread with a timeout.

        On timeout the worker is told to stop and awaited, so it never keeps
        running after the lock is released. A result produced after the
        deadline is handed to ``on_abandon`` and dropped.
        """
        cancelled = threading.Event()
        task = asyncio.ensure_future(asyncio.to_thread(fn, *args, cancelled))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except TimeoutError:
            cancelled.set()
            try:
                late = await task
            except OperationCancelled:
                pass
            else:
                if on_abandon is not None:
                    on_abandon(late)
                else:
                    logger.warning("%s finished after its %ss timeout", what, timeout)
            raise RestoreError(
                f"Timed out after {timeout}s: {what}", reason=RestoreReason.TIMEOUT
            ) from None


__all__ = ["RestorePointManager"]
