"""
Restore point contracts: metadata, captured file entries and delta changes.

This module defines the records persisted by the snapshot/delta store:

- :class:`RestorePoint`: immutable metadata, written uncompressed to
  ``metadata/<id>.json`` so listing never touches the heavy payloads.
- :class:`FileEntry`: one captured file (base64 content + checksum).
- :class:`DeltaChange`: one changed path inside a delta.
- :class:`Snapshot` / :class:`Delta`: metadata plus payload, as loaded from
  ``snapshots/<id>.json.gz`` and ``deltas/<id>.json.gz``.

Design Notes
------------
- **Immutability**: restore points never change after creation; models are
  ``frozen``.
- **Binary safety**: file bytes are carried as base64 strings so the gzip'd
  JSON payload round-trips arbitrary content.
"""

from __future__ import annotations

import base64
from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --------------------------------------------------------------------------- #
# Enumerations
# --------------------------------------------------------------------------- #


class RestorePointType(StrEnum):
    """Why a restore point was taken."""

    MANUAL = "manual"
    AUTO_PHASE = "auto_phase"
    AUTO_CHECKPOINT = "auto_checkpoint"
    PRE_OPERATION = "pre_operation"
    POST_OPERATION = "post_operation"


ChangeOp = Literal["added", "modified", "deleted"]


# --------------------------------------------------------------------------- #
# Metadata
# --------------------------------------------------------------------------- #


class RestorePoint(BaseModel):
    """
    Metadata for a snapshot or delta.

    Parameters
    ----------
    id:
        Opaque unique identifier (uuid4 hex).
    sequence:
        Monotonic creation counter; breaks ties between equal timestamps.
    is_snapshot:
        True for full captures; False for deltas.
    parent_snapshot_id:
        For deltas, the snapshot at the root of the chain.
    base_id:
        For deltas, the restore point this delta was diffed against (a
        snapshot or an earlier delta of the same chain).
    size:
        Size in bytes of the compressed payload on disk.
    checksum:
        Aggregate checksum of the *full* file tree at creation time, so
        restoring any point can be verified against it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: RestorePointType
    description: str = ""
    timestamp: datetime
    sequence: int = Field(ge=0)
    phase: str = "development"
    tags: list[str] = Field(default_factory=list)
    is_snapshot: bool
    parent_snapshot_id: str | None = None
    base_id: str | None = None
    size: int = Field(default=0, ge=0)
    checksum: str
    file_count: int = Field(default=0, ge=0)
    total_bytes: int = Field(default=0, ge=0)
    files_changed: int | None = None
    version: str = ""

    @model_validator(mode="after")
    def _delta_has_parents(self) -> RestorePoint:
        """Deltas must point at their chain; snapshots must not."""
        if self.is_snapshot and (self.parent_snapshot_id or self.base_id):
            raise ValueError("a snapshot cannot reference a parent")
        if not self.is_snapshot and not (self.parent_snapshot_id and self.base_id):
            raise ValueError("a delta requires parent_snapshot_id and base_id")
        return self

    @property
    def is_delta(self) -> bool:
        return not self.is_snapshot

    def sort_key(self) -> tuple[datetime, int]:
        """Chronological ordering key."""
        return (self.timestamp, self.sequence)


# --------------------------------------------------------------------------- #
# Payload records
# --------------------------------------------------------------------------- #


class FileEntry(BaseModel):
    """One captured file."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(description="Base64-encoded file bytes")
    checksum: str
    size: int = Field(ge=0)

    @classmethod
    def from_bytes(cls, data: bytes, checksum: str) -> FileEntry:
        return cls(content=base64.b64encode(data).decode("ascii"), checksum=checksum, size=len(data))

    def data(self) -> bytes:
        """Return the decoded file bytes."""
        return base64.b64decode(self.content)


class DeltaChange(BaseModel):
    """A single path change recorded in a delta."""

    model_config = ConfigDict(frozen=True)

    op: ChangeOp
    content: str | None = None
    checksum: str | None = None
    previous_checksum: str | None = None

    @model_validator(mode="after")
    def _content_matches_op(self) -> DeltaChange:
        if self.op == "deleted":
            if self.content is not None:
                raise ValueError("a deleted change carries no content")
        elif self.content is None or self.checksum is None:
            raise ValueError(f"an {self.op} change requires content and checksum")
        return self

    def to_entry(self) -> FileEntry:
        """Return the new file state for an added/modified change."""
        if self.content is None or self.checksum is None:
            raise ValueError("deleted changes have no file entry")
        return FileEntry(
            content=self.content,
            checksum=self.checksum,
            size=len(base64.b64decode(self.content)),
        )


class Snapshot(BaseModel):
    """A full capture: metadata plus every file."""

    meta: RestorePoint
    files: dict[str, FileEntry] = Field(default_factory=dict)


class Delta(BaseModel):
    """An incremental capture: metadata plus changed paths only."""

    meta: RestorePoint
    changes: dict[str, DeltaChange] = Field(default_factory=dict)

    @property
    def parent_snapshot_id(self) -> str:
        # Guaranteed by RestorePoint validation for deltas.
        return self.meta.parent_snapshot_id or ""

    @property
    def base_id(self) -> str:
        return self.meta.base_id or ""


# --------------------------------------------------------------------------- #
# Queries and reports
# --------------------------------------------------------------------------- #


class RestorePointFilter(BaseModel):
    """Optional filters for :meth:`RestorePointManager.list_restore_points`."""

    type: RestorePointType | None = None
    phase: str | None = None
    tag: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    snapshots_only: bool = False

    def matches(self, point: RestorePoint) -> bool:
        if self.type is not None and point.type != self.type:
            return False
        if self.phase is not None and point.phase != self.phase:
            return False
        if self.tag is not None and self.tag not in point.tags:
            return False
        if self.since is not None and point.timestamp < self.since:
            return False
        if self.until is not None and point.timestamp > self.until:
            return False
        return not (self.snapshots_only and not point.is_snapshot)


class RestoreStatistics(BaseModel):
    """Aggregate view over the store, computed from metadata only."""

    total_restore_points: int = 0
    snapshots: int = 0
    deltas: int = 0
    total_size: int = 0
    oldest_point: datetime | None = None
    newest_point: datetime | None = None


__all__ = [
    "ChangeOp",
    "Delta",
    "DeltaChange",
    "FileEntry",
    "RestorePoint",
    "RestorePointFilter",
    "RestorePointType",
    "RestoreStatistics",
    "Snapshot",
]
