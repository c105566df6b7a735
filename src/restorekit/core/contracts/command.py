"""
Command contracts: the logged unit of work and rollback reports.

- :class:`Command`: one entry of the totally-ordered command log.
- :class:`BatchItem`: one request inside :meth:`CommandManager.execute_batch`.
- :class:`RollbackReport`: outcome of undo-based and restore-point rollbacks.
- :class:`CommandStatistics`: aggregate view over the in-memory history.

State machine
-------------
``pending → executing → {completed, failed}``; ``completed ⇄ undone``.
``failed`` is terminal. ``params`` and ``result`` are opaque to the core and
must be JSON-serializable for the history log to persist them.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class CommandStatus(StrEnum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    UNDONE = "undone"


#: Allowed status transitions, enforced by :meth:`Command.transition`.
TRANSITIONS: dict[CommandStatus, frozenset[CommandStatus]] = {
    CommandStatus.PENDING: frozenset({CommandStatus.EXECUTING}),
    CommandStatus.EXECUTING: frozenset({CommandStatus.COMPLETED, CommandStatus.FAILED}),
    CommandStatus.COMPLETED: frozenset({CommandStatus.UNDONE}),
    CommandStatus.UNDONE: frozenset({CommandStatus.COMPLETED}),
    CommandStatus.FAILED: frozenset(),
}

#: Type string of the synthetic entry appended by ``rollback_to_restore_point``.
RESTORE_MARKER_TYPE = "rollback.restore_point"


class Command(BaseModel):
    """A single logged, potentially undoable unit of work."""

    id: str
    sequence: int = Field(ge=0)
    type: str
    timestamp: datetime
    description: str = ""
    params: Any = None
    result: Any = None
    error: str | None = None
    status: CommandStatus = CommandStatus.PENDING
    undoable: bool = True
    restore_point_id: str | None = None
    duration_ms: float | None = None
    phase: str | None = None
    tags: list[str] = Field(default_factory=list)
    batch_id: str | None = None

    def transition(self, target: CommandStatus) -> None:
        """Move to ``target`` or raise ``ValueError`` if the move is illegal."""
        if target not in TRANSITIONS[self.status]:
            raise ValueError(f"illegal command transition {self.status} -> {target}")
        if target is CommandStatus.UNDONE and not self.undoable:
            raise ValueError("a non-undoable command can never be undone")
        self.status = target

    @property
    def is_marker(self) -> bool:
        return self.type == RESTORE_MARKER_TYPE


class BatchItem(BaseModel):
    """One command request inside a batch."""

    type: str
    params: Any = None
    description: str | None = None


class RollbackFailure(BaseModel):
    command_id: str
    command_type: str
    error: str


class RollbackReport(BaseModel):
    """Outcome of a rollback.

    ``success`` is False as soon as one undo failed; processing stops at that
    command so nothing earlier is touched out of order.
    """

    success: bool
    commands_undone: int = 0
    undone_ids: list[str] = Field(default_factory=list)
    failures: list[RollbackFailure] = Field(default_factory=list)
    restored_to_point: str | None = None
    duration_ms: float = 0.0


class CommandStatistics(BaseModel):
    total_commands: int = 0
    completed_commands: int = 0
    failed_commands: int = 0
    undone_commands: int = 0
    average_duration_ms: float = 0.0
    commands_by_type: dict[str, int] = Field(default_factory=dict)


__all__ = [
    "RESTORE_MARKER_TYPE",
    "TRANSITIONS",
    "BatchItem",
    "Command",
    "CommandStatistics",
    "CommandStatus",
    "RollbackFailure",
    "RollbackReport",
]
