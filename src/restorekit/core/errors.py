"""Exception hierarchy for restore points and the command log.

Every error carries a machine-readable ``reason`` plus whatever identifiers
are needed to diagnose or manually recover (command id/type, restore point
id). The core never retries and never hides these; they always reach the
immediate caller.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import Any


class ExecutionReason(StrEnum):
    NO_EXECUTOR = "no_executor"
    FAILED = "failed"
    TIMEOUT = "timeout"


class UndoReason(StrEnum):
    NOT_FOUND = "not_found"
    WRONG_STATE = "wrong_state"
    NOT_UNDOABLE = "not_undoable"
    FAILED = "failed"


class RedoReason(StrEnum):
    NOTHING_TO_REDO = "nothing_to_redo"
    INVALIDATED = "invalidated"
    FAILED = "failed"


class RestoreReason(StrEnum):
    NOT_FOUND = "not_found"
    CHAIN_BROKEN = "chain_broken"
    IO_ERROR = "io_error"
    TIMEOUT = "timeout"
    HAS_DEPENDENTS = "has_dependents"


class OperationCancelled(Exception):
    """Internal signal: a blocking worker noticed its caller timed out.

    Never escapes the managers; callers see ``RestoreError(TIMEOUT)``.
    """


class RestoreKitError(Exception):
    """Base class for every error raised by restorekit.

    Parameters
    ----------
    message:
        Human-readable description.
    reason:
        Optional reason code (one of the ``*Reason`` enums).
    command_id, command_type, restore_point_id:
        Identifiers of the entities involved, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: StrEnum | None = None,
        command_id: str | None = None,
        command_type: str | None = None,
        restore_point_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.command_id = command_id
        self.command_type = command_type
        self.restore_point_id = restore_point_id

    def context(self) -> dict[str, Any]:
        """Return a JSON-safe mapping of the error and its identifiers."""
        out: dict[str, Any] = {"error": type(self).__name__, "message": self.message}
        if self.reason is not None:
            out["reason"] = str(self.reason)
        for key in ("command_id", "command_type", "restore_point_id"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out

    def __str__(self) -> str:
        if self.reason is None:
            return self.message
        return f"[{self.reason}] {self.message}"


class ValidationError(RestoreKitError):
    """The executor rejected the parameters; nothing was mutated."""


class ExecutionError(RestoreKitError):
    """No executor is registered, or the executor raised / timed out."""


class UndoError(RestoreKitError):
    """A command could not be undone."""


class RedoError(RestoreKitError):
    """There is no redo slot, or it was invalidated by a newer command."""


class RestoreError(RestoreKitError):
    """A restore point could not be found, reconstructed, applied or deleted."""


class BatchError(RestoreKitError):
    """A batch item failed; prior batch items were rolled back.

    The original exception is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        failed_index: int,
        command_type: str | None = None,
        command_id: str | None = None,
        rolled_back: Sequence[str] = (),
    ) -> None:
        super().__init__(message, command_id=command_id, command_type=command_type)
        self.failed_index = failed_index
        self.rolled_back: tuple[str, ...] = tuple(rolled_back)

    def context(self) -> dict[str, Any]:
        out = super().context()
        out["failed_index"] = self.failed_index
        out["rolled_back"] = list(self.rolled_back)
        return out


class CompensationError(BatchError):
    """Rolling back a failed batch did not fully succeed.

    ``unrecoverable`` lists the ids of commands whose effects are still
    applied; those need manual recovery.
    """

    def __init__(
        self,
        message: str,
        *,
        failed_index: int,
        unrecoverable: Sequence[str],
        command_type: str | None = None,
        command_id: str | None = None,
        rolled_back: Sequence[str] = (),
    ) -> None:
        super().__init__(
            message,
            failed_index=failed_index,
            command_type=command_type,
            command_id=command_id,
            rolled_back=rolled_back,
        )
        self.unrecoverable: tuple[str, ...] = tuple(unrecoverable)

    def context(self) -> dict[str, Any]:
        out = super().context()
        out["unrecoverable"] = list(self.unrecoverable)
        return out


__all__ = [
    "BatchError",
    "CompensationError",
    "ExecutionError",
    "ExecutionReason",
    "OperationCancelled",
    "RedoError",
    "RedoReason",
    "RestoreError",
    "RestoreKitError",
    "RestoreReason",
    "UndoError",
    "UndoReason",
    "ValidationError",
]
