"""
Command Manager: executes registered commands and makes them reversible.

Every call to :meth:`CommandManager.execute_command` produces a
:class:`Command` record that moves through
``pending → executing → {completed, failed}``. Completed commands whose
executor provides ``undo`` can be undone (``completed → undone``) and redone
(``undone → completed``). Undo/redo is strictly linear:

- the redo stack holds commands undone by :meth:`undo` and the
  ``rollback_to_*`` methods, most recent on top;
- any new forward command (or a restore-point rollback) clears it, and a
  later :meth:`redo` reports ``INVALIDATED``.

History
-------
Outcomes are appended to a :class:`CommandLog` (JSON Lines). On start-up the
log is replayed to rebuild the in-memory window (bounded by ``max_history``),
the sequence counter and the redo stack, so the CLI can undo in one process
and redo in the next.

Concurrency
-----------
Every mutating method holds the :class:`WorkingTreeLock` shared with the
restore point manager for its whole duration.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from restorekit import __version__
from restorekit.commands.executors import (
    CommandExecutor,
    ExecutionContext,
    ExecutorRegistry,
    call_capability,
)
from restorekit.commands.history import CommandLog
from restorekit.core.contracts.command import (
    RESTORE_MARKER_TYPE,
    BatchItem,
    Command,
    CommandStatistics,
    CommandStatus,
    RollbackFailure,
    RollbackReport,
)
from restorekit.core.contracts.restore_point import RestorePointType
from restorekit.core.errors import (
    BatchError,
    CompensationError,
    ExecutionError,
    ExecutionReason,
    RedoError,
    RedoReason,
    RestoreKitError,
    UndoError,
    UndoReason,
    ValidationError,
)
from restorekit.core.settings import Settings, get_logger, load_settings
from restorekit.restore.manager import RestorePointManager

logger = get_logger(__name__)

BatchRequest = BatchItem | Mapping[str, Any]


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _as_utc(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


class CommandManager:
    """
    Ordered, persisted command log with undo, redo, rollback and batches.

    Parameters
    ----------
    restore_points:
        Restore point manager of the same working tree. Its lock is shared.
    registry:
        Executor registry. A fresh, empty one is created if omitted.
    history_path:
        JSON Lines file for the command log. Defaults to
        ``<store_dir>/commands/history.jsonl``; pass ``persist=False`` to keep
        the log in memory only.
    max_history:
        Size of the in-memory window. Defaults to ``settings.max_history``.
    timeout:
        Default timeout (seconds) for executor calls. Defaults to
        ``settings.operation_timeout`` (no timeout when unset).
    """

    def __init__(
        self,
        restore_points: RestorePointManager,
        *,
        registry: ExecutorRegistry | None = None,
        history_path: Path | str | None = None,
        persist: bool = True,
        max_history: int | None = None,
        timeout: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or load_settings()
        self.restore_points = restore_points
        self.registry = registry or ExecutorRegistry()
        self.lock = restore_points.lock
        self.max_history = max(1, max_history if max_history is not None else cfg.max_history)
        self.timeout = timeout if timeout is not None else cfg.operation_timeout

        if not persist:
            log_path: Path | None = None
        elif history_path is not None:
            log_path = Path(history_path)
        else:
            log_path = restore_points.store.base_dir / "commands" / "history.jsonl"
        self.log = CommandLog(log_path)

        self._history: list[Command] = []
        self._by_id: dict[str, Command] = {}
        self._redo: list[str] = []
        self._redo_invalidated = False
        self._next_sequence = 0
        self._last_timestamp: datetime | None = None
        self._replay()

    # ------------------------------- Registry -------------------------------

    def register_executor(self, command_type: str, executor: CommandExecutor) -> None:
        """Register ``executor`` for ``command_type``. Last registration wins."""
        self.registry.register(command_type, executor)

    # ------------------------------- Execute --------------------------------

    async def execute_command(
        self,
        type: str,
        params: Any = None,
        *,
        description: str | None = None,
        create_restore_point: bool = False,
        validate_before: bool = True,
        phase: str | None = None,
        tags: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> Command:
        """Validate, run and log one command.

        Returns the completed :class:`Command`.

        Raises
        ------
        ExecutionError
            ``NO_EXECUTOR`` (nothing logged), ``FAILED`` or ``TIMEOUT`` (the
            command is logged as failed; the executor error is ``__cause__``).
        ValidationError
            The executor's ``validate`` returned False or raised. Nothing is
            mutated or logged.
        RestoreError
            The pre-operation restore point could not be created.
        """
        async with self.lock:
            return await self._execute_locked(
                type,
                params,
                description=description,
                create_restore_point=create_restore_point,
                validate_before=validate_before,
                phase=phase,
                tags=tuple(tags or ()),
                timeout=timeout,
            )

    async def _execute_locked(
        self,
        type: str,
        params: Any,
        *,
        description: str | None,
        create_restore_point: bool,
        validate_before: bool,
        phase: str | None,
        tags: tuple[str, ...],
        timeout: float | None,
        batch_id: str | None = None,
    ) -> Command:
        executor = self.registry.get(type)
        if executor is None:
            raise ExecutionError(
                f"No executor registered for command type: {type}",
                reason=ExecutionReason.NO_EXECUTOR,
                command_type=type,
            )

        command_id = uuid.uuid4().hex
        ctx = self._context(command_id, type, description or "", phase, tags, batch_id)

        if validate_before and executor.validate is not None:
            try:
                ok = await call_capability(executor.validate, params, ctx)
            except Exception as exc:
                raise ValidationError(
                    f"Validation of {type} raised: {exc}", command_type=type
                ) from exc
            if not ok:
                raise ValidationError(f"Validation failed for command: {type}", command_type=type)

        restore_point_id: str | None = None
        if create_restore_point:
            point = await self.restore_points.create_restore_point(
                RestorePointType.PRE_OPERATION,
                f"Before {type}",
                phase=phase,
                tags=tags,
            )
            restore_point_id = point.id

        command = self._new_command(
            command_id,
            type,
            params,
            description=description or f"Execute {type}",
            undoable=executor.undoable,
            restore_point_id=restore_point_id,
            phase=phase,
            tags=tags,
            batch_id=batch_id,
        )
        self._invalidate_redo()

        command.transition(CommandStatus.EXECUTING)
        started = time.perf_counter()
        try:
            result = await self._with_timeout(
                call_capability(executor.execute, params, ctx), timeout
            )
        except Exception as exc:
            timed_out = isinstance(exc, TimeoutError)
            command.transition(CommandStatus.FAILED)
            command.duration_ms = (time.perf_counter() - started) * 1000
            command.error = f"timed out after {self._effective(timeout)}s" if timed_out else _describe(exc)
            self._record(command)
            logger.error("Command failed: %s (%s): %s", type, command_id, command.error)
            await self._compensate(executor, params, exc, ctx)
            raise ExecutionError(
                f"Command {type} failed: {command.error}",
                reason=ExecutionReason.TIMEOUT if timed_out else ExecutionReason.FAILED,
                command_id=command_id,
                command_type=type,
            ) from exc

        command.result = result
        command.transition(CommandStatus.COMPLETED)
        command.duration_ms = (time.perf_counter() - started) * 1000
        self._record(command)
        logger.info("Command executed: %s (%s, %.0fms)", type, command_id, command.duration_ms)
        return command

    async def _compensate(
        self,
        executor: CommandExecutor,
        params: Any,
        error: BaseException,
        ctx: ExecutionContext,
    ) -> None:
        if executor.compensate is None:
            return
        try:
            await call_capability(executor.compensate, params, error, ctx)
        except Exception as exc:
            logger.warning(
                "Compensation for %s (%s) failed: %s", ctx.command_type, ctx.command_id, exc
            )

    # ------------------------------- Undo / redo ----------------------------

    async def undo(self, command_id: str | None = None) -> Command:
        """Undo ``command_id``, or the most recent completed undoable command.

        Undo is strictly ordered: a command can only be undone once every
        later completed undoable command has been undone.

        Raises
        ------
        UndoError
            ``NOT_FOUND``, ``WRONG_STATE``, ``NOT_UNDOABLE`` or ``FAILED``.
        """
        async with self.lock:
            command = self._undo_target(command_id)
            await self._undo_locked(command)
            self._push_redo(command)
            return command

    def _undo_target(self, command_id: str | None) -> Command:
        marker_seq = self._latest_marker_sequence()
        if command_id is None:
            for command in reversed(self._history):
                if command.sequence <= marker_seq:
                    break
                if command.status is CommandStatus.COMPLETED and command.undoable:
                    return command
            raise UndoError("No command to undo", reason=UndoReason.NOT_FOUND)

        command = self._by_id.get(command_id)
        if command is None:
            raise UndoError(
                f"Command not found: {command_id}",
                reason=UndoReason.NOT_FOUND,
                command_id=command_id,
            )
        if not command.undoable:
            raise UndoError(
                f"Command {command.type} is not undoable",
                reason=UndoReason.NOT_UNDOABLE,
                command_id=command.id,
                command_type=command.type,
            )
        if command.status is not CommandStatus.COMPLETED:
            raise UndoError(
                f"Command {command.id} is {command.status}, not completed",
                reason=UndoReason.WRONG_STATE,
                command_id=command.id,
                command_type=command.type,
            )
        if command.sequence < marker_seq:
            raise UndoError(
                f"Command {command.id} precedes a restore-point rollback",
                reason=UndoReason.WRONG_STATE,
                command_id=command.id,
                command_type=command.type,
            )
        later = [
            c
            for c in self._history
            if c.sequence > command.sequence
            and c.status is CommandStatus.COMPLETED
            and c.undoable
        ]
        if later:
            raise UndoError(
                f"{len(later)} later command(s) must be undone first",
                reason=UndoReason.WRONG_STATE,
                command_id=command.id,
                command_type=command.type,
            )
        return command

    async def _undo_locked(self, command: Command, *, note: str | None = None) -> None:
        executor = self.registry.get(command.type)
        if executor is None:
            raise UndoError(
                f"No executor registered for command type: {command.type}",
                reason=UndoReason.FAILED,
                command_id=command.id,
                command_type=command.type,
            )
        if executor.undo is None:
            raise UndoError(
                f"Executor for {command.type} has no undo",
                reason=UndoReason.NOT_UNDOABLE,
                command_id=command.id,
                command_type=command.type,
            )
        ctx = self._context_for(command)
        try:
            await self._with_timeout(
                call_capability(executor.undo, command.params, command.result, ctx), None
            )
        except Exception as exc:
            logger.error("Undo failed: %s (%s): %s", command.type, command.id, _describe(exc))
            raise UndoError(
                f"Undo of {command.type} failed: {_describe(exc)}",
                reason=UndoReason.FAILED,
                command_id=command.id,
                command_type=command.type,
            ) from exc
        command.transition(CommandStatus.UNDONE)
        command.error = note
        self._record(command)
        logger.info("Command undone: %s (%s)", command.type, command.id)

    async def redo(self) -> Command:
        """Re-execute the most recently undone command.

        Raises
        ------
        RedoError
            ``NOTHING_TO_REDO``, ``INVALIDATED`` (a newer command was executed
            since the undo) or ``FAILED`` (the command stays redoable).
        """
        async with self.lock:
            command = self._pop_redo()
            executor = self.registry.get(command.type)
            if executor is None:
                self._redo.append(command.id)
                raise RedoError(
                    f"No executor registered for command type: {command.type}",
                    reason=RedoReason.FAILED,
                    command_id=command.id,
                    command_type=command.type,
                )
            ctx = self._context_for(command)
            started = time.perf_counter()
            try:
                result = await self._with_timeout(
                    call_capability(executor.execute, command.params, ctx), None
                )
            except Exception as exc:
                self._redo.append(command.id)
                logger.error("Redo failed: %s (%s): %s", command.type, command.id, _describe(exc))
                raise RedoError(
                    f"Redo of {command.type} failed: {_describe(exc)}",
                    reason=RedoReason.FAILED,
                    command_id=command.id,
                    command_type=command.type,
                ) from exc
            command.result = result
            command.duration_ms = (time.perf_counter() - started) * 1000
            command.transition(CommandStatus.COMPLETED)
            self._record(command)
            logger.info("Command redone: %s (%s)", command.type, command.id)
            return command

    def _pop_redo(self) -> Command:
        while self._redo:
            command = self._by_id.get(self._redo.pop())
            if command is not None and command.status is CommandStatus.UNDONE:
                return command
        if self._redo_invalidated:
            raise RedoError(
                "Redo was invalidated by a newer command", reason=RedoReason.INVALIDATED
            )
        raise RedoError("Nothing to redo", reason=RedoReason.NOTHING_TO_REDO)

    def _push_redo(self, command: Command) -> None:
        self._redo.append(command.id)
        self._redo_invalidated = False

    def _invalidate_redo(self) -> None:
        if self._redo:
            self._redo.clear()
            self._redo_invalidated = True

    def can_redo(self) -> bool:
        return any(
            (c := self._by_id.get(cid)) is not None and c.status is CommandStatus.UNDONE
            for cid in self._redo
        )

    # ------------------------------- Rollback -------------------------------

    async def rollback_to_timestamp(self, timestamp: datetime) -> RollbackReport:
        """Undo every completed command executed after ``timestamp``, newest first."""
        timestamp = _as_utc(timestamp)
        async with self.lock:
            targets = [c for c in self._history if c.timestamp > timestamp]
            return await self._rollback(targets)

    async def rollback_to_command(self, command_id: str) -> RollbackReport:
        """Undo every completed command executed after ``command_id``, newest first.

        Raises
        ------
        UndoError
            ``NOT_FOUND`` if ``command_id`` is unknown.
        """
        async with self.lock:
            anchor = self._by_id.get(command_id)
            if anchor is None:
                raise UndoError(
                    f"Command not found: {command_id}",
                    reason=UndoReason.NOT_FOUND,
                    command_id=command_id,
                )
            targets = [c for c in self._history if c.sequence > anchor.sequence]
            return await self._rollback(targets)

    async def _rollback(self, candidates: list[Command]) -> RollbackReport:
        started = time.perf_counter()
        undone: list[str] = []
        failures: list[RollbackFailure] = []
        for command in sorted(candidates, key=lambda c: c.sequence, reverse=True):
            if command.status is not CommandStatus.COMPLETED:
                continue
            if command.is_marker or not command.undoable:
                failures.append(
                    RollbackFailure(
                        command_id=command.id,
                        command_type=command.type,
                        error="command is not undoable",
                    )
                )
                break
            try:
                await self._undo_locked(command)
            except UndoError as exc:
                failures.append(
                    RollbackFailure(command_id=command.id, command_type=command.type, error=str(exc))
                )
                break
            self._push_redo(command)
            undone.append(command.id)

        report = RollbackReport(
            success=not failures,
            commands_undone=len(undone),
            undone_ids=undone,
            failures=failures,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        if failures:
            logger.warning(
                "Rollback stopped after %d undo(s) at %s", len(undone), failures[0].command_id
            )
        else:
            logger.info("Rollback undid %d command(s)", len(undone))
        return report

    async def rollback_to_restore_point(self, point_id: str) -> RollbackReport:
        """Swap the working tree back to ``point_id`` and log a marker command.

        The command history is kept; a non-undoable marker records the jump
        and the redo stack is cleared.

        Raises
        ------
        RestoreError
            Whatever :meth:`RestorePointManager.restore` raises.
        """
        async with self.lock:
            started = time.perf_counter()
            point = await self.restore_points.restore(point_id)
            marker = self._new_command(
                uuid.uuid4().hex,
                RESTORE_MARKER_TYPE,
                {"restore_point_id": point.id},
                description=f"Rollback to restore point {point.id}",
                undoable=False,
                restore_point_id=point.id,
                phase=point.phase,
                tags=(),
                batch_id=None,
            )
            self._invalidate_redo()
            marker.transition(CommandStatus.EXECUTING)
            marker.transition(CommandStatus.COMPLETED)
            marker.duration_ms = (time.perf_counter() - started) * 1000
            self._record(marker)
            return RollbackReport(
                success=True,
                restored_to_point=point.id,
                duration_ms=marker.duration_ms,
            )

    # ------------------------------- Batch ----------------------------------

    async def execute_batch(
        self,
        items: Sequence[BatchRequest],
        *,
        create_restore_point: bool = False,
        phase: str | None = None,
        tags: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> list[Command]:
        """Run ``items`` in order as one all-or-nothing unit.

        If item ``k`` fails, items ``0..k-1`` are undone in reverse order.

        Raises
        ------
        BatchError
            Item ``failed_index`` failed and every earlier item was undone.
            The item's own error is ``__cause__``.
        CompensationError
            Item ``failed_index`` failed and some earlier items could not be
            undone; their ids are in ``unrecoverable``.
        """
        requests = [BatchItem.model_validate(item) for item in items]
        tag_tuple = tuple(tags or ())
        batch_id = uuid.uuid4().hex
        async with self.lock:
            if create_restore_point and requests:
                await self.restore_points.create_restore_point(
                    RestorePointType.PRE_OPERATION,
                    f"Before batch of {len(requests)} command(s)",
                    phase=phase,
                    tags=tag_tuple,
                )
            done: list[Command] = []
            for index, item in enumerate(requests):
                try:
                    command = await self._execute_locked(
                        item.type,
                        item.params,
                        description=item.description,
                        create_restore_point=False,
                        validate_before=True,
                        phase=phase,
                        tags=tag_tuple,
                        timeout=timeout,
                        batch_id=batch_id,
                    )
                except RestoreKitError as exc:
                    raise await self._abort_batch(index, item, done, exc) from exc
                done.append(command)
            logger.info("Batch %s executed %d command(s)", batch_id, len(done))
            return done

    async def _abort_batch(
        self,
        index: int,
        item: BatchItem,
        done: list[Command],
        error: RestoreKitError,
    ) -> BatchError:
        """Undo ``done`` newest first and build the error to raise."""
        rolled_back: list[str] = []
        unrecoverable: list[str] = []
        for command in reversed(done):
            if not command.undoable:
                unrecoverable.append(command.id)
                continue
            try:
                await self._undo_locked(command, note=f"rolled back: batch item {index} failed")
            except UndoError:
                unrecoverable.append(command.id)
                continue
            rolled_back.append(command.id)

        if unrecoverable:
            logger.error(
                "Batch item %d (%s) failed and %d earlier command(s) could not be rolled back: %s",
                index,
                item.type,
                len(unrecoverable),
                ", ".join(unrecoverable),
            )
            return CompensationError(
                f"Batch item {index} ({item.type}) failed and rollback was incomplete: {error}",
                failed_index=index,
                unrecoverable=unrecoverable,
                command_type=item.type,
                command_id=error.command_id,
                rolled_back=rolled_back,
            )
        logger.warning(
            "Batch item %d (%s) failed; rolled back %d command(s)", index, item.type, len(rolled_back)
        )
        return BatchError(
            f"Batch item {index} ({item.type}) failed: {error}",
            failed_index=index,
            command_type=item.type,
            command_id=error.command_id,
            rolled_back=rolled_back,
        )

    # ------------------------------- Queries --------------------------------

    def get_history(self, limit: int | None = None) -> list[Command]:
        """Return the in-memory history, newest first."""
        newest_first = list(reversed(self._history))
        return newest_first if limit is None else newest_first[: max(0, limit)]

    def get_command(self, command_id: str) -> Command | None:
        """Look up a command in memory, then in the on-disk log."""
        command = self._by_id.get(command_id)
        if command is not None:
            return command
        found = self.log.query(command_id=command_id)
        return found[-1] if found else None

    def get_commands_by_type(self, command_type: str) -> list[Command]:
        return [c for c in self._history if c.type == command_type]

    def get_commands_by_time_range(self, start: datetime, end: datetime) -> list[Command]:
        """Return commands with ``start <= timestamp <= end`` in execution order.

        Naive bounds are taken as UTC.
        """
        start, end = _as_utc(start), _as_utc(end)
        return [c for c in self._history if start <= c.timestamp <= end]

    def get_statistics(self) -> CommandStatistics:
        by_status = {status: 0 for status in CommandStatus}
        by_type: dict[str, int] = {}
        durations: list[float] = []
        for command in self._history:
            by_status[command.status] += 1
            by_type[command.type] = by_type.get(command.type, 0) + 1
            if command.duration_ms is not None:
                durations.append(command.duration_ms)
        return CommandStatistics(
            total_commands=len(self._history),
            completed_commands=by_status[CommandStatus.COMPLETED],
            failed_commands=by_status[CommandStatus.FAILED],
            undone_commands=by_status[CommandStatus.UNDONE],
            average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
            commands_by_type=by_type,
        )

    def export_history(self, path: Path | str | None = None) -> str:
        """Serialize statistics and the in-memory history to JSON.

        The JSON text is returned, and also written to ``path`` when given.
        """
        document = {
            "exported_at": datetime.now(UTC).isoformat(),
            "version": __version__,
            "statistics": self.get_statistics().model_dump(mode="json"),
            "commands": [c.model_dump(mode="json") for c in self._history],
        }
        text = json.dumps(document, indent=2, ensure_ascii=False)
        if path is not None:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text + "\n", encoding="utf-8")
            logger.info("Exported %d command(s) to %s", len(self._history), target)
        return text

    # ------------------------------- Internals ------------------------------

    def _new_command(
        self,
        command_id: str,
        type: str,
        params: Any,
        *,
        description: str,
        undoable: bool,
        restore_point_id: str | None,
        phase: str | None,
        tags: tuple[str, ...],
        batch_id: str | None,
    ) -> Command:
        timestamp = datetime.now(UTC)
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            timestamp = self._last_timestamp
        self._last_timestamp = timestamp
        command = Command(
            id=command_id,
            sequence=self._next_sequence,
            type=type,
            timestamp=timestamp,
            description=description,
            params=params,
            undoable=undoable,
            restore_point_id=restore_point_id,
            phase=phase,
            tags=list(tags),
            batch_id=batch_id,
        )
        self._next_sequence += 1
        self._history.append(command)
        self._by_id[command.id] = command
        if len(self._history) > self.max_history:
            for dropped in self._history[: len(self._history) - self.max_history]:
                self._by_id.pop(dropped.id, None)
            del self._history[: len(self._history) - self.max_history]
        return command

    def _record(self, command: Command) -> None:
        self.log.append(command)

    def _latest_marker_sequence(self) -> int:
        for command in reversed(self._history):
            if command.is_marker:
                return command.sequence
        return -1

    def _context(
        self,
        command_id: str,
        command_type: str,
        description: str,
        phase: str | None,
        tags: tuple[str, ...],
        batch_id: str | None,
    ) -> ExecutionContext:
        return ExecutionContext(
            command_id=command_id,
            command_type=command_type,
            working_tree=self.restore_points.root,
            description=description,
            phase=phase,
            tags=tags,
            batch_id=batch_id,
        )

    def _context_for(self, command: Command) -> ExecutionContext:
        return self._context(
            command.id,
            command.type,
            command.description,
            command.phase,
            tuple(command.tags),
            command.batch_id,
        )

    def _effective(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self.timeout

    async def _with_timeout(self, awaitable: Any, timeout: float | None) -> Any:
        return await asyncio.wait_for(awaitable, self._effective(timeout))

    def _replay(self) -> None:
        """Rebuild the window, sequence counter and redo stack from the log."""
        latest: dict[str, Command] = {}
        redo: list[str] = []
        invalidated = False
        for record in self.log.records():
            known = record.id in latest
            latest[record.id] = record
            if not known:
                # First record of a command: a new forward command.
                if redo:
                    redo.clear()
                    invalidated = True
            elif record.status is CommandStatus.UNDONE:
                # A note marks an undo done while aborting a batch; those are not redoable.
                if record.error is None:
                    if record.id in redo:
                        redo.remove(record.id)
                    redo.append(record.id)
                    invalidated = False
            elif record.status is CommandStatus.COMPLETED and record.id in redo:
                redo.remove(record.id)

        ordered = sorted(latest.values(), key=lambda c: c.sequence)
        if ordered:
            self._next_sequence = ordered[-1].sequence + 1
            self._last_timestamp = max(c.timestamp for c in ordered)
        self._history = ordered[-self.max_history :]
        self._by_id = {c.id: c for c in self._history}
        self._redo = [cid for cid in redo if cid in self._by_id]
        self._redo_invalidated = invalidated
        if ordered:
            logger.debug("Loaded %d command(s) from %s", len(ordered), self.log.path)


__all__ = ["BatchRequest", "CommandManager"]
