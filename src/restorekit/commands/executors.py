"""
Executor registry: command-type string → pluggable implementation.

An executor is a capability bundle, not a base class. ``execute`` is
required; ``undo``, ``validate`` and ``compensate`` are optional. Every
capability may be a plain function or a coroutine function:

- ``execute(params, ctx) -> result``
- ``undo(params, result, ctx) -> None``
- ``validate(params, ctx) -> bool``
- ``compensate(params, error, ctx) -> None``

Commands whose executor has no ``undo`` are logged with ``undoable=False``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from restorekit.core.settings import get_logger

logger = get_logger(__name__)

ExecuteFn = Callable[[Any, "ExecutionContext"], Any]
UndoFn = Callable[[Any, Any, "ExecutionContext"], Any]
ValidateFn = Callable[[Any, "ExecutionContext"], Any]
CompensateFn = Callable[[Any, BaseException, "ExecutionContext"], Any]


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """What an executor gets to know about the command it runs."""

    command_id: str
    command_type: str
    working_tree: Path
    description: str = ""
    phase: str | None = None
    tags: tuple[str, ...] = ()
    batch_id: str | None = None


@dataclass(frozen=True, slots=True)
class CommandExecutor:
    """Capability set for one command type."""

    execute: ExecuteFn
    undo: UndoFn | None = None
    validate: ValidateFn | None = None
    compensate: CompensateFn | None = None

    @property
    def undoable(self) -> bool:
        return self.undo is not None


async def call_capability(fn: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async capability.

    Coroutine functions are awaited on the loop; plain functions run in a
    worker thread so blocking file I/O does not stall it and timeouts apply.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result


class ExecutorRegistry:
    """Mapping of command type → :class:`CommandExecutor`. Last registration wins."""

    def __init__(self) -> None:
        self._executors: dict[str, CommandExecutor] = {}

    def register(self, command_type: str, executor: CommandExecutor) -> None:
        if not command_type:
            raise ValueError("command type must be a non-empty string")
        if command_type in self._executors:
            logger.info("Replacing executor for command type: %s", command_type)
        self._executors[command_type] = executor
        logger.debug("Registered command executor: %s", command_type)

    def unregister(self, command_type: str) -> CommandExecutor | None:
        return self._executors.pop(command_type, None)

    def get(self, command_type: str) -> CommandExecutor | None:
        return self._executors.get(command_type)

    def types(self) -> tuple[str, ...]:
        """Return the registered types as a sorted tuple (stable for tests)."""
        return tuple(sorted(self._executors))

    def __contains__(self, command_type: object) -> bool:
        return command_type in self._executors

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self._executors)


__all__ = [
    "CommandExecutor",
    "ExecutionContext",
    "ExecutorRegistry",
    "call_capability",
]
