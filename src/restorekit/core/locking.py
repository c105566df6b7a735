"""Reentrant asyncio mutex guarding the live working tree.

Only one mutating operation (command execution, restore, create, delete,
cleanup) may touch a working tree at a time. The lock is reentrant per
asyncio task so that, for example, a command that already holds the lock can
ask the restore point manager for a pre-operation snapshot.
"""

from __future__ import annotations

import asyncio
from types import TracebackType


class WorkingTreeLock:
    """Task-reentrant wrapper around :class:`asyncio.Lock`."""

    __slots__ = ("_lock", "_owner", "_depth")

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task[object] | None = None
        self._depth = 0

    def locked(self) -> bool:
        """Return True if some task currently holds the lock."""
        return self._lock.locked()

    def held_by_current_task(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    async def acquire(self) -> None:
        task = asyncio.current_task()
        if task is not None and self._owner is task:
            self._depth += 1
            return
        await self._lock.acquire()
        self._owner = task
        self._depth = 1

    def release(self) -> None:
        if not self.held_by_current_task():
            raise RuntimeError("WorkingTreeLock released by a task that does not own it")
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()

    async def __aenter__(self) -> WorkingTreeLock:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


__all__ = ["WorkingTreeLock"]
