"""Append-only, disk-backed command history.

Every state change of a command (executed, failed, undone, redone) appends a
full JSON record of that command as one line of ``history.jsonl``. Nothing is
ever rewritten: when the log is read back, the last record for each id is
its current state, and ``sequence`` restores the original order.

- Default file: ``<store_dir>/commands/history.jsonl``
- One line per record, UTF-8, ``Command.model_dump_json()``

A torn final line (crash mid-write) is skipped with a warning on load.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from restorekit.core.contracts.command import Command
from restorekit.core.settings import get_logger

logger = get_logger(__name__)


class CommandLog:
    """Append command records to a JSON Lines file and query them back.

    Passing ``path=None`` keeps the log purely in memory (useful for tests
    and throwaway managers).
    """

    def __init__(self, path: Path | None) -> None:
        self.path: Path | None = Path(path) if path is not None else None
        self._memory: list[str] = []
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, command: Command) -> None:
        """Append the current state of ``command``."""
        line = command.model_dump_json()
        if self.path is None:
            self._memory.append(line)
            return
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.write("\n")

    def _lines(self) -> list[str]:
        if self.path is None:
            return list(self._memory)
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    def records(self) -> list[Command]:
        """Return every record in append order (one command may appear many times)."""
        out: list[Command] = []
        for lineno, line in enumerate(self._lines(), start=1):
            if not line.strip():
                continue
            try:
                out.append(Command.model_validate_json(line))
            except PydanticValidationError as exc:
                logger.warning("Skipping unreadable history record at line %d: %s", lineno, exc)
        return out

    def load(self) -> list[Command]:
        """Return the latest state of every command, ordered by sequence."""
        latest: dict[str, Command] = {}
        for cmd in self.records():
            latest[cmd.id] = cmd
        return sorted(latest.values(), key=lambda c: c.sequence)

    def query(
        self,
        *,
        command_id: str | None = None,
        command_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Command]:
        """Filter the full on-disk history by id, type and inclusive time range."""
        out: list[Command] = []
        for cmd in self.load():
            if command_id is not None and cmd.id != command_id:
                continue
            if command_type is not None and cmd.type != command_type:
                continue
            if start is not None and cmd.timestamp < start:
                continue
            if end is not None and cmd.timestamp > end:
                continue
            out.append(cmd)
        return out


__all__ = ["CommandLog"]
