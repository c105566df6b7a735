"""Tests for command execution, undo/redo, rollbacks and batches."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from helpers import read_tree, write_files

from restorekit.commands.builtin import register_builtin_executors
from restorekit.commands.executors import CommandExecutor, ExecutionContext
from restorekit.commands.manager import CommandManager
from restorekit.core.contracts.command import RESTORE_MARKER_TYPE, BatchItem, CommandStatus
from restorekit.core.contracts.restore_point import RestorePointType
from restorekit.core.errors import (
    BatchError,
    CompensationError,
    ExecutionError,
    ExecutionReason,
    RedoError,
    RedoReason,
    UndoError,
    UndoReason,
    ValidationError,
)
from restorekit.restore.manager import RestorePointManager


def _write(path: str, content: str) -> dict[str, Any]:
    return {"path": path, "content": content}


def _boom(params: Any, ctx: ExecutionContext) -> None:
    raise RuntimeError(f"boom: {params}")


# --------------------------------------------------------------------------- #
# Execute
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_execute_records_completed_command(commands: CommandManager) -> None:
    cmd = await commands.execute_command("write-file", _write("notes.txt", "hi"), phase="draft", tags=["x"])

    assert cmd.status is CommandStatus.COMPLETED
    assert cmd.undoable is True
    assert cmd.result == {"path": "notes.txt", "previous": None}
    assert cmd.duration_ms is not None and cmd.duration_ms >= 0
    assert cmd.phase == "draft" and cmd.tags == ["x"]
    assert (commands.restore_points.root / "notes.txt").read_text(encoding="utf-8") == "hi"
    assert commands.get_history() == [cmd]


@pytest.mark.asyncio
async def test_unknown_type_is_no_executor(commands: CommandManager) -> None:
    with pytest.raises(ExecutionError) as info:
        await commands.execute_command("missing", {})
    assert info.value.reason is ExecutionReason.NO_EXECUTOR
    assert commands.get_history() == []


@pytest.mark.asyncio
async def test_validation_failure_mutates_and_logs_nothing(commands: CommandManager) -> None:
    before = read_tree(commands.restore_points.root)

    with pytest.raises(ValidationError):
        await commands.execute_command("write-file", {"path": "x.txt"})
    with pytest.raises(ValidationError):
        await commands.execute_command("write-file", _write("../outside.txt", "x"))

    assert read_tree(commands.restore_points.root) == before
    assert commands.get_history() == []
    assert commands.log.records() == []


@pytest.mark.asyncio
async def test_failure_is_logged_compensated_and_chained(commands: CommandManager) -> None:
    seen: list[BaseException] = []

    def compensate(params: Any, error: BaseException, ctx: ExecutionContext) -> None:
        seen.append(error)

    commands.register_executor("explode", CommandExecutor(execute=_boom, compensate=compensate))

    with pytest.raises(ExecutionError) as info:
        await commands.execute_command("explode", {"n": 1})

    assert info.value.reason is ExecutionReason.FAILED
    assert isinstance(info.value.__cause__, RuntimeError)
    assert len(seen) == 1 and seen[0] is info.value.__cause__
    failed = commands.get_command(info.value.command_id or "")
    assert failed is not None
    assert failed.status is CommandStatus.FAILED
    assert failed.error == "boom: {'n': 1}"


@pytest.mark.asyncio
async def test_compensation_failure_does_not_mask_original(commands: CommandManager) -> None:
    def bad_compensate(params: Any, error: BaseException, ctx: ExecutionContext) -> None:
        raise OSError("compensation broke too")

    commands.register_executor("explode", CommandExecutor(execute=_boom, compensate=bad_compensate))

    with pytest.raises(ExecutionError) as info:
        await commands.execute_command("explode", None)
    assert isinstance(info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_execute_timeout(commands: CommandManager) -> None:
    async def slow(params: Any, ctx: ExecutionContext) -> None:
        await asyncio.sleep(5)

    commands.register_executor("slow", CommandExecutor(execute=slow))

    with pytest.raises(ExecutionError) as info:
        await commands.execute_command("slow", None, timeout=0.05)

    assert info.value.reason is ExecutionReason.TIMEOUT
    assert commands.get_history()[0].status is CommandStatus.FAILED


@pytest.mark.asyncio
async def test_async_capabilities_receive_context(commands: CommandManager) -> None:
    calls: list[str] = []

    async def execute(params: Any, ctx: ExecutionContext) -> str:
        calls.append(f"execute:{ctx.command_type}:{ctx.working_tree.name}")
        return "done"

    async def undo(params: Any, result: Any, ctx: ExecutionContext) -> None:
        calls.append(f"undo:{result}")

    commands.register_executor("async-op", CommandExecutor(execute=execute, undo=undo))
    cmd = await commands.execute_command("async-op", {})
    await commands.undo()

    assert calls == ["execute:async-op:project", "undo:done"]
    assert cmd.status is CommandStatus.UNDONE


@pytest.mark.asyncio
async def test_pre_operation_restore_point_is_linked(commands: CommandManager) -> None:
    cmd = await commands.execute_command(
        "write-file", _write("a.txt", "a"), create_restore_point=True
    )

    assert cmd.restore_point_id is not None
    point = commands.restore_points.get_restore_point(cmd.restore_point_id)
    assert point is not None
    assert point.type is RestorePointType.PRE_OPERATION
    assert point.description == "Before write-file"


# --------------------------------------------------------------------------- #
# Undo / redo
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_n_commands_then_n_undos_restore_pre_state(commands: CommandManager) -> None:
    root = commands.restore_points.root
    before = read_tree(root)
    checksum = commands.restore_points.current_checksum()

    await commands.execute_command("write-file", _write("README.md", "new readme\n"))
    await commands.execute_command("write-file", _write("docs/guide.md", "guide"))
    await commands.execute_command("delete-file", {"path": "src/app.py"})
    await commands.execute_command("rename", {"from": "data/blob.bin", "to": "data/moved.bin"})
    for _ in range(4):
        await commands.undo()

    assert read_tree(root, skip=("docs",)) == before
    assert not (root / "docs/guide.md").exists()
    assert commands.restore_points.current_checksum() == checksum
    assert [c.status for c in commands.get_history()] == [CommandStatus.UNDONE] * 4


@pytest.mark.asyncio
async def test_redo_after_undo_reproduces_post_state(commands: CommandManager) -> None:
    root = commands.restore_points.root
    await commands.execute_command("write-file", _write("README.md", "v2"))
    await commands.execute_command("delete-file", {"path": "src/app.py"})
    after = read_tree(root)

    await commands.undo()
    await commands.undo()
    first = await commands.redo()
    second = await commands.redo()

    assert (first.type, second.type) == ("write-file", "delete-file")
    assert read_tree(root) == after
    with pytest.raises(RedoError) as info:
        await commands.redo()
    assert info.value.reason is RedoReason.NOTHING_TO_REDO


@pytest.mark.asyncio
async def test_new_command_invalidates_redo(commands: CommandManager) -> None:
    await commands.execute_command("write-file", _write("a.txt", "a"))
    await commands.undo()
    await commands.execute_command("write-file", _write("b.txt", "b"))

    with pytest.raises(RedoError) as info:
        await commands.redo()
    assert info.value.reason is RedoReason.INVALIDATED


@pytest.mark.asyncio
async def test_undo_error_reasons(commands: CommandManager) -> None:
    commands.register_executor("once", CommandExecutor(execute=lambda p, c: None))
    commands.register_executor("explode", CommandExecutor(execute=_boom, undo=lambda p, r, c: None))

    with pytest.raises(UndoError) as info:
        await commands.undo()
    assert info.value.reason is UndoReason.NOT_FOUND

    first = await commands.execute_command("write-file", _write("a.txt", "a"))
    await commands.execute_command("write-file", _write("b.txt", "b"))
    with pytest.raises(UndoError) as info:
        await commands.undo(first.id)
    assert info.value.reason is UndoReason.WRONG_STATE

    once = await commands.execute_command("once", None)
    with pytest.raises(UndoError) as info:
        await commands.undo(once.id)
    assert info.value.reason is UndoReason.NOT_UNDOABLE

    with pytest.raises(ExecutionError) as exec_info:
        await commands.execute_command("explode", None)
    with pytest.raises(UndoError) as info:
        await commands.undo(exec_info.value.command_id)
    assert info.value.reason is UndoReason.WRONG_STATE

    with pytest.raises(UndoError) as info:
        await commands.undo("unknown-id")
    assert info.value.reason is UndoReason.NOT_FOUND


@pytest.mark.asyncio
async def test_failed_undo_keeps_command_completed(commands: CommandManager) -> None:
    def undo(params: Any, result: Any, ctx: ExecutionContext) -> None:
        raise OSError("disk full")

    commands.register_executor("sticky", CommandExecutor(execute=lambda p, c: 1, undo=undo))
    cmd = await commands.execute_command("sticky", None)

    with pytest.raises(UndoError) as info:
        await commands.undo()
    assert info.value.reason is UndoReason.FAILED
    assert isinstance(info.value.__cause__, OSError)
    assert cmd.status is CommandStatus.COMPLETED


@pytest.mark.asyncio
async def test_rename_scenario(commands: CommandManager) -> None:
    root = commands.restore_points.root
    write_files(root, {"a.txt": "alpha"})

    await commands.execute_command("rename", {"from": "a.txt", "to": "b.txt"})
    assert (root / "b.txt").exists() and not (root / "a.txt").exists()

    await commands.undo()
    assert (root / "a.txt").read_text(encoding="utf-8") == "alpha"
    assert not (root / "b.txt").exists()


# --------------------------------------------------------------------------- #
# Rollbacks
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_rollback_to_timestamp_undoes_later_commands_in_reverse(
    commands: CommandManager,
) -> None:
    await commands.execute_command("write-file", _write("keep1.txt", "1"))
    kept = await commands.execute_command("write-file", _write("keep2.txt", "2"))
    later = [
        await commands.execute_command("write-file", _write(f"later{i}.txt", str(i)))
        for i in range(3)
    ]

    report = await commands.rollback_to_timestamp(kept.timestamp)

    # Equal timestamps are possible at clock resolution; count what is strictly later.
    expected = [c for c in later if c.timestamp > kept.timestamp]
    assert report.success
    assert report.commands_undone == len(expected)
    assert report.undone_ids == [c.id for c in reversed(expected)]
    for cmd in expected:
        assert cmd.status is CommandStatus.UNDONE


@pytest.mark.asyncio
async def test_rollback_to_command(commands: CommandManager) -> None:
    root = commands.restore_points.root
    anchor = await commands.execute_command("write-file", _write("a.txt", "a"))
    b = await commands.execute_command("write-file", _write("b.txt", "b"))
    c = await commands.execute_command("write-file", _write("c.txt", "c"))

    report = await commands.rollback_to_command(anchor.id)

    assert report.success
    assert report.undone_ids == [c.id, b.id]
    assert (root / "a.txt").exists()
    assert not (root / "b.txt").exists() and not (root / "c.txt").exists()
    assert anchor.status is CommandStatus.COMPLETED

    with pytest.raises(UndoError):
        await commands.rollback_to_command("unknown")


@pytest.mark.asyncio
async def test_rollback_stops_at_non_undoable(commands: CommandManager) -> None:
    commands.register_executor("once", CommandExecutor(execute=lambda p, c: None))
    anchor = await commands.execute_command("write-file", _write("a.txt", "a"))
    once = await commands.execute_command("once", None)
    last = await commands.execute_command("write-file", _write("b.txt", "b"))

    report = await commands.rollback_to_command(anchor.id)

    assert not report.success
    assert report.undone_ids == [last.id]
    assert report.failures[0].command_id == once.id


@pytest.mark.asyncio
async def test_snapshot_command_delta_scenario(commands: CommandManager) -> None:
    """S0 → add A → D1 → modify A → undo → rollback to S0."""
    root = commands.restore_points.root
    write_files(root, {f"f{i}.txt": f"file {i}" for i in range(6)})
    original = read_tree(root)
    assert len(original) == 10

    s0 = await commands.restore_points.create_restore_point(description="S0")
    await commands.execute_command("write-file", _write("A.txt", "added"))
    d1 = await commands.restore_points.create_restore_point(description="D1")
    assert d1.is_delta
    await commands.execute_command("write-file", _write("A.txt", "modified"))

    await commands.undo()
    assert (root / "A.txt").read_text(encoding="utf-8") == "added"

    report = await commands.rollback_to_restore_point(s0.id)

    assert report.success and report.restored_to_point == s0.id
    assert read_tree(root) == original
    assert not (root / "A.txt").exists()

    marker = commands.get_history(1)[0]
    assert marker.type == RESTORE_MARKER_TYPE
    assert marker.undoable is False
    assert marker.restore_point_id == s0.id
    assert len(commands.get_history()) == 3
    with pytest.raises(RedoError):
        await commands.redo()
    with pytest.raises(UndoError) as info:
        await commands.undo()
    assert info.value.reason is UndoReason.NOT_FOUND


# --------------------------------------------------------------------------- #
# Batches
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_batch_success(commands: CommandManager) -> None:
    done = await commands.execute_batch(
        [
            BatchItem(type="write-file", params=_write("a.txt", "a")),
            {"type": "write-file", "params": _write("b.txt", "b")},
        ],
        create_restore_point=True,
    )

    assert [c.status for c in done] == [CommandStatus.COMPLETED] * 2
    assert done[0].batch_id is not None and done[0].batch_id == done[1].batch_id
    points = commands.restore_points.list_restore_points()
    assert len(points) == 1 and points[0].type is RestorePointType.PRE_OPERATION


@pytest.mark.asyncio
async def test_batch_failing_third_of_five_restores_state(commands: CommandManager) -> None:
    root = commands.restore_points.root
    commands.register_executor("explode", CommandExecutor(execute=_boom))
    before = read_tree(root)

    items = [
        BatchItem(type="write-file", params=_write("one.txt", "1")),
        BatchItem(type="delete-file", params={"path": "README.md"}),
        BatchItem(type="explode", params={"n": 3}),
        BatchItem(type="write-file", params=_write("four.txt", "4")),
        BatchItem(type="write-file", params=_write("five.txt", "5")),
    ]
    with pytest.raises(BatchError) as info:
        await commands.execute_batch(items)

    assert not isinstance(info.value, CompensationError)
    assert info.value.failed_index == 2
    assert isinstance(info.value.__cause__, ExecutionError)
    assert len(info.value.rolled_back) == 2
    assert read_tree(root) == before
    statuses = [c.status for c in reversed(commands.get_history())]
    assert statuses == [CommandStatus.UNDONE, CommandStatus.UNDONE, CommandStatus.FAILED]
    with pytest.raises(RedoError):
        await commands.redo()


@pytest.mark.asyncio
async def test_batch_with_unrecoverable_item_raises_compensation_error(
    commands: CommandManager,
) -> None:
    commands.register_executor("once", CommandExecutor(execute=lambda p, c: "applied"))
    commands.register_executor("explode", CommandExecutor(execute=_boom))

    with pytest.raises(CompensationError) as info:
        await commands.execute_batch(
            [
                {"type": "write-file", "params": _write("a.txt", "a")},
                {"type": "once", "params": None},
                {"type": "explode", "params": None},
            ]
        )

    history = commands.get_history()
    once = next(c for c in history if c.type == "once")
    write = next(c for c in history if c.type == "write-file")
    assert info.value.unrecoverable == (once.id,)
    assert info.value.rolled_back == (write.id,)
    assert not (commands.restore_points.root / "a.txt").exists()


@pytest.mark.asyncio
async def test_batch_validation_failure_rolls_back(commands: CommandManager) -> None:
    root = commands.restore_points.root
    with pytest.raises(BatchError) as info:
        await commands.execute_batch(
            [
                {"type": "write-file", "params": _write("a.txt", "a")},
                {"type": "rename", "params": {"from": "missing.txt", "to": "x.txt"}},
            ]
        )
    assert isinstance(info.value.__cause__, ValidationError)
    assert info.value.failed_index == 1
    assert not (root / "a.txt").exists()


# --------------------------------------------------------------------------- #
# Persistence, queries, export
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_history_survives_restart_with_redo(
    commands: CommandManager, restore_points: RestorePointManager
) -> None:
    root = restore_points.root
    first = await commands.execute_command("write-file", _write("a.txt", "a"))
    await commands.undo()

    reloaded = CommandManager(restore_points)
    register_builtin_executors(reloaded.registry)

    assert reloaded.get_command(first.id) is not None
    assert reloaded.get_command(first.id).status is CommandStatus.UNDONE  # type: ignore[union-attr]
    redone = await reloaded.redo()
    assert redone.id == first.id
    assert (root / "a.txt").read_text(encoding="utf-8") == "a"

    second = await reloaded.execute_command("write-file", _write("b.txt", "b"))
    assert second.sequence == first.sequence + 1


@pytest.mark.asyncio
async def test_batch_rollback_is_not_redoable_after_restart(
    commands: CommandManager, restore_points: RestorePointManager
) -> None:
    commands.register_executor("explode", CommandExecutor(execute=_boom))
    with pytest.raises(BatchError):
        await commands.execute_batch(
            [{"type": "write-file", "params": _write("a.txt", "a")}, {"type": "explode"}]
        )

    reloaded = CommandManager(restore_points)
    register_builtin_executors(reloaded.registry)
    with pytest.raises(RedoError) as info:
        await reloaded.redo()
    assert info.value.reason is RedoReason.NOTHING_TO_REDO


@pytest.mark.asyncio
async def test_history_window_is_bounded(restore_points: RestorePointManager) -> None:
    manager = CommandManager(restore_points, max_history=2)
    register_builtin_executors(manager.registry)
    first = await manager.execute_command("write-file", _write("1.txt", "1"))
    for i in range(2, 4):
        await manager.execute_command("write-file", _write(f"{i}.txt", str(i)))

    assert len(manager.get_history()) == 2
    assert first.id not in [c.id for c in manager.get_history()]
    on_disk = manager.get_command(first.id)
    assert on_disk is not None and on_disk.status is CommandStatus.COMPLETED


@pytest.mark.asyncio
async def test_queries_statistics_and_export(commands: CommandManager, tmp_path: Path) -> None:
    start = datetime.now(UTC)
    a = await commands.execute_command("write-file", _write("a.txt", "a"))
    await commands.execute_command("delete-file", {"path": "a.txt"})
    await commands.undo()
    end = datetime.now(UTC)

    assert [c.id for c in commands.get_commands_by_type("write-file")] == [a.id]
    assert len(commands.get_commands_by_time_range(start, end)) == 2
    assert len(commands.get_history(limit=1)) == 1

    stats = commands.get_statistics()
    assert stats.total_commands == 2
    assert stats.completed_commands == 1
    assert stats.undone_commands == 1
    assert stats.commands_by_type == {"write-file": 1, "delete-file": 1}

    out = tmp_path / "export" / "history.json"
    text = commands.export_history(out)
    doc = json.loads(out.read_text(encoding="utf-8"))
    assert doc == json.loads(text)
    assert [c["id"] for c in doc["commands"]] == [a.id, commands.get_history()[0].id]
    assert doc["statistics"]["total_commands"] == 2


@pytest.mark.asyncio
async def test_naive_time_range_bounds_are_utc(commands: CommandManager) -> None:
    start = datetime.now(UTC).replace(tzinfo=None)
    cmd = await commands.execute_command("write-file", _write("n.txt", "n"))
    end = datetime.now(UTC).replace(tzinfo=None)

    assert [c.id for c in commands.get_commands_by_time_range(start, end)] == [cmd.id]


# --------------------------------------------------------------------------- #
# Shared working-tree lock
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio
async def test_restore_waits_for_running_command(
    commands: CommandManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A restore issued while a command runs starts only after the command ends."""
    restore_points = commands.restore_points
    assert commands.lock is restore_points.lock
    s0 = await restore_points.create_restore_point(description="s0")
    before = read_tree(restore_points.root)
    events: list[str] = []
    running = asyncio.Event()

    async def slow_write(params: Any, ctx: ExecutionContext) -> None:
        events.append("command-start")
        running.set()
        await asyncio.sleep(0.05)
        (ctx.working_tree / "slow.txt").write_text("slow", encoding="utf-8")
        events.append("command-end")

    real_stage = restore_points._stage_blocking

    def tracking_stage(*args: Any) -> Any:
        events.append("restore-start")
        return real_stage(*args)

    monkeypatch.setattr(restore_points, "_stage_blocking", tracking_stage)
    commands.register_executor("slow-write", CommandExecutor(execute=slow_write))

    command_task = asyncio.create_task(commands.execute_command("slow-write", {}))
    await running.wait()
    restore_task = asyncio.create_task(restore_points.restore(s0.id))
    await asyncio.gather(command_task, restore_task)

    assert events == ["command-start", "command-end", "restore-start"]
    assert read_tree(restore_points.root) == before
