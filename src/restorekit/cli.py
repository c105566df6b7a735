# src/restorekit/cli.py
"""
restorekit Command Line Interface (CLI).

A thin `typer` + `rich` wrapper around the two managers. Each invocation
builds a :class:`RestorePointManager` and a :class:`CommandManager` for the
working tree, registers the built-in file executors and runs one operation.
Command history (and therefore undo/redo) survives between invocations
because it is replayed from ``<store>/commands/history.jsonl``.

Usage
-----
    $ restorekit create "before refactor"
    $ restorekit run write-file '{"path": "notes.txt", "content": "hello"}'
    $ restorekit undo
    $ restorekit redo
    $ restorekit list --snapshots-only
    $ restorekit to-restore 3f2a... --yes
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from restorekit.commands.builtin import register_builtin_executors
from restorekit.commands.manager import CommandManager
from restorekit.core.contracts.command import Command, RollbackReport
from restorekit.core.contracts.restore_point import RestorePointFilter, RestorePointType
from restorekit.core.errors import RestoreKitError
from restorekit.restore.manager import RestorePointManager

# Load .env before any Settings object is built.
load_dotenv()

app = typer.Typer(
    help="restorekit: restore points and undoable commands for a working tree.",
    rich_markup_mode="markdown",
)
console = Console()

T = TypeVar("T")


# --------------------------------------------------------------------------- #
# Helpers: wiring & rendering
# --------------------------------------------------------------------------- #


def _managers(ctx: typer.Context) -> tuple[RestorePointManager, CommandManager]:
    """Build both managers for the tree/store chosen on the command line."""
    opts: dict[str, Any] = ctx.obj or {}
    restore_points = RestorePointManager(opts.get("root"), opts.get("store"))
    commands = CommandManager(restore_points)
    register_builtin_executors(commands.registry)
    return restore_points, commands


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` and turn restorekit errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except RestoreKitError as e:
        console.print(f"[bold red]❌ {type(e).__name__}:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1) from e


def _fail(message: str) -> typer.Exit:
    console.print(f"[bold red]❌ {escape(message)}[/bold red]")
    return typer.Exit(code=1)


def _ts(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _size(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _render_report(report: RollbackReport) -> None:
    style = "green" if report.success else "red"
    lines = [f"Commands undone: {report.commands_undone}"]
    if report.restored_to_point:
        lines.append(f"Restored to point: {report.restored_to_point}")
    for failure in report.failures:
        lines.append(f"[red]Stopped at {failure.command_type} ({failure.command_id}): {escape(failure.error)}[/red]")
    lines.append(f"[dim]{report.duration_ms:.0f}ms[/dim]")
    console.print(Panel("\n".join(lines), title="Rollback", border_style=style))
    if not report.success:
        raise typer.Exit(code=1)


def _command_line(command: Command) -> str:
    return f"{command.type} [dim]({command.id})[/dim] → [cyan]{command.status}[/cyan]"


# --------------------------------------------------------------------------- #
# Global options
# --------------------------------------------------------------------------- #


@app.callback()  # type: ignore[misc]
def main(
    ctx: typer.Context,
    root: Annotated[
        Path | None,
        typer.Option("--root", "-C", help="Working tree (defaults to RESTOREKIT_PROJECT_ROOT)."),
    ] = None,
    store: Annotated[
        Path | None,
        typer.Option("--store", help="Store directory (defaults to <root>/.restore)."),
    ] = None,
) -> None:
    """Restore points and undoable commands for a working tree."""
    ctx.obj = {"root": root, "store": store}


# --------------------------------------------------------------------------- #
# Restore points
# --------------------------------------------------------------------------- #


@app.command()  # type: ignore[misc]
def create(
    ctx: typer.Context,
    description: Annotated[str, typer.Argument(help="What this restore point captures.")],
    type: Annotated[
        RestorePointType, typer.Option("--type", "-t", help="Restore point type.")
    ] = RestorePointType.MANUAL,
    phase: Annotated[str | None, typer.Option("--phase", help="Project phase label.")] = None,
    tag: Annotated[list[str] | None, typer.Option("--tag", help="Tag (repeatable).")] = None,
    snapshot: Annotated[
        bool, typer.Option("--snapshot", help="Force a full snapshot instead of a delta.")
    ] = False,
) -> None:
    """Capture the working tree as a new restore point."""
    restore_points, _ = _managers(ctx)
    point = _run(
        restore_points.create_restore_point(
            type, description, phase=phase, tags=tag or [], force_snapshot=snapshot
        )
    )
    kind = "snapshot" if point.is_snapshot else f"delta ({point.files_changed} changed)"
    console.print(
        f"[bold green]✅ Created[/bold green] {point.id} [dim]{kind}, {point.file_count} files, "
        f"{_size(point.size)}[/dim]"
    )


@app.command("list")  # type: ignore[misc]
def list_points(
    ctx: typer.Context,
    type: Annotated[RestorePointType | None, typer.Option("--type", "-t")] = None,
    phase: Annotated[str | None, typer.Option("--phase")] = None,
    tag: Annotated[str | None, typer.Option("--tag")] = None,
    snapshots_only: Annotated[bool, typer.Option("--snapshots-only")] = False,
) -> None:
    """List restore points, newest first."""
    restore_points, _ = _managers(ctx)
    points = restore_points.list_restore_points(
        RestorePointFilter(type=type, phase=phase, tag=tag, snapshots_only=snapshots_only)
    )
    if not points:
        console.print("[dim]No restore points.[/dim]")
        return
    table = Table(title="Restore points")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created")
    table.add_column("Type")
    table.add_column("Kind")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Description")
    for p in points:
        kind = "snapshot" if p.is_snapshot else f"delta +{p.files_changed}"
        table.add_row(
            p.id, _ts(p.timestamp), str(p.type), kind, str(p.file_count), _size(p.size), escape(p.description)
        )
    console.print(table)


@app.command()  # type: ignore[misc]
def restore(
    ctx: typer.Context,
    point_id: Annotated[str, typer.Argument(help="Restore point id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Swap the working tree back to a restore point (command history untouched)."""
    restore_points, _ = _managers(ctx)
    if not yes and not Confirm.ask(f"Replace the working tree with {point_id}?", default=False):
        raise typer.Exit(code=0)
    point = _run(restore_points.restore(point_id))
    console.print(f"[bold green]✅ Restored[/bold green] {point.id} [dim]({point.description})[/dim]")


@app.command()  # type: ignore[misc]
def delete(
    ctx: typer.Context,
    point_id: Annotated[str, typer.Argument(help="Restore point id.")],
    cascade: Annotated[
        bool, typer.Option("--cascade", help="Also delete every dependent delta.")
    ] = False,
) -> None:
    """Delete a restore point."""
    restore_points, _ = _managers(ctx)
    deleted = _run(restore_points.delete_restore_point(point_id, cascade=cascade))
    console.print(f"[bold green]✅ Deleted[/bold green] {len(deleted)} restore point(s)")
    for pid in deleted:
        console.print(f" [dim]• {pid}[/dim]")


@app.command()  # type: ignore[misc]
def verify(
    ctx: typer.Context,
    point_id: Annotated[str, typer.Argument(help="Restore point id.")],
) -> None:
    """Rebuild a restore point and compare it with its stored checksum."""
    restore_points, _ = _managers(ctx)
    if _run(restore_points.verify(point_id)):
        console.print(f"[bold green]✅ {point_id} is intact[/bold green]")
        return
    raise _fail(f"{point_id} does not match its checksum")


@app.command()  # type: ignore[misc]
def cleanup(
    ctx: typer.Context,
    days: Annotated[
        int | None, typer.Option("--days", "-d", help="Retention in days (default from settings).")
    ] = None,
) -> None:
    """Delete expired restore points without orphaning retained deltas."""
    restore_points, _ = _managers(ctx)
    removed = _run(restore_points.cleanup(days))
    console.print(f"[bold green]✅ Cleanup removed {len(removed)} restore point(s)[/bold green]")


@app.command()  # type: ignore[misc]
def stats(ctx: typer.Context) -> None:
    """Show restore point and command statistics."""
    restore_points, commands = _managers(ctx)
    rp = restore_points.get_statistics()
    cs = commands.get_statistics()

    table = Table(title="Statistics", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Restore points", str(rp.total_restore_points))
    table.add_row("  snapshots", str(rp.snapshots))
    table.add_row("  deltas", str(rp.deltas))
    table.add_row("  total size", _size(rp.total_size))
    table.add_row("  oldest", _ts(rp.oldest_point))
    table.add_row("  newest", _ts(rp.newest_point))
    table.add_row("Commands", str(cs.total_commands))
    table.add_row("  completed", str(cs.completed_commands))
    table.add_row("  failed", str(cs.failed_commands))
    table.add_row("  undone", str(cs.undone_commands))
    table.add_row("  avg duration", f"{cs.average_duration_ms:.1f}ms")
    console.print(table)


# --------------------------------------------------------------------------- #
# Commands
# --------------------------------------------------------------------------- #


@app.command()  # type: ignore[misc]
def run(
    ctx: typer.Context,
    command_type: Annotated[str, typer.Argument(help="Registered command type, e.g. write-file.")],
    params: Annotated[str, typer.Argument(help="Command parameters as a JSON object.")] = "{}",
    description: Annotated[str | None, typer.Option("--description", "-m")] = None,
    restore_point: Annotated[
        bool, typer.Option("--restore-point", help="Create a pre-operation restore point first.")
    ] = False,
) -> None:
    """Execute one command and record it in the history."""
    try:
        parsed = json.loads(params)
    except json.JSONDecodeError as e:
        raise _fail(f"PARAMS is not valid JSON: {e}") from e
    _, commands = _managers(ctx)
    command = _run(
        commands.execute_command(
            command_type, parsed, description=description, create_restore_point=restore_point
        )
    )
    console.print(f"[bold green]✅ Executed[/bold green] {_command_line(command)}")


@app.command()  # type: ignore[misc]
def undo(
    ctx: typer.Context,
    command_id: Annotated[
        str | None, typer.Argument(help="Command id (default: most recent undoable).")
    ] = None,
) -> None:
    """Undo one command."""
    _, commands = _managers(ctx)
    command = _run(commands.undo(command_id))
    console.print(f"[bold green]↩ Undone[/bold green] {_command_line(command)}")


@app.command()  # type: ignore[misc]
def redo(ctx: typer.Context) -> None:
    """Redo the most recently undone command."""
    _, commands = _managers(ctx)
    command = _run(commands.redo())
    console.print(f"[bold green]↪ Redone[/bold green] {_command_line(command)}")


@app.command()  # type: ignore[misc]
def history(
    ctx: typer.Context,
    limit: Annotated[int, typer.Argument(help="Number of commands to show.")] = 20,
) -> None:
    """Show the most recent commands, newest first."""
    _, commands = _managers(ctx)
    entries = commands.get_history(limit)
    if not entries:
        console.print("[dim]No commands recorded.[/dim]")
        return
    table = Table(title="Command history")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Undoable")
    table.add_column("Description")
    for c in entries:
        table.add_row(
            str(c.sequence),
            c.id,
            _ts(c.timestamp),
            c.type,
            str(c.status),
            "yes" if c.undoable else "no",
            escape(c.description),
        )
    console.print(table)


@app.command("to-time")  # type: ignore[misc]
def to_time(
    ctx: typer.Context,
    timestamp: Annotated[str, typer.Argument(help="ISO-8601 timestamp (UTC if no offset).")],
) -> None:
    """Undo every command executed after a timestamp."""
    try:
        when = datetime.fromisoformat(timestamp)
    except ValueError as e:
        raise _fail(f"Not an ISO-8601 timestamp: {timestamp}") from e
    _, commands = _managers(ctx)
    _render_report(_run(commands.rollback_to_timestamp(when)))


@app.command("to-command")  # type: ignore[misc]
def to_command(
    ctx: typer.Context,
    command_id: Annotated[str, typer.Argument(help="Keep this command; undo everything after it.")],
) -> None:
    """Undo every command executed after the given command."""
    _, commands = _managers(ctx)
    _render_report(_run(commands.rollback_to_command(command_id)))


@app.command("to-restore")  # type: ignore[misc]
def to_restore(
    ctx: typer.Context,
    point_id: Annotated[str, typer.Argument(help="Restore point id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Restore a point and record the jump in the command history."""
    _, commands = _managers(ctx)
    if not yes and not Confirm.ask(f"Replace the working tree with {point_id}?", default=False):
        raise typer.Exit(code=0)
    _render_report(_run(commands.rollback_to_restore_point(point_id)))


@app.command()  # type: ignore[misc]
def export(
    ctx: typer.Context,
    path: Annotated[
        Path | None, typer.Argument(help="Output file (prints to stdout when omitted).")
    ] = None,
) -> None:
    """Export command history and statistics as JSON."""
    _, commands = _managers(ctx)
    text = commands.export_history(path)
    if path is None:
        console.print_json(text)
    else:
        console.print(f"[dim]History exported to: {path}[/dim]")


if __name__ == "__main__":
    app()
