"""
Built-in file executors.

These let the CLI (and tests) log real, undoable changes to the working tree
without registering custom code. Results are plain JSON so a command can be
undone or redone by a later process that reloads the history.

+---------------+----------------------+-----------------------------------+
| type          | params               | undo                              |
+===============+======================+===================================+
| write-file    | ``{path, content}``  | restore previous text or remove   |
| delete-file   | ``{path}``           | write the deleted text back       |
| rename        | ``{from, to}``       | rename back                       |
+---------------+----------------------+-----------------------------------+

Paths are relative to the working tree; anything resolving outside it is
rejected.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from restorekit.commands.executors import CommandExecutor, ExecutionContext, ExecutorRegistry

WRITE_FILE = "write-file"
DELETE_FILE = "delete-file"
RENAME = "rename"


def resolve_in_tree(root: Path, rel: Any) -> Path:
    """Resolve ``rel`` under ``root``; raise ``ValueError`` if it escapes."""
    if not isinstance(rel, str) or not rel.strip():
        raise ValueError("path must be a non-empty string")
    base = root.resolve()
    target = (base / rel).resolve()
    if target == base or base not in target.parents:
        raise ValueError(f"path escapes the working tree: {rel}")
    return target


# ----------------------------- write-file ----------------------------------


def _write_validate(params: dict[str, Any], ctx: ExecutionContext) -> bool:
    if not isinstance(params, dict) or not isinstance(params.get("content"), str):
        return False
    target = resolve_in_tree(ctx.working_tree, params.get("path"))
    return not target.is_dir()


def _write_execute(params: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
    target = resolve_in_tree(ctx.working_tree, params["path"])
    previous = target.read_text(encoding="utf-8") if target.exists() else None
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(params["content"], encoding="utf-8")
    return {"path": params["path"], "previous": previous}


def _write_undo(params: dict[str, Any], result: dict[str, Any], ctx: ExecutionContext) -> None:
    target = resolve_in_tree(ctx.working_tree, params["path"])
    if result["previous"] is None:
        target.unlink(missing_ok=True)
    else:
        target.write_text(result["previous"], encoding="utf-8")


# ----------------------------- delete-file ---------------------------------


def _delete_validate(params: dict[str, Any], ctx: ExecutionContext) -> bool:
    if not isinstance(params, dict):
        return False
    return resolve_in_tree(ctx.working_tree, params.get("path")).is_file()


def _delete_execute(params: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
    target = resolve_in_tree(ctx.working_tree, params["path"])
    content = target.read_text(encoding="utf-8")
    target.unlink()
    return {"path": params["path"], "content": content}


def _delete_undo(params: dict[str, Any], result: dict[str, Any], ctx: ExecutionContext) -> None:
    target = resolve_in_tree(ctx.working_tree, params["path"])
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(result["content"], encoding="utf-8")


# ----------------------------- rename --------------------------------------


def _rename_validate(params: dict[str, Any], ctx: ExecutionContext) -> bool:
    if not isinstance(params, dict):
        return False
    source = resolve_in_tree(ctx.working_tree, params.get("from"))
    target = resolve_in_tree(ctx.working_tree, params.get("to"))
    return source.is_file() and not target.exists()


def _rename_execute(params: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
    source = resolve_in_tree(ctx.working_tree, params["from"])
    target = resolve_in_tree(ctx.working_tree, params["to"])
    if target.exists():
        raise FileExistsError(f"rename target already exists: {params['to']}")
    target.parent.mkdir(parents=True, exist_ok=True)
    source.rename(target)
    return {"from": params["from"], "to": params["to"]}


def _rename_undo(params: dict[str, Any], result: dict[str, Any], ctx: ExecutionContext) -> None:
    source = resolve_in_tree(ctx.working_tree, result["from"])
    target = resolve_in_tree(ctx.working_tree, result["to"])
    if source.exists():
        raise FileExistsError(f"cannot rename back, {result['from']} exists again")
    source.parent.mkdir(parents=True, exist_ok=True)
    target.rename(source)


BUILTIN_EXECUTORS: dict[str, CommandExecutor] = {
    WRITE_FILE: CommandExecutor(execute=_write_execute, undo=_write_undo, validate=_write_validate),
    DELETE_FILE: CommandExecutor(
        execute=_delete_execute, undo=_delete_undo, validate=_delete_validate
    ),
    RENAME: CommandExecutor(execute=_rename_execute, undo=_rename_undo, validate=_rename_validate),
}


def register_builtin_executors(registry: ExecutorRegistry) -> ExecutorRegistry:
    """Register ``write-file``, ``delete-file`` and ``rename`` on ``registry``."""
    for command_type, executor in BUILTIN_EXECUTORS.items():
        registry.register(command_type, executor)
    return registry


__all__ = [
    "BUILTIN_EXECUTORS",
    "DELETE_FILE",
    "RENAME",
    "WRITE_FILE",
    "register_builtin_executors",
    "resolve_in_tree",
]
