from __future__ import annotations

from .builtin import register_builtin_executors
from .executors import CommandExecutor, ExecutionContext, ExecutorRegistry
from .history import CommandLog
from .manager import CommandManager

__all__ = [
    "CommandExecutor",
    "ExecutionContext",
    "ExecutorRegistry",
    "CommandLog",
    "CommandManager",
    "register_builtin_executors",
]
