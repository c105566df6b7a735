"""Shared fixtures: an isolated working tree, store and managers per test."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from helpers import write_files
from restorekit.commands.builtin import register_builtin_executors
from restorekit.commands.manager import CommandManager
from restorekit.core.settings import load_settings
from restorekit.restore.manager import RestorePointManager


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Drop cached settings after each test so env overrides never leak."""
    yield
    load_settings.cache_clear()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A small working tree with nested folders and a binary file."""
    root = tmp_path / "project"
    root.mkdir()
    write_files(
        root,
        {
            "README.md": "# demo\n",
            "src/app.py": "print('hello')\n",
            "src/util/helpers.py": "def add(a, b):\n    return a + b\n",
            "data/blob.bin": bytes(range(256)),
        },
    )
    return root


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def restore_points(project: Path, store_dir: Path) -> RestorePointManager:
    return RestorePointManager(project, store_dir, auto_cleanup=False, snapshot_interval=10)


@pytest.fixture
def commands(restore_points: RestorePointManager) -> CommandManager:
    manager = CommandManager(restore_points, max_history=1000)
    register_builtin_executors(manager.registry)
    return manager
