from __future__ import annotations

from .manager import RestorePointManager
from .swap import STAGING_DIRNAME, TreeSwapper

__all__ = [
    "RestorePointManager",
    "STAGING_DIRNAME",
    "TreeSwapper",
]
