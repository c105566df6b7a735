"""restorekit: restore points and an undoable command log for a file tree.

Public entry points live in the subpackages:

- :mod:`restorekit.restore` for snapshots, deltas and restores;
- :mod:`restorekit.commands` for executors, undo/redo, rollback and batches.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.1.0"
