"""Core package initializer for restorekit.

Holds the pieces shared by both managers:
    from restorekit.core.settings import settings, load_settings, Settings, get_logger
    from restorekit.core.errors import RestoreKitError
    from restorekit.core.locking import WorkingTreeLock
"""

from __future__ import annotations

__all__ = ["__doc__"]
