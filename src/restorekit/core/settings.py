"""Centralized configuration for restorekit using Pydantic Settings (v2).

This module exposes a single, cached `settings` instance that reads from:
- Real environment variables (highest precedence)
- `.env` files in the working directory: .env, .env.local, .env.dev/.env.test/.env.prod

Managers never read the environment themselves; they take explicit
constructor arguments and fall back to :func:`load_settings` when omitted.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["dev", "test", "prod"]
LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

DEFAULT_EXCLUDES: tuple[str, ...] = (
    ".git",
    "node_modules",
    "dist",
    "logs",
    ".restore",
    "__pycache__",
    ".venv",
)


class Settings(BaseSettings):
    """Typed configuration loaded from env and `.env` files.

    Attributes
    ----------
    environment : EnvName
        Runtime environment flag; maps from `RESTOREKIT_ENV`.
    log_level : LogLevelName
        Global log level string; maps from `LOG_LEVEL`.
    project_root : Path
        Working tree under version control; maps from `RESTOREKIT_PROJECT_ROOT`.
    store_dir : Path | None
        Where snapshots, deltas, metadata and command history live. Defaults
        to ``<project_root>/.restore``; maps from `RESTOREKIT_STORE_DIR`.
    retention_days : int
        Age after which `cleanup()` may remove restore points.
    snapshot_interval : int
        Number of consecutive deltas after which a full snapshot is forced.
    exclude : list[str]
        Glob patterns matched against path components and relative paths.
    """

    environment: EnvName = Field(default="dev", alias="RESTOREKIT_ENV")
    log_level: LogLevelName = Field(default="INFO", alias="LOG_LEVEL")
    project_root: Path = Field(default=Path("."), alias="RESTOREKIT_PROJECT_ROOT")
    store_dir: Path | None = Field(default=None, alias="RESTOREKIT_STORE_DIR")
    retention_days: int = Field(default=30, ge=0, alias="RESTOREKIT_RETENTION_DAYS")
    snapshot_interval: int = Field(default=10, ge=1, alias="RESTOREKIT_SNAPSHOT_INTERVAL")
    exclude: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDES), alias="RESTOREKIT_EXCLUDE")
    max_history: int = Field(default=1000, ge=1, alias="RESTOREKIT_MAX_HISTORY")
    auto_cleanup: bool = Field(default=True, alias="RESTOREKIT_AUTO_CLEANUP")
    operation_timeout: float | None = Field(default=None, gt=0, alias="RESTOREKIT_OPERATION_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local", ".env.dev", ".env.test", ".env.prod"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_dev(self) -> bool:
        """Return True if running in the development environment."""
        return self.environment == "dev"

    @property
    def is_test(self) -> bool:
        """Return True if running in the test environment."""
        return self.environment == "test"

    @property
    def is_prod(self) -> bool:
        """Return True if running in the production environment."""
        return self.environment == "prod"

    def resolved_store_dir(self) -> Path:
        """Return the store directory, defaulting to ``<project_root>/.restore``."""
        if self.store_dir is not None:
            return self.store_dir
        return self.project_root / ".restore"

    def log_level_numeric(self) -> int:
        """Return the numeric logging level corresponding to `self.log_level`."""
        return getattr(logging, self.log_level, logging.INFO)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Create and cache a `Settings` instance.

    We keep this behind an LRU cache so tests can force a rebuild via
    `load_settings.cache_clear()` after mutating `os.environ`.
    """
    os.environ.setdefault("RESTOREKIT_ENV", "dev")
    return Settings()


# Export a ready-to-use instance (import-time read of env / .env files).
settings: Settings = load_settings()


def get_logger(name: str = "restorekit") -> logging.Logger:
    """Return a process-global logger configured to the current `LOG_LEVEL`."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        )
        logger.addHandler(handler)
    logger.setLevel(load_settings().log_level_numeric())
    logger.propagate = False
    return logger


__all__ = ["DEFAULT_EXCLUDES", "Settings", "get_logger", "load_settings", "settings"]
