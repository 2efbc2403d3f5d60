"""
Configuration management for the sqlkite workspace core.

All configuration is done via environment variables, with a programmatic
override for embedding (``WorkspaceConfig.for_project``). This module provides
typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The on-disk layout names (meta dir, main file, migrations and snapshots
      directories) are shared with other tools reading the same project and
      must not be changed for an existing project

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never change a layout default; add a new setting instead
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


@dataclass(frozen=True)
class StorageConfig:
    """Project directory layout and SQLite tuning.

    Attributes:
        project_dir: Project root holding branch backing files
        meta_dir: Directory (relative to project_dir) holding the metadata DB
        meta_filename: Metadata database filename
        main_db_file: Backing file of the main branch
        migrations_dir: Directory of migration scripts
        snapshots_dir: Directory of snapshot copies
        wal_mode: SQLite WAL mode enabled for branch connections
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    project_dir: str = "."
    meta_dir: str = ".studio"
    meta_filename: str = "meta.db"
    main_db_file: str = "db.sqlite"
    migrations_dir: str = "migrations"
    snapshots_dir: str = "snapshots"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            project_dir=os.getenv("PROJECT_PATH", "."),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )

    @property
    def project_path(self) -> Path:
        return Path(self.project_dir)

    @property
    def meta_path(self) -> Path:
        return self.project_path / self.meta_dir / self.meta_filename

    @property
    def migrations_path(self) -> Path:
        return self.project_path / self.migrations_dir

    @property
    def snapshots_path(self) -> Path:
        return self.project_path / self.snapshots_dir


@dataclass(frozen=True)
class TimelineConfig:
    """Timeline query configuration.

    Attributes:
        default_limit: Page size when the caller gives none
        max_limit: Largest page size accepted
    """

    default_limit: int = 50
    max_limit: int = 1000

    @classmethod
    def from_env(cls) -> TimelineConfig:
        """Load configuration from environment variables."""
        return cls(
            default_limit=int(os.getenv("TIMELINE_DEFAULT_LIMIT", "50")),
            max_limit=int(os.getenv("TIMELINE_MAX_LIMIT", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class WorkspaceConfig:
    """Complete workspace configuration.

    Attributes:
        storage: Project layout and SQLite configuration
        timeline: Timeline paging configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> WorkspaceConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            timeline=TimelineConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    @classmethod
    def for_project(cls, project_dir: str | Path, **storage_overrides) -> WorkspaceConfig:
        """Build a configuration for one project directory.

        Args:
            project_dir: Project root
            **storage_overrides: Other StorageConfig fields (e.g. wal_mode)
        """
        storage = replace(StorageConfig(), project_dir=str(project_dir), **storage_overrides)
        config = cls(storage=storage)
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.project_dir:
            raise ValueError("PROJECT_PATH must not be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be >= 0")
        if self.timeline.default_limit < 1:
            raise ValueError("TIMELINE_DEFAULT_LIMIT must be >= 1")
        if self.timeline.max_limit < self.timeline.default_limit:
            raise ValueError("TIMELINE_MAX_LIMIT must be >= TIMELINE_DEFAULT_LIMIT")
        if self.observability.log_level.upper() not in LOG_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL '{self.observability.log_level}'. "
                f"Must be one of: {', '.join(LOG_LEVELS)}"
            )
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.project_dir):
            logger.warning(
                f"Project directory does not exist: {self.storage.project_dir}. "
                "It will be created when the workspace is initialised."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Workspace configuration loaded",
            extra={
                "project_dir": self.storage.project_dir,
                "meta_path": str(self.storage.meta_path),
                "wal_mode": self.storage.wal_mode,
                "busy_timeout_ms": self.storage.busy_timeout_ms,
                "log_level": self.observability.log_level,
            },
        )
