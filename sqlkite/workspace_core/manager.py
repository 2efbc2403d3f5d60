"""
Workspace manager: opens a project directory and wires the engines.

A project directory looks like:

    <project>/
        db.sqlite                   main branch
        feature--x.db.sqlite        other branches
        migrations/NNN_name.sql     global migration catalog
        snapshots/*.db              snapshot copies
        .studio/meta.db             metadata store

Usage:
    >>> with WorkspaceManager(WorkspaceConfig.for_project("/tmp/proj")) as ws:
    ...     ws.branches.create("feature/x", base_branch="main")

Invariants:
    - The metadata schema is upgraded before any engine is used
    - Interrupted file-level operations are reported on open, never repaired
    - close() releases every branch connection

How to change safely:
    - Add new engines here and pass them the shared store, registry and
      timeline; engines must not open their own metadata connections
"""

from __future__ import annotations

import logging
import sqlite3

from .branch import BranchComparer, BranchManager
from .config import WorkspaceConfig
from .errors import NotFoundError
from .migrate import MigrationCatalog, MigrationEngine
from .models import BranchContext, PendingOperation
from .snapshot import SnapshotEngine
from .store import ConnectionRegistry, MetadataStore
from .timeline import Timeline

logger = logging.getLogger(__name__)


class WorkspaceManager:
    """Facade over one project directory.

    Attributes:
        config: Workspace configuration
        store: Metadata store
        registry: Branch connection registry
        timeline: Audit timeline
        snapshots: Snapshot engine
        branches: Branch manager
        migrations: Migration engine
        comparer: Read-only compare mode

    Example:
        >>> ws = WorkspaceManager(WorkspaceConfig.for_project("/tmp/proj"))
        >>> ws.open()
        >>> ws.current_branch()
        'main'
        >>> ws.close()
    """

    def __init__(self, config: WorkspaceConfig | None = None) -> None:
        """Initialize the manager; nothing touches disk until open().

        Args:
            config: Optional configuration (loaded from env if not provided)
        """
        self.config = config or WorkspaceConfig.from_env()
        storage = self.config.storage

        self.store = MetadataStore(
            storage.meta_path,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
        )
        self.registry = ConnectionRegistry(
            storage.project_path,
            self.store,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )
        self.timeline = Timeline(
            self.store,
            default_limit=self.config.timeline.default_limit,
            max_limit=self.config.timeline.max_limit,
        )
        self.snapshots = SnapshotEngine(
            storage.snapshots_path, self.store, self.registry, self.timeline
        )
        self.branches = BranchManager(
            storage.project_path,
            self.store,
            self.registry,
            self.snapshots,
            self.timeline,
            main_db_file=storage.main_db_file,
        )
        self.migrations = MigrationEngine(
            MigrationCatalog(storage.migrations_path),
            self.store,
            self.registry,
            self.timeline,
        )
        self.comparer = BranchComparer(self.registry)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def is_initialized(self) -> bool:
        return self.config.storage.meta_path.exists()

    def open(self, create: bool = True) -> None:
        """Open the project, initialising it if needed.

        Args:
            create: Initialise a missing project instead of failing

        Raises:
            NotFoundError: If the project isn't initialised and create is False
        """
        if self._open:
            return

        storage = self.config.storage
        if not self.is_initialized():
            if not create:
                raise NotFoundError(
                    f"No sqlkite project at {storage.project_path}",
                    "project",
                    str(storage.project_path),
                )
            self._initialize()

        self.store.open()
        self.store.migrate_schema(main_db_file=storage.main_db_file)
        self._open = True

        interrupted = self.store.list_operations()
        for op in interrupted:
            logger.warning(
                "Found interrupted operation",
                extra={
                    "operation_id": op.id,
                    "kind": op.kind,
                    "branch": op.branch,
                    "target": op.target,
                    "started_at": op.started_at,
                },
            )

        logger.info(
            "Opened workspace",
            extra={
                "project_dir": str(storage.project_path),
                "current_branch": self.branches.current_name(),
                "interrupted_operations": len(interrupted),
            },
        )

    def _initialize(self) -> None:
        storage = self.config.storage
        logger.info("Initialising project", extra={"project_dir": str(storage.project_path)})

        storage.project_path.mkdir(parents=True, exist_ok=True)
        storage.migrations_path.mkdir(parents=True, exist_ok=True)
        storage.snapshots_path.mkdir(parents=True, exist_ok=True)
        storage.meta_path.parent.mkdir(parents=True, exist_ok=True)

        main_path = storage.project_path / storage.main_db_file
        if not main_path.exists():
            # User database starts empty
            conn = sqlite3.connect(str(main_path))
            try:
                if storage.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
            finally:
                conn.close()

    def close(self) -> None:
        """Release every connection and close the metadata store."""
        self.registry.close_all()
        self.store.close()
        if self._open:
            logger.debug("Closed workspace")
        self._open = False

    def __enter__(self) -> WorkspaceManager:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def current_branch(self) -> str:
        return self.branches.current_name()

    def context(self, branch: str | None = None) -> BranchContext:
        """Resolve the branch a request operates on.

        Args:
            branch: Explicit branch; the current-branch pointer when None

        Raises:
            NotFoundError: If an explicit branch doesn't exist
        """
        if branch is None:
            return BranchContext(branch=self.branches.current_name())
        self.branches.get(branch)
        return BranchContext(branch=branch)

    def interrupted_operations(self) -> list[PendingOperation]:
        """Markers left behind by operations that never finished."""
        return self.store.list_operations()

    def resolve_interrupted(self, operation_id: int) -> PendingOperation:
        """Clear one interrupted-operation marker after manual reconciliation.

        Raises:
            NotFoundError: If no such marker exists
        """
        op = next((o for o in self.store.list_operations() if o.id == operation_id), None)
        if op is None:
            raise NotFoundError(
                f"No interrupted operation with id {operation_id}",
                "pending_operation",
                str(operation_id),
            )
        self.store.finish_operation(operation_id)
        logger.info(
            "Resolved interrupted operation",
            extra={"operation_id": op.id, "kind": op.kind, "branch": op.branch},
        )
        return op
