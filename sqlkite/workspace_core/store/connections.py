"""
Connection registry for branch backing files.

Caches one live SQLite handle per branch. Handles open lazily on first
acquire() and close on release(). Any copy, replace or delete of a branch's
backing file must be preceded by release() on that branch, so that no open
handle races the file operation.

Read-only handles (used by compare mode) are cached separately and are also
dropped by release().

Invariants:
    - At most one read-write and one read-only handle per branch
    - Acquiring a branch that does not exist, or whose backing file is
      missing, raises NotFoundError and caches nothing
    - release() is idempotent
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from ..errors import NotFoundError, WorkspaceIOError
from .metadata_store import MetadataStore

logger = logging.getLogger(__name__)

READONLY_BUSY_TIMEOUT_MS = 2000


class ConnectionRegistry:
    """Per-branch cache of SQLite connections.

    Attributes:
        project_dir: Project root that branch db_file paths are relative to
        store: Metadata store used to resolve branch backing files
        wal_mode: Enable SQLite WAL mode on branch databases
        busy_timeout_ms: SQLite busy timeout
        cache_size_pages: SQLite cache size (negative = KB)
    """

    def __init__(
        self,
        project_dir: Path,
        store: MetadataStore,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        self.project_dir = Path(project_dir)
        self.store = store
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._connections: dict[str, sqlite3.Connection] = {}
        self._readonly: dict[str, sqlite3.Connection] = {}

    def backing_path(self, branch: str) -> Path:
        """Resolve a branch's backing file.

        Raises:
            NotFoundError: If the branch does not exist
        """
        info = self.store.get_branch(branch)
        if info is None:
            raise NotFoundError(f"Branch '{branch}' does not exist", "branch", branch)
        return self.project_dir / info.db_file

    def _existing_backing_path(self, branch: str) -> Path:
        db_path = self.backing_path(branch)
        if not db_path.exists():
            raise NotFoundError(
                f"Backing file for branch '{branch}' is missing: {db_path.name}",
                "backing_file",
                str(db_path),
            )
        return db_path

    def acquire(self, branch: str) -> sqlite3.Connection:
        """Return the cached handle for a branch, opening it if needed.

        Raises:
            NotFoundError: If the branch or its backing file does not exist
        """
        conn = self._connections.get(branch)
        if conn is not None:
            return conn

        db_path = self._existing_backing_path(branch)
        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error:
            conn.close()
            raise

        self._connections[branch] = conn
        logger.debug("Opened branch connection", extra={"branch": branch, "path": str(db_path)})
        return conn

    def acquire_readonly(self, branch: str) -> sqlite3.Connection:
        """Return a cached read-only handle for a branch.

        Raises:
            NotFoundError: If the branch or its backing file does not exist
        """
        conn = self._readonly.get(branch)
        if conn is not None:
            return conn

        db_path = self._existing_backing_path(branch)
        conn = sqlite3.connect(
            f"{db_path.resolve().as_uri()}?mode=ro",
            uri=True,
            timeout=READONLY_BUSY_TIMEOUT_MS / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute("PRAGMA query_only = ON")
            conn.execute(f"PRAGMA busy_timeout = {READONLY_BUSY_TIMEOUT_MS}")
        except sqlite3.Error:
            conn.close()
            raise

        self._readonly[branch] = conn
        logger.debug("Opened read-only branch connection", extra={"branch": branch})
        return conn

    def release(self, branch: str) -> None:
        """Close and evict every cached handle of a branch."""
        conn = self._connections.pop(branch, None)
        if conn is not None:
            conn.close()
            logger.debug("Closed branch connection", extra={"branch": branch})
        self.release_readonly(branch)

    def release_readonly(self, branch: str) -> None:
        conn = self._readonly.pop(branch, None)
        if conn is not None:
            conn.close()
            logger.debug("Closed read-only branch connection", extra={"branch": branch})

    def is_open(self, branch: str) -> bool:
        return branch in self._connections

    @property
    def open_branches(self) -> list[str]:
        return sorted(self._connections)

    def checkpoint(self, branch: str) -> None:
        """Flush a branch's WAL into its primary file.

        Raises:
            NotFoundError: If the branch or its backing file does not exist
            WorkspaceIOError: If the checkpoint fails or is blocked by a reader
        """
        conn = self.acquire(branch)
        try:
            row = conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        except sqlite3.Error as e:
            raise WorkspaceIOError(
                f"WAL checkpoint failed for branch '{branch}': {e}",
                path=str(self.backing_path(branch)),
                operation="checkpoint",
            ) from e

        # (busy, wal frames, checkpointed frames); busy=1 means a reader held it back
        if row is not None and row[0]:
            raise WorkspaceIOError(
                f"WAL checkpoint for branch '{branch}' was blocked by another connection",
                path=str(self.backing_path(branch)),
                operation="checkpoint",
            )
        logger.debug("Checkpointed branch", extra={"branch": branch})

    def close_all(self) -> None:
        for branch in list(self._connections):
            self.release(branch)
        for branch in list(self._readonly):
            self.release_readonly(branch)
