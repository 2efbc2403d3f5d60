"""
Metadata SQLite store for the sqlkite workspace.

This module manages the project's metadata database (``.studio/meta.db``),
which stores:
- Branches and the current-branch pointer (settings)
- Migration applications per branch, plus the global migration ledger
- Snapshot records
- Timeline events
- Pending-operation markers for file-level steps

The metadata database never holds user tables; those live in the branch
backing files.

Invariants:
    - Exactly one branch named 'main' exists after migrate_schema()
    - (branch, filename) pairs in migrations are unique
    - migration_ledger rows are never deleted
    - No two branches share a db_file
    - Multi-row writes run inside a single transaction

How to change safely:
    - Table and column names are shared with other tools reading the same
      project; add tables or columns, never rename them
    - Bump SCHEMA_VERSION and add a _migrate_vN step for every change
    - Test upgrades against a metadata DB from every previous version

Table schema:
    settings:
        - key TEXT PRIMARY KEY
        - value TEXT

    branches:
        - id INTEGER PRIMARY KEY
        - name TEXT UNIQUE
        - db_file TEXT (UNIQUE from v2)
        - created_at TEXT
        - created_from TEXT (NULL only for main)
        - description TEXT

    migrations (applications):
        - id INTEGER PRIMARY KEY
        - branch TEXT
        - filename TEXT
        - applied_at TEXT
        - UNIQUE (branch, filename)

    migration_ledger (v2):
        - filename TEXT PRIMARY KEY
        - first_branch TEXT
        - first_applied_at TEXT

    snapshots:
        - id INTEGER PRIMARY KEY
        - branch TEXT
        - filename TEXT UNIQUE
        - name TEXT
        - size INTEGER
        - created_at TEXT
        - description TEXT

    events:
        - id INTEGER PRIMARY KEY
        - branch TEXT
        - type TEXT
        - data TEXT (JSON)
        - created_at TEXT

    pending_operations (v2):
        - id INTEGER PRIMARY KEY
        - kind TEXT
        - branch TEXT
        - target TEXT
        - payload TEXT (JSON)
        - started_at TEXT
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..models import (
    MAIN_BRANCH,
    Branch,
    MigrationApplication,
    PendingOperation,
    Snapshot,
)

logger = logging.getLogger(__name__)

CURRENT_BRANCH_KEY = "current_branch"
SCHEMA_VERSION_KEY = "schema_version"

_EVENTS_DDL = """
    CREATE TABLE events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch TEXT NOT NULL DEFAULT 'main',
        type TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
"""

_MIGRATIONS_DDL = """
    CREATE TABLE migrations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch TEXT NOT NULL DEFAULT 'main',
        filename TEXT NOT NULL,
        applied_at TEXT DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(branch, filename)
    )
"""

_SNAPSHOTS_DDL = """
    CREATE TABLE snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch TEXT NOT NULL DEFAULT 'main',
        filename TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL DEFAULT '',
        size INTEGER,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        description TEXT
    )
"""


def _row_to_branch(row: sqlite3.Row) -> Branch:
    return Branch(
        id=row["id"],
        name=row["name"],
        db_file=row["db_file"],
        created_at=row["created_at"],
        created_from=row["created_from"],
        description=row["description"] or "",
    )


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        branch=row["branch"],
        filename=row["filename"],
        name=row["name"],
        description=row["description"],
        size=row["size"],
        created_at=row["created_at"],
    )


class MetadataStore:
    """SQLite store for workspace metadata.

    One long-lived connection in autocommit mode; multi-statement writes go
    through ``transaction()``.

    Example:
        >>> store = MetadataStore(Path("/proj/.studio/meta.db"))
        >>> store.open()
        >>> store.migrate_schema(main_db_file="db.sqlite")
        >>> store.get_branch("main").db_file
        'db.sqlite'
    """

    SCHEMA_VERSION = 2

    def __init__(
        self,
        meta_path: Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the metadata store.

        Args:
            meta_path: Path of the metadata database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.meta_path = Path(meta_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> None:
        """Open the metadata database, creating the file if needed."""
        if self._conn is not None:
            return

        self.meta_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.meta_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        self._conn = conn
        logger.debug("Opened metadata store", extra={"meta_path": str(self.meta_path)})

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.open()
        assert self._conn is not None
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of writes atomically.

        Nested use joins the outer transaction.
        """
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def schema_version(self) -> int:
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        value = self.get_setting(SCHEMA_VERSION_KEY)
        try:
            return int(value) if value is not None else 0
        except ValueError:
            return 0

    def migrate_schema(self, main_db_file: str = "db.sqlite") -> int:
        """Upgrade the metadata database to the latest schema.

        Args:
            main_db_file: Backing file recorded for main when it is seeded

        Returns:
            Schema version after the upgrade
        """
        version = self.schema_version()
        logger.debug(f"Metadata schema version: {version}")

        if version < 1:
            logger.info("Migrating metadata schema to v1 (branch support)")
            with self.transaction():
                self._migrate_v1(main_db_file)
            version = 1

        if version < 2:
            logger.info("Migrating metadata schema to v2 (ledger, pending operations)")
            with self.transaction():
                self._migrate_v2()
            version = 2

        return version

    def _table_columns(self, table: str) -> list[str]:
        return [row["name"] for row in self.conn.execute(f"PRAGMA table_info({table})")]

    def _upgrade_table(self, table: str, ddl: str, required: set[str], copy_sql: str) -> None:
        """Create a table, or rebuild a legacy one lacking required columns."""
        columns = self._table_columns(table)
        if not columns:
            self.conn.execute(ddl)
            return
        if required.issubset(columns):
            return

        logger.info(f"Rebuilding legacy metadata table: {table}")
        self.conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old")
        self.conn.execute(ddl)
        self.conn.execute(copy_sql)
        self.conn.execute(f"DROP TABLE {table}_old")

    def _migrate_v1(self, main_db_file: str) -> None:
        conn = self.conn
        conn.execute("""
            CREATE TABLE IF NOT EXISTS branches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                db_file TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                created_from TEXT,
                description TEXT
            )
        """)

        self._upgrade_table(
            "events",
            _EVENTS_DDL,
            {"branch"},
            """
            INSERT INTO events (id, branch, type, data, created_at)
            SELECT id, 'main', type, data, created_at FROM events_old
            """,
        )
        self._upgrade_table(
            "migrations",
            _MIGRATIONS_DDL,
            {"branch"},
            """
            INSERT INTO migrations (id, branch, filename, applied_at)
            SELECT id, 'main', filename, applied_at FROM migrations_old
            """,
        )
        self._upgrade_table(
            "snapshots",
            _SNAPSHOTS_DDL,
            {"branch", "name"},
            """
            INSERT INTO snapshots (id, branch, filename, name, size, created_at)
            SELECT id, 'main', filename, filename, size, created_at FROM snapshots_old
            """,
        )

        count = conn.execute("SELECT COUNT(*) FROM branches").fetchone()[0]
        if count == 0:
            logger.info("Creating default main branch")
            conn.execute(
                """
                INSERT INTO branches (name, db_file, created_from, description)
                VALUES (?, ?, NULL, 'Default branch')
                """,
                (MAIN_BRANCH, main_db_file),
            )

        self._set_setting(CURRENT_BRANCH_KEY, MAIN_BRANCH)
        self._set_setting(SCHEMA_VERSION_KEY, "1")

    def _migrate_v2(self) -> None:
        # executescript() would commit the surrounding transaction
        statements = (
            """
            CREATE TABLE IF NOT EXISTS migration_ledger (
                filename TEXT PRIMARY KEY,
                first_branch TEXT NOT NULL,
                first_applied_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS pending_operations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                kind TEXT NOT NULL,
                branch TEXT NOT NULL,
                target TEXT,
                payload TEXT NOT NULL DEFAULT '{}',
                started_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
            """,
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_branches_db_file ON branches(db_file)",
            "CREATE INDEX IF NOT EXISTS idx_events_branch ON events(branch, id)",
            "CREATE INDEX IF NOT EXISTS idx_snapshots_branch ON snapshots(branch, id)",
            # Applications recorded before the ledger existed
            """
            INSERT OR IGNORE INTO migration_ledger (filename, first_branch, first_applied_at)
            SELECT filename, MIN(branch), MIN(applied_at) FROM migrations GROUP BY filename
            """,
        )
        for statement in statements:
            self.conn.execute(statement)
        self._set_setting(SCHEMA_VERSION_KEY, "2")

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else default

    def _set_setting(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, value),
        )

    def set_setting(self, key: str, value: str) -> None:
        with self.transaction():
            self._set_setting(key, value)

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------

    def get_branch(self, name: str) -> Branch | None:
        row = self.conn.execute("SELECT * FROM branches WHERE name = ?", (name,)).fetchone()
        return _row_to_branch(row) if row else None

    def list_branches(self) -> list[Branch]:
        """All branches, main first, the rest newest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM branches
            ORDER BY
                CASE WHEN name = 'main' THEN 0 ELSE 1 END,
                created_at DESC,
                id DESC
            """
        )
        return [_row_to_branch(row) for row in cursor.fetchall()]

    def branch_for_file(self, db_file: str) -> Branch | None:
        row = self.conn.execute("SELECT * FROM branches WHERE db_file = ?", (db_file,)).fetchone()
        return _row_to_branch(row) if row else None

    def insert_branch(
        self,
        name: str,
        db_file: str,
        created_from: str,
        description: str = "",
    ) -> Branch:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO branches (name, db_file, created_from, description)
                VALUES (?, ?, ?, ?)
                """,
                (name, db_file, created_from, description),
            )
        branch = self.get_branch(name)
        assert branch is not None
        return branch

    def delete_branch(self, name: str) -> None:
        """Delete a branch row and every row tagged with the branch.

        The migration ledger is deliberately left untouched.
        """
        with self.transaction() as conn:
            conn.execute("DELETE FROM branches WHERE name = ?", (name,))
            conn.execute("DELETE FROM migrations WHERE branch = ?", (name,))
            conn.execute("DELETE FROM events WHERE branch = ?", (name,))
            conn.execute("DELETE FROM snapshots WHERE branch = ?", (name,))

    def branch_counts(self, name: str) -> dict[str, int]:
        counts = {}
        for key, table in (
            ("migrations_applied", "migrations"),
            ("snapshots", "snapshots"),
            ("events", "events"),
        ):
            cursor = self.conn.execute(f"SELECT COUNT(*) FROM {table} WHERE branch = ?", (name,))
            counts[key] = cursor.fetchone()[0]
        return counts

    # -------------------------------------------------------------------------
    # Migration applications
    # -------------------------------------------------------------------------

    def get_application(self, branch: str, filename: str) -> MigrationApplication | None:
        row = self.conn.execute(
            "SELECT branch, filename, applied_at FROM migrations WHERE branch = ? AND filename = ?",
            (branch, filename),
        ).fetchone()
        if not row:
            return None
        return MigrationApplication(row["branch"], row["filename"], row["applied_at"])

    def applied_migrations(self, branch: str) -> dict[str, str | None]:
        """Map of filename -> applied_at for one branch."""
        cursor = self.conn.execute(
            "SELECT filename, applied_at FROM migrations WHERE branch = ? ORDER BY id",
            (branch,),
        )
        return {row["filename"]: row["applied_at"] for row in cursor.fetchall()}

    def record_application(self, branch: str, filename: str) -> MigrationApplication:
        """Record that a branch applied a migration, and enter it in the ledger."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO migrations (branch, filename) VALUES (?, ?)",
                (branch, filename),
            )
            conn.execute(
                "INSERT OR IGNORE INTO migration_ledger (filename, first_branch) VALUES (?, ?)",
                (filename, branch),
            )
        application = self.get_application(branch, filename)
        assert application is not None
        return application

    def applications_for(self, filename: str) -> list[MigrationApplication]:
        cursor = self.conn.execute(
            "SELECT branch, filename, applied_at FROM migrations WHERE filename = ? ORDER BY id",
            (filename,),
        )
        return [
            MigrationApplication(row["branch"], row["filename"], row["applied_at"])
            for row in cursor.fetchall()
        ]

    def ledger_entry(self, filename: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT * FROM migration_ledger WHERE filename = ?", (filename,)
        ).fetchone()
        return dict(row) if row else None

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def insert_snapshot(
        self,
        branch: str,
        filename: str,
        name: str,
        size: int,
        description: str | None = None,
    ) -> Snapshot:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO snapshots (branch, filename, name, size, description)
                VALUES (?, ?, ?, ?, ?)
                """,
                (branch, filename, name, size, description),
            )
            snapshot_id = cursor.lastrowid
        snapshot = self.get_snapshot(snapshot_id)
        assert snapshot is not None
        return snapshot

    def get_snapshot(self, snapshot_id: int) -> Snapshot | None:
        row = self.conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self, branch: str | None = None) -> list[Snapshot]:
        if branch is None:
            cursor = self.conn.execute("SELECT * FROM snapshots ORDER BY id DESC")
        else:
            cursor = self.conn.execute(
                "SELECT * FROM snapshots WHERE branch = ? ORDER BY id DESC", (branch,)
            )
        return [_row_to_snapshot(row) for row in cursor.fetchall()]

    def delete_snapshot(self, snapshot_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
            return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def insert_event(self, branch: str, event_type: str, data: str) -> sqlite3.Row:
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO events (branch, type, data) VALUES (?, ?, ?)",
                (branch, event_type, data),
            )
            event_id = cursor.lastrowid
        return self.conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()

    def query_events(self, branch: str | None, limit: int, offset: int) -> list[sqlite3.Row]:
        """Events newest first; all branches when branch is None."""
        if branch is None:
            cursor = self.conn.execute(
                """
                SELECT id, branch, type, data, created_at FROM events
                ORDER BY id DESC LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
        else:
            cursor = self.conn.execute(
                """
                SELECT id, branch, type, data, created_at FROM events
                WHERE branch = ?
                ORDER BY id DESC LIMIT ? OFFSET ?
                """,
                (branch, limit, offset),
            )
        return cursor.fetchall()

    def count_events(self, branch: str | None) -> int:
        if branch is None:
            return self.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        return self.conn.execute(
            "SELECT COUNT(*) FROM events WHERE branch = ?", (branch,)
        ).fetchone()[0]

    def event_type_counts(self, branch: str) -> list[dict[str, Any]]:
        cursor = self.conn.execute(
            """
            SELECT type, COUNT(*) AS count FROM events
            WHERE branch = ?
            GROUP BY type
            ORDER BY count DESC, type
            """,
            (branch,),
        )
        return [{"type": row["type"], "count": row["count"]} for row in cursor.fetchall()]

    def delete_events(self, branch: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM events WHERE branch = ?", (branch,))
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Pending operations
    # -------------------------------------------------------------------------

    def begin_operation(
        self,
        kind: str,
        branch: str,
        target: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> int:
        """Write a marker before a file-level step."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO pending_operations (kind, branch, target, payload) VALUES (?, ?, ?, ?)",
                (kind, branch, target, json.dumps(payload or {})),
            )
            return cursor.lastrowid

    def finish_operation(self, operation_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM pending_operations WHERE id = ?", (operation_id,))
            return cursor.rowcount > 0

    def list_operations(self) -> list[PendingOperation]:
        cursor = self.conn.execute("SELECT * FROM pending_operations ORDER BY id")
        return [
            PendingOperation(
                id=row["id"],
                kind=row["kind"],
                branch=row["branch"],
                target=row["target"],
                payload=json.loads(row["payload"] or "{}"),
                started_at=row["started_at"],
            )
            for row in cursor.fetchall()
        ]
