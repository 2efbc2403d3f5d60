"""
Migration engine: global catalog, per-branch application state.

Every branch sees the same migration files but applies them independently.
A migration's application is recorded only after its SQL committed, so a
failing script leaves no record and can be fixed and retried.

Invariants:
    - A branch applies a given migration at most once
    - A migration that was ever applied anywhere (migration_ledger) can't
      be deleted, even after the applying branch is deleted
    - apply_all() runs pending files in filename order and stops at the
      first failure

How to change safely:
    - Keep the ledger insert in the same metadata transaction as the
      application record
    - Scripts that manage their own transactions, or that hold statements
      SQLite refuses inside a transaction, must keep running verbatim
"""

from __future__ import annotations

import logging
import re
import sqlite3

from ..errors import ConflictError, EngineExecutionError, NotFoundError
from ..models import Migration, MigrationApplication, MigrationResult, MigrationStatus
from ..sqltext import mask_sql_literals
from ..store.connections import ConnectionRegistry
from ..store.metadata_store import MetadataStore
from ..timeline import EventType, Timeline
from .catalog import MigrationCatalog

logger = logging.getLogger(__name__)

_TRANSACTION_CONTROL_RE = re.compile(
    r"(^|;)\s*("
    r"BEGIN(\s+(DEFERRED|IMMEDIATE|EXCLUSIVE))?(\s+TRANSACTION)?\s*(;|$)"
    r"|COMMIT\b|END\s+TRANSACTION\b|ROLLBACK\s*(;|$)|SAVEPOINT\b"
    r")",
    re.IGNORECASE,
)

# SQLite refuses these inside a transaction
_NON_TRANSACTIONAL_RE = re.compile(
    r"(^|;)\s*(VACUUM\b|ATTACH\b|DETACH\b|PRAGMA\s+(\w+\.)?journal_mode\b)",
    re.IGNORECASE,
)


def has_transaction_control(sql: str) -> bool:
    """True if a script opens, commits or rolls back transactions itself.

    Only statement starts outside comments and literals are inspected, so
    triggers (BEGIN ... END) and quoted text don't count.
    """
    return bool(_TRANSACTION_CONTROL_RE.search(mask_sql_literals(sql)))


def needs_autocommit(sql: str) -> bool:
    """True if a script has a statement SQLite won't run inside a transaction.

    VACUUM, ATTACH, DETACH and journal_mode changes fail with "cannot ...
    within a transaction" when wrapped.
    """
    return bool(_NON_TRANSACTIONAL_RE.search(mask_sql_literals(sql)))


def execute_script(conn: sqlite3.Connection, sql: str) -> None:
    """Run a migration script atomically where SQLite allows it.

    Scripts that control transactions themselves, or that contain statements
    SQLite refuses inside a transaction, run verbatim statement by statement.
    Everything else runs inside one wrapping transaction.

    Raises:
        sqlite3.Error: If any statement fails; the wrapping transaction has
            been rolled back by then
    """
    if has_transaction_control(sql) or needs_autocommit(sql):
        script = sql
    else:
        script = f"BEGIN;\n{sql}\n;COMMIT;"
    try:
        conn.executescript(script)
    except sqlite3.Error:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


class MigrationEngine:
    """Creates, applies and deletes migrations.

    Attributes:
        catalog: Migration file catalog
        store: Metadata store
        registry: Connection registry
        timeline: Timeline for audit events
    """

    def __init__(
        self,
        catalog: MigrationCatalog,
        store: MetadataStore,
        registry: ConnectionRegistry,
        timeline: Timeline,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.registry = registry
        self.timeline = timeline

    def list(self, branch: str) -> list[Migration]:
        """Every migration, with its applied status in one branch."""
        applied = self.store.applied_migrations(branch)
        migrations = []
        for filename in self.catalog.filenames():
            info = self.catalog.describe(filename)
            migrations.append(
                Migration(
                    filename=filename,
                    content=info["content"],
                    checksum=info["checksum"],
                    created_at=info["created_at"],
                    branch=branch,
                    applied=filename in applied,
                    applied_at=applied.get(filename),
                )
            )
        return migrations

    def pending(self, branch: str) -> list[str]:
        applied = self.store.applied_migrations(branch)
        return [f for f in self.catalog.filenames() if f not in applied]

    def create(self, name: str, sql: str, branch: str) -> str:
        """Write a new migration file and log it in a branch.

        Returns:
            The new filename

        Raises:
            ValidationError: If the name is invalid or the SQL is empty
        """
        filename = self.catalog.write(name, sql)
        self.timeline.append(
            branch, EventType.MIGRATION_CREATED, {"filename": filename, "name": name}
        )
        return filename

    def apply(self, filename: str, branch: str) -> MigrationApplication:
        """Execute one migration against a branch.

        Raises:
            NotFoundError: If the migration file or the branch doesn't exist
            ConflictError: If the branch already applied the migration
            EngineExecutionError: If the SQL fails (nothing is recorded)
        """
        sql = self.catalog.read(filename)
        if self.store.get_application(branch, filename) is not None:
            raise ConflictError(
                f"Migration {filename} was already applied in branch '{branch}'",
                "migration",
                filename,
                blocking=branch,
            )

        conn = self.registry.acquire(branch)
        try:
            execute_script(conn, sql)
        except sqlite3.Error as e:
            logger.warning(
                "Migration failed",
                extra={"branch": branch, "migration": filename, "error": str(e)},
            )
            raise EngineExecutionError(str(e), branch=branch, filename=filename) from e

        application = self.store.record_application(branch, filename)
        self.timeline.append(branch, EventType.MIGRATION_APPLIED, {"filename": filename})

        logger.info("Applied migration", extra={"branch": branch, "migration": filename})
        return application

    def apply_all(self, branch: str) -> list[MigrationResult]:
        """Apply every pending migration in order, stopping at the first failure."""
        results = []
        for filename in self.pending(branch):
            try:
                self.apply(filename, branch)
            except EngineExecutionError as e:
                results.append(MigrationResult(filename=filename, success=False, error=e.message))
                break
            results.append(MigrationResult(filename=filename, success=True))
        return results

    def status(self, filename: str) -> MigrationStatus:
        """Branches that applied a migration, and whether it may be deleted."""
        self.catalog.path_for(filename)
        return MigrationStatus(
            filename=filename,
            applied_in_branches=self.store.applications_for(filename),
            can_delete=self.store.ledger_entry(filename) is None,
        )

    def delete(self, filename: str, branch: str) -> None:
        """Delete a migration that was never applied anywhere.

        Raises:
            NotFoundError: If the migration file doesn't exist
            ConflictError: If any branch ever applied it
        """
        if not self.catalog.exists(filename):
            raise NotFoundError(f"Migration not found: {filename}", "migration", filename)

        entry = self.store.ledger_entry(filename)
        if entry is not None:
            raise ConflictError(
                f"Migration {filename} has been applied (first in branch "
                f"'{entry['first_branch']}') and cannot be deleted",
                "migration",
                filename,
                blocking=entry["first_branch"],
            )

        self.catalog.remove(filename)
        self.timeline.append(branch, EventType.MIGRATION_DELETED, {"filename": filename})
        logger.info("Deleted migration", extra={"branch": branch, "migration": filename})
