"""
Migration module for the sqlkite workspace.

Invariants:
    - The catalog is global; application state is per branch
    - Applied migrations are never deleted
"""

from .catalog import MigrationCatalog, checksum, validate_migration_name
from .engine import MigrationEngine, execute_script, has_transaction_control, needs_autocommit

__all__ = [
    "MigrationCatalog",
    "MigrationEngine",
    "checksum",
    "execute_script",
    "has_transaction_control",
    "needs_autocommit",
    "validate_migration_name",
]
