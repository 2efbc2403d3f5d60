"""
sqlkite workspace core - git-style branches, migrations and snapshots over SQLite.

This package layers workspace semantics on top of plain SQLite files, with
no server process of its own:
- Branches are byte copies of a database file, with a recorded parent
- Migrations are global SQL files, applied independently per branch
- Snapshots are point-in-time copies restorable into their own branch
- A branch-tagged timeline records every mutating operation

Architecture:
    ┌──────────────┐     ┌──────────────────┐
    │ Presentation │────▶│ WorkspaceService │  (resolves BranchContext)
    │ (HTTP / CLI) │     └────────┬─────────┘
    └──────────────┘              │
               ┌──────────────────┼──────────────────┐
               ▼                  ▼                  ▼
        ┌─────────────┐   ┌───────────────┐   ┌──────────────┐
        │BranchManager│   │MigrationEngine│   │SnapshotEngine│
        └──────┬──────┘   └───────┬───────┘   └──────┬───────┘
               └──────────────────┼──────────────────┘
                    ┌─────────────┼──────────────┐
                    ▼             ▼              ▼
           ┌──────────────┐ ┌──────────┐ ┌────────────────────┐
           │ConnectionReg.│ │ Timeline │ │   MetadataStore    │
           │(branch files)│ └────┬─────┘ │ (.studio/meta.db)  │
           └──────────────┘      └──────▶└────────────────────┘

Invariants:
    - Exactly one 'main' branch exists and it is never deleted
    - Persisted state is the branch backing files plus the metadata store;
      cached connections are never a source of truth
    - Every byte-level copy is preceded by a WAL checkpoint
    - File-level steps are bracketed by pending-operation markers

How to change safely:
    - The on-disk layout is shared with other tools; extend it, never rename
    - Bump MetadataStore.SCHEMA_VERSION for every metadata schema change
"""

from ._version import __version__
from .api import WorkspaceService
from .config import WorkspaceConfig
from .errors import (
    ConflictError,
    EngineExecutionError,
    NotFoundError,
    ValidationError,
    WorkspaceError,
    WorkspaceIOError,
)
from .manager import WorkspaceManager
from .models import MAIN_BRANCH, BranchContext

__all__ = [
    "MAIN_BRANCH",
    "BranchContext",
    "ConflictError",
    "EngineExecutionError",
    "NotFoundError",
    "ValidationError",
    "WorkspaceConfig",
    "WorkspaceError",
    "WorkspaceIOError",
    "WorkspaceManager",
    "WorkspaceService",
    "__version__",
]
