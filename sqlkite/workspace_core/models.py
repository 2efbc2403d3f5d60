"""
Data model for the sqlkite workspace.

Plain dataclasses mirroring the rows of the metadata store. Each exposes
``to_dict()`` for presentation layers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

MAIN_BRANCH = "main"


@dataclass(frozen=True)
class BranchContext:
    """Branch a single request operates on.

    Resolved once at the start of a service call and passed explicitly to
    every engine method, instead of re-reading the process-wide pointer
    mid-operation.
    """

    branch: str


@dataclass
class Branch:
    """A named, isolated copy of the project database.

    Attributes:
        name: Unique branch name
        db_file: Backing file, relative to the project root
        created_at: Creation timestamp (SQLite CURRENT_TIMESTAMP)
        created_from: Parent branch name (None only for main)
        description: Free-form description
        id: Row id in the metadata store
        is_current: Whether the current-branch pointer names this branch
    """

    name: str
    db_file: str
    created_at: str | None
    created_from: str | None
    description: str = ""
    id: int | None = None
    is_current: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BranchStats:
    """Branch with counts of its dependent metadata."""

    branch: Branch
    migrations_applied: int
    snapshots: int
    events: int

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.branch.to_dict(),
            "stats": {
                "migrations_applied": self.migrations_applied,
                "snapshots": self.snapshots,
                "events": self.events,
            },
        }


@dataclass
class Migration:
    """A migration script from the global catalog, seen from one branch.

    Attributes:
        filename: ``{NNN}_{name}.sql``
        content: SQL text
        checksum: SHA-256 hex digest of the content
        created_at: File modification time (ISO 8601, UTC)
        branch: Branch the applied status refers to
        applied: Whether the branch applied it
        applied_at: When the branch applied it
    """

    filename: str
    content: str
    checksum: str
    created_at: str
    branch: str
    applied: bool = False
    applied_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationApplication:
    """One branch executed one migration."""

    branch: str
    filename: str
    applied_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationResult:
    """Outcome of one file during apply-all."""

    filename: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"filename": self.filename, "success": self.success}
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class MigrationStatus:
    """Where a migration has been applied and whether it may be deleted."""

    filename: str
    applied_in_branches: list[MigrationApplication] = field(default_factory=list)
    can_delete: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "applied_in_branches": [a.to_dict() for a in self.applied_in_branches],
            "can_delete": self.can_delete,
        }


@dataclass
class Snapshot:
    """Point-in-time copy of one branch's backing file.

    Attributes:
        id: Row id in the metadata store
        branch: Owning branch
        filename: File under the snapshots directory
        name: Display name
        description: Free-form description
        size: Size of the copy in bytes at capture time
        created_at: Capture timestamp
        exists: Whether the snapshot bytes are still on disk
    """

    id: int
    branch: str
    filename: str
    name: str
    description: str | None
    size: int | None
    created_at: str | None
    exists: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TimelineEvent:
    """A branch-tagged audit record."""

    id: int
    branch: str
    type: str
    payload: dict[str, Any]
    created_at: str | None
    is_current_branch: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TimelinePage:
    """One page of timeline events plus the unpaged total."""

    events: list[TimelineEvent]
    total: int
    limit: int
    offset: int
    branch: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "branch": self.branch,
        }


@dataclass
class PendingOperation:
    """Marker bracketing a file-level step.

    A row that survives a restart means the operation was interrupted
    between its file step and its metadata write.
    """

    id: int
    kind: str
    branch: str
    target: str | None
    payload: dict[str, Any]
    started_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
