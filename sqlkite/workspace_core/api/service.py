"""
Transport-independent operation surface of the workspace.

Presentation layers (HTTP routes, CLIs, editors) call WorkspaceService and
serialise the returned dicts. Errors are raised as WorkspaceError subclasses;
render them with ``WorkspaceError.to_dict()``.

Every call that works on a branch takes an optional ``branch``. When it is
omitted, the current-branch pointer is read once at call entry, and that
value is used for the whole call.

Invariants:
    - Each call resolves exactly one BranchContext
    - The service holds no state besides the manager

How to change safely:
    - Add new operations without changing existing result keys
    - Keep result values JSON-serialisable
"""

from __future__ import annotations

import logging
from typing import Any

from ..manager import WorkspaceManager
from ..models import BranchContext

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Dict-in, dict-out workspace operations.

    Attributes:
        manager: Open workspace manager

    Example:
        >>> service = WorkspaceService(manager)
        >>> service.create_branch("feature/x", base_branch="main")["db_file"]
        'feature--x.db.sqlite'
    """

    def __init__(self, manager: WorkspaceManager) -> None:
        self.manager = manager

    def _context(self, branch: str | None) -> BranchContext:
        ctx = self.manager.context(branch)
        logger.debug("Resolved branch context", extra={"branch": ctx.branch})
        return ctx

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------

    def list_branches(self, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        return {
            "current": ctx.branch,
            "branches": [b.to_dict() for b in self.manager.branches.list(current=ctx.branch)],
        }

    def current_branch(self, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        return self.manager.branches.get(ctx.branch).to_dict()

    def create_branch(
        self,
        name: str,
        base_branch: str | None = None,
        description: str = "",
    ) -> dict[str, Any]:
        """Create a branch from an explicit base branch.

        The base branch is never defaulted from the current branch.
        """
        created = self.manager.branches.create(name, base_branch, description)
        return created.to_dict()

    def switch_branch(self, name: str) -> dict[str, Any]:
        previous, target = self.manager.branches.switch(name)
        return {"previous": previous, "current": target.name}

    def delete_branch(self, name: str, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        self.manager.branches.delete(name, context_branch=ctx.branch)
        return {"success": True}

    def promote_branch(
        self,
        source_branch: str,
        target_branch: str,
        create_snapshot: bool = True,
    ) -> dict[str, Any]:
        snapshot_id = self.manager.branches.promote(
            source_branch, target_branch, create_snapshot=create_snapshot
        )
        return {"success": True, "snapshot_id": snapshot_id}

    def branch_stats(self, name: str) -> dict[str, Any]:
        return self.manager.branches.stats(name).to_dict()

    # -------------------------------------------------------------------------
    # Migrations
    # -------------------------------------------------------------------------

    def list_migrations(self, branch: str | None = None) -> list[dict[str, Any]]:
        ctx = self._context(branch)
        return [m.to_dict() for m in self.manager.migrations.list(ctx.branch)]

    def create_migration(self, name: str, sql: str, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        filename = self.manager.migrations.create(name, sql, ctx.branch)
        return {"success": True, "filename": filename}

    def apply_migration(self, filename: str, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        self.manager.migrations.apply(filename, ctx.branch)
        return {"success": True, "filename": filename, "branch": ctx.branch}

    def apply_all_migrations(self, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        results = self.manager.migrations.apply_all(ctx.branch)
        return {"branch": ctx.branch, "applied": [r.to_dict() for r in results]}

    def delete_migration(self, filename: str, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        self.manager.migrations.delete(filename, ctx.branch)
        return {"success": True}

    def migration_status(self, filename: str) -> dict[str, Any]:
        return self.manager.migrations.status(filename).to_dict()

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def list_snapshots(
        self,
        branch: str | None = None,
        all_branches: bool = False,
    ) -> list[dict[str, Any]]:
        ctx = self._context(branch)
        scope = None if all_branches else ctx.branch
        return [s.to_dict() for s in self.manager.snapshots.list(scope)]

    def create_snapshot(
        self,
        name: str,
        description: str | None = None,
        branch: str | None = None,
    ) -> dict[str, Any]:
        ctx = self._context(branch)
        return self.manager.snapshots.create(name, ctx.branch, description).to_dict()

    def restore_snapshot(self, snapshot_id: int, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        snapshot = self.manager.snapshots.restore(snapshot_id, ctx.branch)
        return {"success": True, "snapshot_id": snapshot.id, "branch": ctx.branch}

    def delete_snapshot(self, snapshot_id: int, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        self.manager.snapshots.delete(snapshot_id, ctx.branch)
        return {"success": True}

    def get_snapshot(self, snapshot_id: int) -> dict[str, Any]:
        return self.manager.snapshots.get(snapshot_id).to_dict()

    # -------------------------------------------------------------------------
    # Timeline
    # -------------------------------------------------------------------------

    def query_timeline(
        self,
        limit: int | None = None,
        offset: int = 0,
        all_branches: bool = False,
        branch: str | None = None,
    ) -> dict[str, Any]:
        ctx = self._context(branch)
        page = self.manager.timeline.query(
            ctx.branch, limit=limit, offset=offset, all_branches=all_branches
        )
        return page.to_dict()

    def timeline_stats(self, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        return self.manager.timeline.stats(ctx.branch)

    def clear_timeline(self, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        deleted = self.manager.timeline.clear(ctx.branch)
        return {"success": True, "deleted": deleted}

    # -------------------------------------------------------------------------
    # Compare mode
    # -------------------------------------------------------------------------

    def compare_checkpoint(self, branches: list[str]) -> dict[str, Any]:
        self.manager.comparer.checkpoint(branches)
        return {"success": True}

    def compare_query(self, branch: str, sql: str) -> dict[str, Any]:
        return self.manager.comparer.query(branch, sql)

    def compare_close(self, branches: list[str]) -> dict[str, Any]:
        self.manager.comparer.close(branches)
        return {"success": True}

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def orphaned_files(self) -> list[dict[str, Any]]:
        return self.manager.branches.orphaned_files()

    def purge_file(self, db_file: str, branch: str | None = None) -> dict[str, Any]:
        ctx = self._context(branch)
        purged = self.manager.branches.purge(db_file, ctx.branch)
        return {"success": True, **purged}

    def interrupted_operations(self) -> list[dict[str, Any]]:
        return [op.to_dict() for op in self.manager.interrupted_operations()]

    def resolve_interrupted(self, operation_id: int) -> dict[str, Any]:
        return self.manager.resolve_interrupted(operation_id).to_dict()
