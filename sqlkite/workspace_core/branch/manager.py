"""
Branch lifecycle for the sqlkite workspace.

A branch is a named byte copy of another branch's backing file. The manager
keeps three layers in step: the backing files in the project root, the
branches table of the metadata store, and the connection registry.

Backing file naming:
    main            -> db.sqlite
    feature/login   -> feature--login.db.sqlite
    (taken)         -> feature--login-2.db.sqlite

Invariants:
    - 'main' always exists and is never deleted
    - Every non-main branch records the branch it was copied from
    - No two branches share a backing file
    - A branch's connection is released before its file is copied over,
      replaced or removed
    - Deleting a branch keeps its backing file; purge() removes orphans

How to change safely:
    - Keep the file naming stable; other tools open branch files by name
    - Write a pending-operation marker before every new file-level step and
      clear it only after the metadata and timeline writes
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from ..errors import ConflictError, NotFoundError, ValidationError, WorkspaceIOError
from ..models import MAIN_BRANCH, Branch, BranchStats
from ..snapshot.engine import SnapshotEngine
from ..store.connections import ConnectionRegistry
from ..store.files import copy_database, remove_database
from ..store.metadata_store import CURRENT_BRANCH_KEY, MetadataStore
from ..timeline import EventType, Timeline

logger = logging.getLogger(__name__)

MAX_BRANCH_NAME_LENGTH = 100
BRANCH_FILE_SUFFIX = ".db.sqlite"

_BRANCH_NAME_RE = re.compile(r"^[A-Za-z0-9_\-/]+$")


def validate_branch_name(name: str | None) -> str:
    """Check a branch name and return it.

    Raises:
        ValidationError: If the name is empty, too long or malformed
    """
    if not name:
        raise ValidationError("Branch name is required", field_name="name")
    if len(name) > MAX_BRANCH_NAME_LENGTH:
        raise ValidationError(
            f"Branch name too long (max {MAX_BRANCH_NAME_LENGTH} characters)",
            field_name="name",
        )
    if not _BRANCH_NAME_RE.match(name):
        raise ValidationError(
            "Branch name may contain only letters, numbers, hyphens, underscores "
            "and slashes",
            field_name="name",
        )
    if ".." in name or "//" in name or name.startswith("/") or name.endswith("/"):
        raise ValidationError(
            "Branch name must not contain empty path segments or leading/trailing slashes",
            field_name="name",
        )
    return name


class BranchManager:
    """Creates, switches, deletes and promotes branches.

    Attributes:
        project_dir: Project root holding backing files
        store: Metadata store
        registry: Connection registry
        snapshots: Snapshot engine, for creation and pre-promote snapshots
        timeline: Timeline for audit events
        main_db_file: Backing file of main
    """

    def __init__(
        self,
        project_dir: Path,
        store: MetadataStore,
        registry: ConnectionRegistry,
        snapshots: SnapshotEngine,
        timeline: Timeline,
        main_db_file: str = "db.sqlite",
    ) -> None:
        self.project_dir = Path(project_dir)
        self.store = store
        self.registry = registry
        self.snapshots = snapshots
        self.timeline = timeline
        self.main_db_file = main_db_file

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def current_name(self) -> str:
        """Name of the branch the current-branch pointer names.

        A pointer naming a branch that no longer exists reads as main.
        """
        name = self.store.get_setting(CURRENT_BRANCH_KEY)
        if name and self.store.get_branch(name) is not None:
            return name

        logger.warning(
            "Current-branch pointer names a missing branch, using main",
            extra={"pointer": name},
        )
        return MAIN_BRANCH

    def get(self, name: str) -> Branch:
        """Raises NotFoundError if the branch doesn't exist."""
        branch = self.store.get_branch(name)
        if branch is None:
            raise NotFoundError(f"Branch '{name}' does not exist", "branch", name)
        branch.is_current = branch.name == self.current_name()
        return branch

    def current(self) -> Branch:
        return self.get(self.current_name())

    def list(self, current: str | None = None) -> list[Branch]:
        """All branches, main first, then newest first.

        Args:
            current: Branch to flag as current; the pointer when None
        """
        current = current or self.current_name()
        branches = self.store.list_branches()
        for branch in branches:
            branch.is_current = branch.name == current
        return branches

    def stats(self, name: str) -> BranchStats:
        branch = self.get(name)
        counts = self.store.branch_counts(name)
        return BranchStats(branch=branch, **counts)

    def backing_path(self, name: str) -> Path:
        return self.registry.backing_path(name)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _derive_db_file(self, name: str) -> str:
        stem = name.replace("/", "--")
        db_file = f"{stem}{BRANCH_FILE_SUFFIX}"
        counter = 2
        # Files left behind by deleted branches are skipped too
        while (
            db_file == self.main_db_file
            or self.store.branch_for_file(db_file) is not None
            or (self.project_dir / db_file).exists()
        ):
            db_file = f"{stem}-{counter}{BRANCH_FILE_SUFFIX}"
            counter += 1
        return db_file

    def create(
        self,
        name: str,
        base_branch: str | None,
        description: str = "",
    ) -> Branch:
        """Create a branch as a copy of a base branch.

        Args:
            name: New branch name
            base_branch: Branch to copy (required)
            description: Free-form description

        Returns:
            The new branch

        Raises:
            ValidationError: If the name is invalid or base_branch is missing
            ConflictError: If the name is taken
            NotFoundError: If the base branch or its backing file doesn't exist
            WorkspaceIOError: If the checkpoint or the copy fails
        """
        validate_branch_name(name)
        if not base_branch:
            raise ValidationError(
                "A base branch is required to create a branch", field_name="base_branch"
            )
        if self.store.get_branch(name) is not None:
            raise ConflictError(
                f"Branch '{name}' already exists", "branch", name, blocking=name
            )
        self.get(base_branch)

        self.registry.checkpoint(base_branch)
        source = self.registry.backing_path(base_branch)
        db_file = self._derive_db_file(name)
        dest = self.project_dir / db_file

        operation_id = self.store.begin_operation(
            "branch_create", name, db_file, {"base_branch": base_branch}
        )
        try:
            copy_database(source, dest, include_side_files=True)
        except WorkspaceIOError:
            self.store.finish_operation(operation_id)
            raise

        branch = self.store.insert_branch(
            name=name,
            db_file=db_file,
            created_from=base_branch,
            description=description or "",
        )

        snapshot = self.snapshots.capture(
            name,
            "creation",
            description=f"Branch '{name}' created from '{base_branch}'",
        )

        self.timeline.append(
            base_branch, EventType.BRANCH_CREATED, {"branch": name, "from": base_branch}
        )
        self.timeline.append(
            name,
            EventType.BRANCH_CREATED_FROM,
            {"from": base_branch, "snapshot_id": snapshot.id},
        )
        self.store.finish_operation(operation_id)

        logger.info(
            "Created branch",
            extra={"branch": name, "base_branch": base_branch, "db_file": db_file},
        )
        branch.is_current = branch.name == self.current_name()
        return branch

    # -------------------------------------------------------------------------
    # Switch / delete
    # -------------------------------------------------------------------------

    def switch(self, name: str) -> tuple[str, Branch]:
        """Point the current-branch pointer at another branch.

        Returns:
            Tuple of (previous branch name, target branch)

        Raises:
            NotFoundError: If the branch doesn't exist (pointer unchanged)
        """
        previous = self.current_name()
        if name == previous:
            return previous, self.get(name)

        target = self.get(name)
        self.registry.release(previous)
        self.store.set_setting(CURRENT_BRANCH_KEY, name)
        self.timeline.append(name, EventType.BRANCH_SWITCHED, {"from": previous, "to": name})

        logger.info("Switched branch", extra={"from_branch": previous, "to_branch": name})
        target.is_current = True
        return previous, target

    def delete(self, name: str, context_branch: str | None = None) -> Branch:
        """Delete a branch's metadata; its backing file stays on disk.

        Args:
            name: Branch to delete
            context_branch: Branch the caller is working on; it can't be
                deleted and receives the branch_deleted event

        Raises:
            ConflictError: For main, the current branch or the context branch
            NotFoundError: If the branch doesn't exist
        """
        if name == MAIN_BRANCH:
            raise ConflictError(
                "Cannot delete the main branch", "branch", name, blocking=MAIN_BRANCH
            )
        branch = self.get(name)
        current = self.current_name()
        if name in (current, context_branch):
            raise ConflictError(
                f"Cannot delete the current branch '{name}'. Switch to another branch first.",
                "branch",
                name,
                blocking=name,
            )

        self.registry.release(name)
        self.store.delete_branch(name)
        self.timeline.append(
            context_branch or current,
            EventType.BRANCH_DELETED,
            {"branch": name, "db_file": branch.db_file},
        )

        logger.info("Deleted branch", extra={"branch": name, "db_file": branch.db_file})
        return branch

    # -------------------------------------------------------------------------
    # Promote
    # -------------------------------------------------------------------------

    def promote(
        self,
        source: str,
        target: str,
        create_snapshot: bool = True,
    ) -> int | None:
        """Replace the target branch's contents with the source branch's.

        Args:
            source: Branch whose data wins
            target: Branch whose backing file is overwritten
            create_snapshot: Snapshot the target first

        Returns:
            Id of the pre-promote snapshot, or None

        Raises:
            ValidationError: If source and target are the same branch
            NotFoundError: If either branch doesn't exist
            WorkspaceIOError: If a checkpoint or the copy fails
        """
        if not source or not target:
            raise ValidationError("Both source and target branches are required")
        if source == target:
            raise ValidationError(
                "Cannot promote a branch onto itself", field_name="target_branch"
            )
        self.get(source)
        self.get(target)

        self.registry.checkpoint(source)
        self.registry.checkpoint(target)
        self.registry.release(source)
        self.registry.release(target)

        snapshot_id = None
        if create_snapshot:
            snapshot = self.snapshots.capture(
                target,
                "pre-promote",
                description=f"Before promoting '{source}' into '{target}'",
                checkpoint=False,
            )
            snapshot_id = snapshot.id

        source_path = self.registry.backing_path(source)
        target_path = self.registry.backing_path(target)
        operation_id = self.store.begin_operation(
            "branch_promote",
            target,
            target_path.name,
            {"source": source, "snapshot_id": snapshot_id},
        )
        try:
            copy_database(source_path, target_path, include_side_files=True)
        except WorkspaceIOError:
            self.store.finish_operation(operation_id)
            raise

        payload = {"source": source, "target": target, "snapshot_id": snapshot_id}
        self.timeline.append(source, EventType.BRANCH_PROMOTED, payload)
        self.timeline.append(target, EventType.BRANCH_REPLACED, payload)
        self.store.finish_operation(operation_id)

        logger.info(
            "Promoted branch",
            extra={"source_branch": source, "target_branch": target, "snapshot_id": snapshot_id},
        )
        return snapshot_id

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def orphaned_files(self) -> list[dict[str, Any]]:
        """Backing files in the project root that no branch references."""
        referenced = {branch.db_file for branch in self.store.list_branches()}
        orphans = []
        for path in sorted(self.project_dir.glob(f"*{BRANCH_FILE_SUFFIX}")):
            if path.is_file() and path.name not in referenced:
                orphans.append({"db_file": path.name, "size": path.stat().st_size})
        return orphans

    def purge(self, db_file: str, branch: str) -> dict[str, Any]:
        """Delete one orphaned backing file together with its side files.

        Args:
            db_file: Filename in the project root
            branch: Branch that receives the branch_file_purged event

        Raises:
            ValidationError: If db_file is not a bare filename
            ConflictError: If a branch still references the file
            NotFoundError: If the file is not an orphaned backing file
            WorkspaceIOError: If removal fails
        """
        if not db_file or Path(db_file).name != db_file:
            raise ValidationError("db_file must be a filename in the project root", "db_file")

        owner = self.store.branch_for_file(db_file)
        if owner is not None:
            raise ConflictError(
                f"File '{db_file}' is the backing file of branch '{owner.name}'",
                "backing_file",
                db_file,
                blocking=owner.name,
            )

        orphan = next((o for o in self.orphaned_files() if o["db_file"] == db_file), None)
        if orphan is None:
            raise NotFoundError(
                f"No orphaned backing file named '{db_file}'", "backing_file", db_file
            )

        operation_id = self.store.begin_operation("branch_file_purge", branch, db_file)
        try:
            remove_database(self.project_dir / db_file)
        except WorkspaceIOError:
            self.store.finish_operation(operation_id)
            raise

        self.timeline.append(
            branch, EventType.BRANCH_FILE_PURGED, {"db_file": db_file, "size": orphan["size"]}
        )
        self.store.finish_operation(operation_id)

        logger.info("Purged orphaned backing file", extra={"db_file": db_file, "size_bytes": orphan["size"]})
        return orphan
