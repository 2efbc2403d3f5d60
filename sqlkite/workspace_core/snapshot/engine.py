"""
Per-branch snapshot capture and restore.

A snapshot is a byte copy of one branch's backing file, taken right after a
WAL checkpoint so the primary file alone is consistent.

Snapshot file naming:
    snapshots/<branch-slug>-<name-slug>-<UTC timestamp>.db

Invariants:
    - A snapshot belongs to exactly one branch and is restorable only into it
    - Restore releases the branch connection before overwriting the file
    - Stale -wal/-shm files of the branch are removed on restore
    - Deleting a snapshot removes its metadata row, never its bytes

How to change safely:
    - Keep the filename format parseable by older tools (plain .db files)
    - Never restore across branches; promotion is the only cross-branch path
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from ..errors import ConflictError, NotFoundError, ValidationError, WorkspaceIOError
from ..models import Snapshot
from ..store.connections import ConnectionRegistry
from ..store.files import copy_database, remove_side_files
from ..store.metadata_store import MetadataStore
from ..timeline import EventType, Timeline

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_NAME_LENGTH = 100


def slugify(value: str, fallback: str = "snapshot") -> str:
    """Reduce a display name to filename-safe characters."""
    slug = re.sub(r"[^A-Za-z0-9_-]+", "-", value).strip("-")
    return slug or fallback


def _timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"


class SnapshotEngine:
    """Creates, restores and lists branch snapshots.

    Attributes:
        snapshots_dir: Directory holding snapshot files
        store: Metadata store
        registry: Connection registry
        timeline: Timeline for audit events
    """

    def __init__(
        self,
        snapshots_dir: Path,
        store: MetadataStore,
        registry: ConnectionRegistry,
        timeline: Timeline,
    ) -> None:
        self.snapshots_dir = Path(snapshots_dir)
        self.store = store
        self.registry = registry
        self.timeline = timeline

    def path_for(self, snapshot: Snapshot) -> Path:
        return self.snapshots_dir / snapshot.filename

    def _with_exists(self, snapshot: Snapshot) -> Snapshot:
        return replace(snapshot, exists=self.path_for(snapshot).is_file())

    def _new_filename(self, branch: str, name: str) -> str:
        base = f"{slugify(branch.replace('/', '--'), 'branch')}-{slugify(name)}-{_timestamp()}"
        filename = f"{base}.db"
        counter = 2
        while (self.snapshots_dir / filename).exists():
            filename = f"{base}-{counter}.db"
            counter += 1
        return filename

    def capture(
        self,
        branch: str,
        name: str,
        description: str | None = None,
        checkpoint: bool = True,
    ) -> Snapshot:
        """Copy a branch's backing file into a new snapshot, without logging.

        Used directly by branch creation and promotion, which log the
        snapshot as part of their own events.

        Args:
            branch: Branch to capture
            name: Display name
            description: Optional description
            checkpoint: Checkpoint the WAL first (False when the caller
                already checkpointed and released the branch)

        Raises:
            NotFoundError: If the branch or its backing file does not exist
            WorkspaceIOError: If the checkpoint or the copy fails
        """
        if checkpoint:
            self.registry.checkpoint(branch)

        backing = self.registry.backing_path(branch)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        filename = self._new_filename(branch, name)
        dest = self.snapshots_dir / filename

        # Side files are left behind: the checkpoint emptied the WAL
        size = copy_database(backing, dest, include_side_files=False)

        try:
            snapshot = self.store.insert_snapshot(
                branch=branch,
                filename=filename,
                name=name,
                size=size,
                description=description,
            )
        except Exception:
            dest.unlink(missing_ok=True)
            raise

        logger.info(
            "Created snapshot",
            extra={
                "branch": branch,
                "snapshot_id": snapshot.id,
                "snapshot_file": filename,
                "size_bytes": size,
            },
        )
        return snapshot

    def create(self, name: str, branch: str, description: str | None = None) -> Snapshot:
        """Snapshot a branch and log it on the branch's timeline.

        Raises:
            ValidationError: If the name is empty or too long
            NotFoundError: If the branch or its backing file does not exist
            WorkspaceIOError: If the checkpoint or the copy fails
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Snapshot name is required", field_name="name")
        if len(name) > MAX_SNAPSHOT_NAME_LENGTH:
            raise ValidationError(
                f"Snapshot name too long (max {MAX_SNAPSHOT_NAME_LENGTH} characters)",
                field_name="name",
            )

        snapshot = self.capture(branch, name, description)
        self.timeline.append(
            branch,
            EventType.SNAPSHOT_CREATED,
            {
                "snapshot_id": snapshot.id,
                "filename": snapshot.filename,
                "name": snapshot.name,
                "size": snapshot.size,
            },
        )
        return snapshot

    def get(self, snapshot_id: int) -> Snapshot:
        """Raises NotFoundError if the snapshot row doesn't exist."""
        snapshot = self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Snapshot {snapshot_id} not found", "snapshot", str(snapshot_id))
        return self._with_exists(snapshot)

    def list(self, branch: str | None = None) -> list[Snapshot]:
        """Snapshots newest first; every branch's when branch is None."""
        return [self._with_exists(s) for s in self.store.list_snapshots(branch)]

    def _owned_snapshot(self, snapshot_id: int, branch: str, action: str) -> Snapshot:
        snapshot = self.get(snapshot_id)
        if snapshot.branch != branch:
            raise ConflictError(
                f"Cannot {action} snapshot {snapshot_id}: it belongs to branch "
                f"'{snapshot.branch}', not '{branch}'",
                "snapshot",
                str(snapshot_id),
                blocking=snapshot.branch,
            )
        return snapshot

    def restore(self, snapshot_id: int, branch: str) -> Snapshot:
        """Overwrite a branch's backing file with one of its own snapshots.

        Raises:
            NotFoundError: If the snapshot row or its file is missing
            ConflictError: If the snapshot belongs to another branch
            WorkspaceIOError: If the copy fails
        """
        snapshot = self._owned_snapshot(snapshot_id, branch, "restore")
        source = self.path_for(snapshot)
        if not snapshot.exists:
            raise NotFoundError(
                f"Snapshot file is missing: {snapshot.filename}",
                "snapshot_file",
                snapshot.filename,
            )

        backing = self.registry.backing_path(branch)
        operation_id = self.store.begin_operation(
            "snapshot_restore", branch, backing.name, {"snapshot_id": snapshot.id}
        )

        self.registry.release(branch)
        try:
            copy_database(source, backing, include_side_files=False)
        except WorkspaceIOError:
            # The copy publishes atomically, so the old file is still intact
            self.store.finish_operation(operation_id)
            raise
        remove_side_files(backing)

        self.timeline.append(
            branch,
            EventType.SNAPSHOT_RESTORED,
            {"snapshot_id": snapshot.id, "filename": snapshot.filename},
        )
        self.store.finish_operation(operation_id)

        logger.info(
            "Restored snapshot",
            extra={"branch": branch, "snapshot_id": snapshot.id, "snapshot_file": snapshot.filename},
        )
        return snapshot

    def delete(self, snapshot_id: int, branch: str) -> Snapshot:
        """Remove a snapshot's metadata row; the file stays on disk.

        Raises:
            NotFoundError: If the snapshot doesn't exist
            ConflictError: If the snapshot belongs to another branch
        """
        snapshot = self._owned_snapshot(snapshot_id, branch, "delete")
        self.store.delete_snapshot(snapshot.id)
        self.timeline.append(
            branch,
            EventType.SNAPSHOT_DELETED,
            {"snapshot_id": snapshot.id, "filename": snapshot.filename},
        )
        logger.info("Deleted snapshot record", extra={"branch": branch, "snapshot_id": snapshot.id})
        return snapshot
