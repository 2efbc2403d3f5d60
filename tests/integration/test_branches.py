"""
Integration tests for branch lifecycle.

Tests cover:
- Project initialisation
- Branch create (copy fidelity, naming, creation snapshot, events)
- Switch, delete and their refusals
- Promotion
- Orphaned backing file purge
- Interrupted-operation markers
"""

import tempfile
from pathlib import Path

import pytest

from sqlkite.workspace_core import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkspaceConfig,
    WorkspaceIOError,
    WorkspaceManager,
)
from sqlkite.workspace_core.branch import validate_branch_name
from sqlkite.workspace_core.store import CURRENT_BRANCH_KEY


@pytest.fixture
def project_dir():
    """Create temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "proj"


@pytest.fixture
def workspace(project_dir):
    """Create and open a workspace with a populated main branch."""
    ws = WorkspaceManager(WorkspaceConfig.for_project(project_dir))
    ws.open()
    conn = ws.registry.acquire("main")
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
    conn.executemany("INSERT INTO users (name) VALUES (?)", [("alice",), ("bob",), ("carol",)])
    yield ws
    ws.close()


def count_rows(ws, branch, table="users"):
    return ws.registry.acquire(branch).execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def event_types(ws, branch):
    return [e.type for e in ws.timeline.query(branch, limit=100).events]


class TestInitialisation:
    """Tests for opening a project."""

    def test_open_creates_layout(self, project_dir):
        """A fresh project gets its directories, main file and metadata."""
        with WorkspaceManager(WorkspaceConfig.for_project(project_dir)) as ws:
            assert (project_dir / "db.sqlite").exists()
            assert (project_dir / "migrations").is_dir()
            assert (project_dir / "snapshots").is_dir()
            assert (project_dir / ".studio" / "meta.db").exists()
            assert ws.current_branch() == "main"
            assert ws.branches.get("main").created_from is None
            assert ws.is_open
        assert not ws.is_open

    def test_open_without_create(self, project_dir):
        """Opening a missing project without create raises NotFoundError."""
        ws = WorkspaceManager(WorkspaceConfig.for_project(project_dir))
        with pytest.raises(NotFoundError):
            ws.open(create=False)
        assert not ws.is_open
        assert not project_dir.exists()

    def test_reopen_keeps_state(self, workspace, project_dir):
        """Branches survive a close and reopen."""
        workspace.branches.create("dev", base_branch="main")
        workspace.close()

        with WorkspaceManager(WorkspaceConfig.for_project(project_dir)) as ws:
            assert [b.name for b in ws.branches.list()] == ["main", "dev"]
            assert count_rows(ws, "dev") == 3


class TestBranchNames:
    """Tests for validate_branch_name."""

    @pytest.mark.parametrize("name", ["dev", "feature/login", "fix_1-a", "a/b/c"])
    def test_valid(self, name):
        assert validate_branch_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "has space", "dot.name", "a..b", "a//b", "/lead", "trail/", "x" * 101, "semi;"],
    )
    def test_invalid(self, name):
        with pytest.raises(ValidationError):
            validate_branch_name(name)


class TestCreate:
    """Tests for BranchManager.create."""

    def test_copy_fidelity(self, workspace):
        """The new branch has the base's tables and row counts."""
        branch = workspace.branches.create("dev", base_branch="main", description="work")
        assert branch.created_from == "main"
        assert branch.description == "work"
        assert branch.db_file == "dev.db.sqlite"
        assert count_rows(workspace, "dev") == count_rows(workspace, "main") == 3

    def test_unflushed_wal_is_copied(self, workspace):
        """Rows still in the base's WAL reach the copy."""
        workspace.registry.acquire("main").execute("INSERT INTO users (name) VALUES ('dave')")
        workspace.branches.create("dev", base_branch="main")
        assert count_rows(workspace, "dev") == 4

    def test_slash_names_map_to_files(self, workspace, project_dir):
        """'/' becomes '--' in the backing file name."""
        branch = workspace.branches.create("feature/login", base_branch="main")
        assert branch.db_file == "feature--login.db.sqlite"
        assert (project_dir / "feature--login.db.sqlite").exists()

    def test_base_branch_required(self, workspace):
        """Creating without a base branch is a ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            workspace.branches.create("dev", base_branch=None)
        assert exc_info.value.field_name == "base_branch"
        assert workspace.store.get_branch("dev") is None

    def test_duplicate_name(self, workspace):
        """An existing name is a Conflict."""
        workspace.branches.create("dev", base_branch="main")
        with pytest.raises(ConflictError):
            workspace.branches.create("dev", base_branch="main")

    def test_missing_base(self, workspace, project_dir):
        """A missing base is NotFound, and nothing is written."""
        with pytest.raises(NotFoundError):
            workspace.branches.create("dev", base_branch="ghost")
        assert not (project_dir / "dev.db.sqlite").exists()

    def test_creation_snapshot_and_events(self, workspace):
        """Create snapshots the new branch and logs in both branches."""
        workspace.branches.create("dev", base_branch="main")

        snapshots = workspace.snapshots.list("dev")
        assert len(snapshots) == 1
        assert snapshots[0].name == "creation"

        assert event_types(workspace, "main") == ["branch_created"]
        assert event_types(workspace, "dev") == ["branch_created_from"]

        created_from = workspace.timeline.query("dev").events[0]
        assert created_from.payload == {"from": "main", "snapshot_id": snapshots[0].id}

    def test_copy_failure_clears_marker(self, workspace, monkeypatch):
        """A failed copy leaves no branch row and no pending marker."""

        def broken_copy(*args, **kwargs):
            raise WorkspaceIOError("disk full", operation="copy")

        monkeypatch.setattr("sqlkite.workspace_core.branch.manager.copy_database", broken_copy)

        with pytest.raises(WorkspaceIOError):
            workspace.branches.create("dev", base_branch="main")
        assert workspace.store.get_branch("dev") is None
        assert workspace.interrupted_operations() == []


class TestSwitchAndDelete:
    """Tests for switch and delete."""

    def test_switch(self, workspace):
        """Switch moves the pointer and logs in the target branch."""
        workspace.branches.create("dev", base_branch="main")
        previous, target = workspace.branches.switch("dev")

        assert previous == "main"
        assert target.is_current
        assert workspace.current_branch() == "dev"
        assert event_types(workspace, "dev")[0] == "branch_switched"
        assert not workspace.registry.is_open("main")

    def test_switch_to_current_is_noop(self, workspace):
        """Switching to the current branch logs nothing."""
        workspace.branches.switch("main")
        assert event_types(workspace, "main") == []

    def test_switch_missing(self, workspace):
        """Switching to a missing branch leaves the pointer unchanged."""
        with pytest.raises(NotFoundError):
            workspace.branches.switch("ghost")
        assert workspace.current_branch() == "main"

    def test_dangling_pointer_reads_main(self, workspace):
        """A pointer naming a missing branch falls back to main."""
        workspace.store.set_setting(CURRENT_BRANCH_KEY, "ghost")
        assert workspace.current_branch() == "main"

    def test_delete(self, workspace, project_dir):
        """Delete drops metadata, keeps the file, logs in the current branch."""
        workspace.branches.create("dev", base_branch="main")
        workspace.registry.acquire("dev")

        deleted = workspace.branches.delete("dev")

        assert deleted.db_file == "dev.db.sqlite"
        assert workspace.store.get_branch("dev") is None
        assert workspace.snapshots.list("dev") == []
        assert workspace.timeline.query("dev").total == 0
        assert not workspace.registry.is_open("dev")
        assert (project_dir / "dev.db.sqlite").exists()
        assert event_types(workspace, "main")[0] == "branch_deleted"

    def test_delete_refusals(self, workspace):
        """main, the current branch and missing branches can't be deleted."""
        workspace.branches.create("dev", base_branch="main")
        with pytest.raises(ConflictError):
            workspace.branches.delete("main")

        workspace.branches.switch("dev")
        with pytest.raises(ConflictError):
            workspace.branches.delete("dev")

        with pytest.raises(NotFoundError):
            workspace.branches.delete("ghost")

    def test_delete_refuses_context_branch(self, workspace):
        """The branch a caller is working on can't be deleted."""
        workspace.branches.create("dev", base_branch="main")
        with pytest.raises(ConflictError):
            workspace.branches.delete("dev", context_branch="dev")

    def test_recreate_skips_retained_file(self, workspace):
        """A re-created branch doesn't overwrite the old retained file."""
        workspace.branches.create("dev", base_branch="main")
        workspace.branches.delete("dev")
        branch = workspace.branches.create("dev", base_branch="main")
        assert branch.db_file == "dev-2.db.sqlite"


class TestPromote:
    """Tests for promotion."""

    def test_promote_replaces_target(self, workspace):
        """Target gets the source's contents; a pre-promote snapshot is kept."""
        workspace.branches.create("dev", base_branch="main")
        workspace.registry.acquire("dev").execute("CREATE TABLE posts (id INTEGER)")

        snapshot_id = workspace.branches.promote("dev", "main")

        tables = {
            row[0]
            for row in workspace.registry.acquire("main").execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            )
        }
        assert "posts" in tables

        snapshot = workspace.snapshots.get(snapshot_id)
        assert snapshot.branch == "main"
        assert snapshot.name == "pre-promote"

        assert event_types(workspace, "dev")[0] == "branch_promoted"
        assert event_types(workspace, "main")[0] == "branch_replaced"

    def test_pre_promote_snapshot_restores_old_state(self, workspace):
        """Restoring the pre-promote snapshot undoes the promotion."""
        workspace.branches.create("dev", base_branch="main")
        workspace.registry.acquire("dev").execute("DELETE FROM users")

        snapshot_id = workspace.branches.promote("dev", "main")
        assert count_rows(workspace, "main") == 0

        workspace.snapshots.restore(snapshot_id, "main")
        assert count_rows(workspace, "main") == 3

    def test_promote_without_snapshot(self, workspace):
        """create_snapshot=False returns None and captures nothing."""
        workspace.branches.create("dev", base_branch="main")
        assert workspace.branches.promote("dev", "main", create_snapshot=False) is None
        assert workspace.snapshots.list("main") == []

    def test_promote_refusals(self, workspace):
        """Self-promotion and missing branches are rejected."""
        with pytest.raises(ValidationError):
            workspace.branches.promote("main", "main")
        with pytest.raises(NotFoundError):
            workspace.branches.promote("ghost", "main")


class TestPurge:
    """Tests for orphaned file purge."""

    def test_purge_orphan(self, workspace, project_dir):
        """A deleted branch's file is listed as orphaned and can be purged."""
        workspace.branches.create("dev", base_branch="main")
        workspace.branches.delete("dev")

        orphans = workspace.branches.orphaned_files()
        assert [o["db_file"] for o in orphans] == ["dev.db.sqlite"]

        workspace.branches.purge("dev.db.sqlite", "main")

        assert not (project_dir / "dev.db.sqlite").exists()
        assert workspace.branches.orphaned_files() == []
        assert event_types(workspace, "main")[0] == "branch_file_purged"

    def test_purge_refusals(self, workspace):
        """Referenced, unknown and path-like names are rejected."""
        workspace.branches.create("dev", base_branch="main")
        with pytest.raises(ConflictError) as exc_info:
            workspace.branches.purge("dev.db.sqlite", "main")
        assert exc_info.value.blocking == "dev"

        with pytest.raises(NotFoundError):
            workspace.branches.purge("nope.db.sqlite", "main")
        with pytest.raises(ValidationError):
            workspace.branches.purge("../dev.db.sqlite", "main")


class TestStats:
    """Tests for branch stats."""

    def test_stats(self, workspace):
        """Stats count snapshots and events of one branch."""
        workspace.branches.create("dev", base_branch="main")
        stats = workspace.branches.stats("dev").to_dict()
        assert stats["name"] == "dev"
        assert stats["stats"] == {"migrations_applied": 0, "snapshots": 1, "events": 1}


class TestInterruptedOperations:
    """Tests for pending-operation markers across restarts."""

    def test_leftover_marker_is_reported(self, workspace, project_dir):
        """Markers from an interrupted run are exposed on reopen."""
        op_id = workspace.store.begin_operation("branch_promote", "main", "db.sqlite")
        workspace.close()

        with WorkspaceManager(WorkspaceConfig.for_project(project_dir)) as ws:
            ops = ws.interrupted_operations()
            assert [op.id for op in ops] == [op_id]

            resolved = ws.resolve_interrupted(op_id)
            assert resolved.kind == "branch_promote"
            assert ws.interrupted_operations() == []

            with pytest.raises(NotFoundError):
                ws.resolve_interrupted(op_id)
