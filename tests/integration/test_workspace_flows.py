"""
End-to-end workspace scenarios through WorkspaceService.

Tests cover:
- Branch isolation
- Migration independence across branches
- Promotion with pre-promote snapshot
- apply-all halting
- Explicit branch context vs. the current-branch pointer
- Error rendering for presentation layers
"""

import tempfile
from pathlib import Path

import pytest

from sqlkite.workspace_core import (
    ConflictError,
    EngineExecutionError,
    NotFoundError,
    ValidationError,
    WorkspaceConfig,
    WorkspaceManager,
    WorkspaceService,
)


@pytest.fixture
def manager():
    """Create and open a workspace."""
    with tempfile.TemporaryDirectory() as tmpdir:
        ws = WorkspaceManager(WorkspaceConfig.for_project(Path(tmpdir)))
        ws.open()
        yield ws
        ws.close()


@pytest.fixture
def service(manager):
    """Create service over the workspace."""
    return WorkspaceService(manager)


def rows(manager, branch, sql):
    return [tuple(r) for r in manager.registry.acquire(branch).execute(sql).fetchall()]


class TestInvariants:
    """Tests for branch table invariants."""

    def test_only_main_has_no_parent(self, service):
        """created_from is None exactly for main, and main is unique."""
        service.create_branch("dev", base_branch="main")
        service.create_branch("feature/x", base_branch="dev")

        branches = service.list_branches()["branches"]
        assert [b["name"] for b in branches].count("main") == 1
        for b in branches:
            assert (b["created_from"] is None) == (b["name"] == "main")


class TestScenarios:
    """Workspace scenarios."""

    def test_branch_isolation(self, service, manager):
        """Rows inserted in dev are invisible in main."""
        manager.registry.acquire("main").execute("CREATE TABLE t (id INTEGER)")
        service.create_branch("dev", base_branch="main")
        service.switch_branch("dev")
        manager.registry.acquire("dev").execute("INSERT INTO t VALUES (1)")

        result = service.switch_branch("main")

        assert result == {"previous": "dev", "current": "main"}
        assert rows(manager, "main", "SELECT COUNT(*) FROM t") == [(0,)]
        assert rows(manager, "dev", "SELECT COUNT(*) FROM t") == [(1,)]

    def test_migration_independence(self, service, manager):
        """A migration applied in main still applies to dev on its own."""
        service.create_branch("dev", base_branch="main")
        created = service.create_migration("init", "CREATE TABLE t (id INTEGER);")
        assert created["filename"] == "001_init.sql"

        service.apply_migration("001_init.sql")
        with pytest.raises(ConflictError):
            service.delete_migration("001_init.sql")

        result = service.apply_migration("001_init.sql", branch="dev")
        assert result["branch"] == "dev"

        status = service.migration_status("001_init.sql")
        assert sorted(a["branch"] for a in status["applied_in_branches"]) == ["dev", "main"]
        assert status["can_delete"] is False

    def test_promotion(self, service, manager):
        """Promotion makes main identical to dev and adds a pre-promote snapshot."""
        manager.registry.acquire("main").execute("CREATE TABLE t (id INTEGER)")
        service.create_branch("dev", base_branch="main")
        manager.registry.acquire("dev").executemany("INSERT INTO t VALUES (?)", [(1,), (2,)])
        before = len(service.list_snapshots(branch="main"))

        result = service.promote_branch("dev", "main", create_snapshot=True)

        assert rows(manager, "main", "SELECT id FROM t ORDER BY id") == rows(
            manager, "dev", "SELECT id FROM t ORDER BY id"
        )
        snapshots = service.list_snapshots(branch="main")
        assert len(snapshots) == before + 1
        assert snapshots[0]["id"] == result["snapshot_id"]
        assert snapshots[0]["name"] == "pre-promote"

    def test_apply_all_halts(self, service):
        """001 succeeds, 002 fails, 003 is never attempted."""
        service.create_migration("valid_one", "CREATE TABLE one (id);")
        service.create_migration("invalid", "CREATE TABLE oops (;")
        service.create_migration("valid_three", "CREATE TABLE three (id);")

        applied = service.apply_all_migrations()["applied"]

        assert [(r["filename"], r["success"]) for r in applied] == [
            ("001_valid_one.sql", True),
            ("002_invalid.sql", False),
        ]
        assert "error" in applied[1]
        statuses = {m["filename"]: m["applied"] for m in service.list_migrations()}
        assert statuses == {
            "001_valid_one.sql": True,
            "002_invalid.sql": False,
            "003_valid_three.sql": False,
        }

    def test_snapshot_round_trip(self, service, manager):
        """Same-branch restore returns capture-time contents."""
        manager.registry.acquire("main").execute("CREATE TABLE t (id INTEGER)")
        manager.registry.acquire("main").execute("INSERT INTO t VALUES (1)")
        snapshot = service.create_snapshot("baseline", description="one row")
        manager.registry.acquire("main").execute("INSERT INTO t VALUES (2)")

        service.restore_snapshot(snapshot["id"])

        assert rows(manager, "main", "SELECT id FROM t") == [(1,)]
        assert service.get_snapshot(snapshot["id"])["exists"] is True


class TestBranchContext:
    """Tests for explicit branch context."""

    def test_explicit_branch_overrides_pointer(self, service):
        """Calls with branch= act on that branch, not the current one."""
        service.create_branch("dev", base_branch="main")
        service.create_snapshot("dev-only", branch="dev")

        assert service.current_branch()["name"] == "main"
        assert [s["name"] for s in service.list_snapshots(branch="dev")] == [
            "dev-only",
            "creation",
        ]
        assert service.list_snapshots() == []

    def test_list_branches_flags_context_branch(self, service):
        """With an explicit branch, current and is_current agree."""
        service.create_branch("dev", base_branch="main")

        listing = service.list_branches(branch="dev")

        assert listing["current"] == "dev"
        flags = {b["name"]: b["is_current"] for b in listing["branches"]}
        assert flags == {"main": False, "dev": True}
        assert service.list_branches()["current"] == "main"

    def test_create_branch_needs_explicit_base(self, service):
        """The base branch is never taken from the context branch."""
        with pytest.raises(ValidationError):
            service.create_branch("dev")
        assert [b["name"] for b in service.list_branches()["branches"]] == ["main"]

    def test_unknown_explicit_branch(self, service):
        """An explicit branch that doesn't exist is NotFound."""
        with pytest.raises(NotFoundError):
            service.list_migrations(branch="ghost")

    def test_delete_context_branch_refused(self, service):
        """A caller can't delete the branch it is working on."""
        service.create_branch("dev", base_branch="main")
        with pytest.raises(ConflictError):
            service.delete_branch("dev", branch="dev")
        assert service.delete_branch("dev") == {"success": True}

    def test_timeline_modes(self, service):
        """Timeline defaults to the context branch; all_branches widens it."""
        service.create_branch("dev", base_branch="main")

        main_page = service.query_timeline()
        assert [e["type"] for e in main_page["events"]] == ["branch_created"]

        all_page = service.query_timeline(all_branches=True)
        assert all_page["total"] == 2
        current_flags = {e["branch"]: e["is_current_branch"] for e in all_page["events"]}
        assert current_flags == {"main": True, "dev": False}

        assert service.timeline_stats(branch="dev")["total"] == 1
        assert service.clear_timeline(branch="dev") == {"success": True, "deleted": 1}
        assert service.query_timeline(branch="dev")["total"] == 0


class TestCompareAndMaintenance:
    """Tests for compare mode and maintenance operations."""

    def test_compare_query(self, service, manager):
        """Compare queries read both branches and inject a row limit."""
        conn = manager.registry.acquire("main")
        conn.execute("CREATE TABLE n (v INTEGER)")
        conn.executemany("INSERT INTO n VALUES (?)", [(i,) for i in range(600)])
        service.create_branch("dev", base_branch="main")
        manager.registry.acquire("dev").execute("DELETE FROM n WHERE v >= 10")

        service.compare_checkpoint(["main", "dev"])

        main_result = service.compare_query("main", "SELECT v FROM n -- all rows")
        assert len(main_result["rows"]) == 500
        assert main_result["columns"] == ["v"]

        dev_result = service.compare_query("dev", "SELECT COUNT(*) AS c FROM n;")
        assert dev_result["rows"] == [{"c": 10}]

        limited = service.compare_query("main", "SELECT v FROM n LIMIT 3")
        assert len(limited["rows"]) == 3

        assert service.compare_close(["main", "dev"]) == {"success": True}

    def test_compare_keeps_literals(self, service, manager):
        """Comment markers and keywords inside literals are plain text."""
        conn = manager.registry.acquire("main")
        conn.execute("CREATE TABLE links (url TEXT)")
        conn.executemany(
            "INSERT INTO links VALUES (?)", [("a--b",), ("c/*d*/",), ("delete me",)]
        )

        result = service.compare_query("main", "SELECT url FROM links WHERE url = 'a--b'")
        assert result["rows"] == [{"url": "a--b"}]

        result = service.compare_query(
            "main",
            "SELECT url FROM links /* block */\n"
            "WHERE url IN ('c/*d*/', 'delete me') -- tail",
        )
        assert sorted(r["url"] for r in result["rows"]) == ["c/*d*/", "delete me"]

        limited = service.compare_query("main", "SELECT url FROM links WHERE url <> 'limit'")
        assert len(limited["rows"]) == 3

    @pytest.mark.parametrize(
        "sql",
        [
            "INSERT INTO n VALUES (1)",
            "DROP TABLE n",
            "ATTACH DATABASE 'x.db' AS x",
            "VACUUM",
            "WITH x AS (SELECT 1) DELETE FROM n",
        ],
    )
    def test_compare_rejects_writes(self, service, sql):
        """Write statements never reach SQLite in compare mode."""
        with pytest.raises(ValidationError):
            service.compare_query("main", sql)

    def test_compare_sql_error(self, service):
        """SQLite errors surface as EngineExecutionError."""
        with pytest.raises(EngineExecutionError):
            service.compare_query("main", "SELECT * FROM missing")

    def test_orphans_and_purge(self, service):
        """Deleted branches leave files that purge removes."""
        service.create_branch("dev", base_branch="main")
        service.delete_branch("dev")

        assert [o["db_file"] for o in service.orphaned_files()] == ["dev.db.sqlite"]
        purged = service.purge_file("dev.db.sqlite")
        assert purged["success"] is True
        assert purged["db_file"] == "dev.db.sqlite"
        assert service.orphaned_files() == []

    def test_branch_stats(self, service):
        """Stats include counts."""
        stats = service.branch_stats("main")
        assert stats["name"] == "main"
        assert stats["is_current"] is True
        assert set(stats["stats"]) == {"migrations_applied", "snapshots", "events"}


class TestErrorRendering:
    """Tests for WorkspaceError.to_dict."""

    def test_conflict_to_dict(self, service):
        """Errors render with code and details naming the blocker."""
        with pytest.raises(ConflictError) as exc_info:
            service.delete_branch("main")
        rendered = exc_info.value.to_dict()
        assert rendered["error_code"] == "CONFLICT"
        assert rendered["details"]["blocking"] == "main"

    def test_validation_to_dict(self, service):
        """Validation errors name the field."""
        with pytest.raises(ValidationError) as exc_info:
            service.create_branch("bad name", base_branch="main")
        assert exc_info.value.to_dict()["details"]["field"] == "name"
