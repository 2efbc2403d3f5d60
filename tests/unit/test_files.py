"""
Unit tests for database file helpers.

Tests cover:
- Copying a database with and without side files
- Stale side file removal at the destination
- Error wrapping
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from sqlkite.workspace_core.errors import WorkspaceIOError
from sqlkite.workspace_core.store.files import (
    copy_database,
    existing_side_files,
    remove_database,
    remove_side_files,
    side_file,
)


@pytest.fixture
def work_dir():
    """Create temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def _make_db(path: Path, rows: int = 3) -> None:
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.executemany("INSERT INTO t VALUES (?)", [(i,) for i in range(rows)])
    conn.commit()
    conn.close()


class TestCopyDatabase:
    """Tests for copy_database."""

    def test_copy_preserves_contents(self, work_dir):
        """The copy is a readable database with the same rows."""
        source = work_dir / "a.sqlite"
        dest = work_dir / "b.sqlite"
        _make_db(source, rows=5)

        size = copy_database(source, dest)

        assert size == source.stat().st_size
        conn = sqlite3.connect(str(dest))
        assert conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 5
        conn.close()

    def test_copy_includes_side_files(self, work_dir):
        """Side files travel with the primary file when asked."""
        source = work_dir / "a.sqlite"
        dest = work_dir / "b.sqlite"
        _make_db(source)
        side_file(source, "-wal").write_bytes(b"wal")

        copy_database(source, dest, include_side_files=True)
        assert side_file(dest, "-wal").read_bytes() == b"wal"

    def test_copy_removes_stale_dest_side_files(self, work_dir):
        """Old -wal/-shm files at the destination are removed."""
        source = work_dir / "a.sqlite"
        dest = work_dir / "b.sqlite"
        _make_db(source)
        _make_db(dest)
        side_file(dest, "-wal").write_bytes(b"stale")
        side_file(dest, "-shm").write_bytes(b"stale")

        copy_database(source, dest, include_side_files=False)
        assert existing_side_files(dest) == []

    def test_missing_source(self, work_dir):
        """A missing source raises WorkspaceIOError and creates nothing."""
        with pytest.raises(WorkspaceIOError) as exc_info:
            copy_database(work_dir / "missing.sqlite", work_dir / "b.sqlite")
        assert exc_info.value.operation == "copy"
        assert not (work_dir / "b.sqlite").exists()

    def test_no_tmp_left_behind(self, work_dir):
        """The temporary file is renamed into place."""
        source = work_dir / "a.sqlite"
        _make_db(source)
        copy_database(source, work_dir / "b.sqlite")
        assert not (work_dir / "b.sqlite.tmp").exists()


class TestRemove:
    """Tests for removal helpers."""

    def test_remove_side_files(self, work_dir):
        """Only existing side files are reported."""
        db = work_dir / "a.sqlite"
        _make_db(db)
        side_file(db, "-shm").write_bytes(b"x")
        assert remove_side_files(db) == [side_file(db, "-shm")]
        assert remove_side_files(db) == []

    def test_remove_database(self, work_dir):
        """The primary file and its side files are deleted."""
        db = work_dir / "a.sqlite"
        _make_db(db)
        side_file(db, "-wal").write_bytes(b"x")
        remove_database(db)
        assert not db.exists()
        assert existing_side_files(db) == []

    def test_remove_missing_database(self, work_dir):
        """Removing a missing file raises WorkspaceIOError."""
        with pytest.raises(WorkspaceIOError):
            remove_database(work_dir / "missing.sqlite")
