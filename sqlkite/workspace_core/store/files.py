"""
File-level helpers for SQLite database files.

Every copy lands in a temporary file next to the destination and is
published with os.replace, so readers never see a half-written database.
SQLite keeps ``-wal`` and ``-shm`` side files next to a database in WAL mode;
they travel with the primary file or are removed together with it.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from ..errors import WorkspaceIOError

logger = logging.getLogger(__name__)

SIDE_FILE_SUFFIXES = ("-wal", "-shm")


def side_file(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


def existing_side_files(path: Path) -> list[Path]:
    """Side files currently present next to a database file."""
    return [p for p in (side_file(path, s) for s in SIDE_FILE_SUFFIXES) if p.exists()]


def fsync_file(path: Path) -> None:
    """Flush a file's contents to stable storage."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _atomic_copy(source: Path, dest: Path) -> None:
    tmp = dest.with_name(dest.name + ".tmp")
    try:
        shutil.copyfile(source, tmp)
        fsync_file(tmp)
        os.replace(tmp, dest)
    except BaseException:
        if tmp.exists():
            tmp.unlink()
        raise


def remove_side_files(path: Path) -> list[Path]:
    """Remove stale side files of a database file.

    Returns:
        Paths that were removed

    Raises:
        WorkspaceIOError: If a side file cannot be removed
    """
    removed = []
    for stale in existing_side_files(path):
        try:
            stale.unlink()
        except OSError as e:
            raise WorkspaceIOError(
                f"Failed to remove side file {stale.name}: {e}",
                path=str(stale),
                operation="remove",
            ) from e
        removed.append(stale)
    return removed


def copy_database(source: Path, dest: Path, include_side_files: bool = True) -> int:
    """Copy a database file (and its side files) over a destination.

    The destination's own side files are removed first: a leftover WAL from
    the old contents would otherwise be replayed on top of the new bytes.

    Args:
        source: Database file to copy
        dest: Destination path (overwritten)
        include_side_files: Also copy the source's -wal/-shm files

    Returns:
        Size of the copied primary file in bytes

    Raises:
        WorkspaceIOError: If any part of the copy fails
    """
    if not source.exists():
        raise WorkspaceIOError(
            f"Source database does not exist: {source}",
            path=str(source),
            operation="copy",
        )

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        remove_side_files(dest)
        _atomic_copy(source, dest)
        if include_side_files:
            for suffix in SIDE_FILE_SUFFIXES:
                src_side = side_file(source, suffix)
                if src_side.exists():
                    _atomic_copy(src_side, side_file(dest, suffix))
        size = dest.stat().st_size
    except WorkspaceIOError:
        raise
    except OSError as e:
        raise WorkspaceIOError(
            f"Failed to copy {source.name} to {dest.name}: {e}",
            path=str(dest),
            operation="copy",
        ) from e

    logger.debug(
        "Copied database file",
        extra={"source": str(source), "dest": str(dest), "size_bytes": size},
    )
    return size


def remove_database(path: Path) -> None:
    """Delete a database file together with its side files.

    Raises:
        WorkspaceIOError: If removal fails
    """
    remove_side_files(path)
    try:
        path.unlink()
    except OSError as e:
        raise WorkspaceIOError(
            f"Failed to remove {path.name}: {e}",
            path=str(path),
            operation="remove",
        ) from e
