"""
File-based migration catalog.

Migrations are plain ``.sql`` files in one directory shared by every branch.
Filenames carry a zero-padded sequence number, so sorting by filename is
application order:

    migrations/001_create_users.sql
    migrations/002_add_email.sql

Invariants:
    - Filenames are unique and never reused while the file exists
    - A written migration is never modified; only deleted
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import ConflictError, NotFoundError, ValidationError, WorkspaceIOError
from ..store.files import fsync_file

logger = logging.getLogger(__name__)

MAX_MIGRATION_NAME_LENGTH = 100
SEQUENCE_WIDTH = 3

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_migration_name(name: str | None) -> str:
    """Raises ValidationError unless name is letters, digits, - and _."""
    if not name:
        raise ValidationError("Migration name is required", field_name="name")
    if len(name) > MAX_MIGRATION_NAME_LENGTH:
        raise ValidationError(
            f"Migration name too long (max {MAX_MIGRATION_NAME_LENGTH} characters)",
            field_name="name",
        )
    if not _NAME_RE.match(name):
        raise ValidationError(
            "Migration name may contain only letters, numbers, hyphens and underscores",
            field_name="name",
        )
    return name


def checksum(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class MigrationCatalog:
    """Reads and writes migration files.

    Attributes:
        migrations_dir: Directory holding the ``.sql`` files
    """

    def __init__(self, migrations_dir: Path) -> None:
        self.migrations_dir = Path(migrations_dir)

    def filenames(self) -> list[str]:
        """All migration filenames in application order."""
        if not self.migrations_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.migrations_dir.iterdir() if p.suffix == ".sql" and p.is_file()
        )

    def path_for(self, filename: str) -> Path:
        """Resolve a migration filename inside the catalog directory.

        Raises:
            ValidationError: If filename is not a bare .sql filename
        """
        if not filename or Path(filename).name != filename or not filename.endswith(".sql"):
            raise ValidationError(
                f"Invalid migration filename: {filename!r}", field_name="filename"
            )
        return self.migrations_dir / filename

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    def read(self, filename: str) -> str:
        """Raises NotFoundError if the migration file doesn't exist."""
        path = self.path_for(filename)
        if not path.is_file():
            raise NotFoundError(f"Migration not found: {filename}", "migration", filename)
        return path.read_text(encoding="utf-8")

    def describe(self, filename: str) -> dict[str, Any]:
        """Content, checksum and creation time (file mtime, UTC) of a migration."""
        content = self.read(filename)
        mtime = self.path_for(filename).stat().st_mtime
        return {
            "filename": filename,
            "content": content,
            "checksum": checksum(content),
            "created_at": datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat(),
        }

    def next_sequence(self) -> int:
        numbers = []
        for filename in self.filenames():
            prefix = filename.split("_", 1)[0]
            if prefix.isdigit():
                numbers.append(int(prefix))
        return max(numbers) + 1 if numbers else 1

    def write(self, name: str, sql: str) -> str:
        """Write a new migration file.

        Returns:
            The new filename

        Raises:
            ValidationError: If the name is invalid or the SQL is empty
            ConflictError: If the computed filename already exists
            WorkspaceIOError: If the write fails
        """
        validate_migration_name(name)
        if not sql or not sql.strip():
            raise ValidationError("Migration SQL is required", field_name="sql")

        filename = f"{self.next_sequence():0{SEQUENCE_WIDTH}d}_{name}.sql"
        path = self.migrations_dir / filename
        tmp = path.with_name(path.name + ".tmp")

        try:
            self.migrations_dir.mkdir(parents=True, exist_ok=True)
            if path.exists():
                raise ConflictError(
                    f"Migration already exists: {filename}", "migration", filename, blocking=filename
                )
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(sql)
            fsync_file(tmp)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise WorkspaceIOError(
                f"Failed to write migration {filename}: {e}", path=str(path), operation="write"
            ) from e

        logger.info("Created migration", extra={"migration": filename})
        return filename

    def remove(self, filename: str) -> None:
        """Raises NotFoundError if missing, WorkspaceIOError if removal fails."""
        path = self.path_for(filename)
        if not path.is_file():
            raise NotFoundError(f"Migration not found: {filename}", "migration", filename)
        try:
            path.unlink()
        except OSError as e:
            raise WorkspaceIOError(
                f"Failed to remove migration {filename}: {e}", path=str(path), operation="remove"
            ) from e
