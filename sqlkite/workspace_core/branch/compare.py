"""
Read-only compare mode: query several branches side by side.

Queries run on read-only handles (``mode=ro`` plus ``query_only``), so a
compare session can never change a branch. Write statements are rejected
before they reach SQLite, and unbounded SELECT/WITH queries get a row limit.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from typing import Any

from ..errors import EngineExecutionError, ValidationError
from ..sqltext import mask_sql_literals, strip_sql_comments
from ..store.connections import ConnectionRegistry

logger = logging.getLogger(__name__)

COMPARE_ROW_LIMIT = 500
ALLOWED_STATEMENTS = ("SELECT", "PRAGMA", "EXPLAIN", "WITH")

_FORBIDDEN_RE = re.compile(
    r"\b(INSERT|UPDATE|DELETE|ALTER|DROP|CREATE|TRUNCATE|ATTACH)\b", re.IGNORECASE
)
_LIMIT_RE = re.compile(r"\blimit\b", re.IGNORECASE)
_FIRST_WORD_RE = re.compile(r"^(\w+)")


def statement_type(sql: str) -> str:
    match = _FIRST_WORD_RE.match(mask_sql_literals(sql).strip())
    return match.group(1).upper() if match else ""


def inject_limit(sql: str, limit: int = COMPARE_ROW_LIMIT) -> str:
    """Append a LIMIT clause, keeping a trailing semicolon in place."""
    trimmed = sql.strip()
    if trimmed.endswith(";"):
        return f"{trimmed[:-1].rstrip()} LIMIT {limit};"
    return f"{trimmed} LIMIT {limit}"


class BranchComparer:
    """Runs read-only queries against branches.

    Example:
        >>> comparer = BranchComparer(registry)
        >>> comparer.query("main", "SELECT COUNT(*) AS n FROM users")["rows"]
        [{'n': 3}]
    """

    def __init__(self, registry: ConnectionRegistry, row_limit: int = COMPARE_ROW_LIMIT) -> None:
        self.registry = registry
        self.row_limit = row_limit

    def checkpoint(self, branches: list[str]) -> None:
        """Flush the WALs of the compared branches so readers see all commits.

        Raises:
            ValidationError: If no branches are given
        """
        if not branches:
            raise ValidationError("branches is required", field_name="branches")
        for branch in branches:
            self.registry.checkpoint(branch)

    def query(self, branch: str, sql: str) -> dict[str, Any]:
        """Run one read-only statement against a branch.

        Returns:
            Dict with rows, columns and execution_time_ms

        Raises:
            ValidationError: If the branch or SQL is missing, or the statement
                could write
            NotFoundError: If the branch or its backing file doesn't exist
            EngineExecutionError: If SQLite rejects the statement
        """
        if not branch:
            raise ValidationError("branch is required", field_name="branch")
        if not sql or not sql.strip():
            raise ValidationError("SQL query is required", field_name="sql")

        # Keywords are matched outside literals; the literals themselves run as written
        masked = mask_sql_literals(sql)
        kind = statement_type(masked)
        if _FORBIDDEN_RE.search(masked) or kind not in ALLOWED_STATEMENTS:
            raise ValidationError("Write operations are disabled in compare mode", field_name="sql")

        sql_to_run = strip_sql_comments(sql)
        if kind in ("SELECT", "WITH") and not _LIMIT_RE.search(masked):
            sql_to_run = inject_limit(sql_to_run, self.row_limit)

        conn = self.registry.acquire_readonly(branch)
        started = time.monotonic()
        try:
            cursor = conn.execute(sql_to_run)
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise EngineExecutionError(str(e), branch=branch) from e

        columns = [col[0] for col in cursor.description or ()]
        return {
            "type": "select",
            "branch": branch,
            "columns": columns,
            "rows": [dict(row) for row in rows],
            "execution_time_ms": round((time.monotonic() - started) * 1000, 3),
        }

    def close(self, branches: list[str]) -> None:
        """Drop the read-only handles of the compared branches."""
        if not branches:
            raise ValidationError("branches is required", field_name="branches")
        for branch in branches:
            self.registry.release_readonly(branch)
        logger.debug("Closed compare connections", extra={"branches": branches})
