"""
Error types for the sqlkite workspace core.

This module defines every exception raised by the workspace engines:
- WorkspaceError: Base exception
- ValidationError: Bad identifier or missing required field
- NotFoundError: Branch, migration, snapshot or file is absent
- ConflictError: Operation blocked by another entity
- EngineExecutionError: User SQL failed inside SQLite
- WorkspaceIOError: Copy, checkpoint or delete of a database file failed

Invariants:
    - All errors inherit from WorkspaceError
    - ValidationError, NotFoundError and ConflictError are raised before any
      side effect of the failing operation
    - ConflictError always names the blocking entity
    - EngineExecutionError carries the SQLite message verbatim
"""

from __future__ import annotations

from typing import Any


class WorkspaceError(Exception):
    """Base exception for all workspace errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "WORKSPACE_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error for a presentation layer."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class ValidationError(WorkspaceError):
    """Request failed validation.

    Raised when:
    - Branch, migration or snapshot name has invalid characters
    - A required field (base branch, SQL text) is missing
    - Timeline paging arguments are out of range
    - An event payload does not match its event type
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        errors: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class NotFoundError(WorkspaceError):
    """Resource not found.

    Raised when:
    - Branch doesn't exist
    - Branch backing file is missing on disk
    - Migration file doesn't exist
    - Snapshot row or snapshot file doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(WorkspaceError):
    """Operation blocked by existing state.

    Raised when:
    - Branch name is already taken
    - Migration was already applied in this branch
    - Migration was applied somewhere and cannot be deleted
    - Snapshot belongs to a different branch
    - Deleting main or the current branch
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
        blocking: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="CONFLICT",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "blocking": blocking,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.blocking = blocking


class EngineExecutionError(WorkspaceError):
    """SQL execution failed inside the database engine.

    The message is SQLite's own error text. Nothing is recorded for the
    statement that failed.
    """

    def __init__(
        self,
        message: str,
        branch: str | None = None,
        filename: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="ENGINE_EXECUTION_ERROR",
            details={"branch": branch, "filename": filename},
        )
        self.branch = branch
        self.filename = filename


class WorkspaceIOError(WorkspaceError):
    """File-level step failed.

    Raised when:
    - WAL checkpoint is blocked or errors
    - Copying a backing file or snapshot fails
    - Removing a backing file or side file fails
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="IO_ERROR",
            details={"path": path, "operation": operation},
        )
        self.path = path
        self.operation = operation
