"""
Operation surface of the sqlkite workspace.
"""

from .service import WorkspaceService

__all__ = ["WorkspaceService"]
