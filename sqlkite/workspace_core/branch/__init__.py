"""
Branch module for the sqlkite workspace.

This module handles branch lifecycle and compare mode:
- Create (checkpoint + copy + creation snapshot)
- Switch, delete, promote
- Orphaned backing file purge
- Read-only cross-branch queries
"""

from .compare import BranchComparer
from .manager import BranchManager, validate_branch_name

__all__ = ["BranchComparer", "BranchManager", "validate_branch_name"]
