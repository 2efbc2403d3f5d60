"""
Storage layer for the sqlkite workspace.

This module handles:
- The metadata SQLite store (branches, applications, snapshots, events)
- The per-branch connection registry
- Atomic copy/remove helpers for SQLite files and their side files

Invariants:
    - The metadata DB never shares a file with user data
    - Connections are released before their backing file is touched
"""

from .connections import ConnectionRegistry
from .files import copy_database, existing_side_files, remove_database, remove_side_files
from .metadata_store import CURRENT_BRANCH_KEY, MetadataStore

__all__ = [
    "ConnectionRegistry",
    "MetadataStore",
    "CURRENT_BRANCH_KEY",
    "copy_database",
    "existing_side_files",
    "remove_database",
    "remove_side_files",
]
