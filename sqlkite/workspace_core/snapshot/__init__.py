"""
Snapshot module for the sqlkite workspace.

This module handles point-in-time copies of branch backing files:
- Capture after a WAL checkpoint
- Same-branch restore
- Drift detection (metadata row present, file gone)

Invariants:
    - Snapshots are restorable only into their owning branch
    - Only consistent (checkpointed) files are copied
"""

from .engine import SnapshotEngine, slugify

__all__ = ["SnapshotEngine", "slugify"]
