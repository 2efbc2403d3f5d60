"""
Append-only, branch-tagged audit timeline.

Every mutating workspace operation appends at least one event, tagged with
the branch it semantically belongs to. Events are only ever removed in bulk,
per branch, by clear().
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..errors import ValidationError
from ..models import TimelineEvent, TimelinePage
from ..store.metadata_store import MetadataStore
from .events import EventType, decode_payload, encode_payload

logger = logging.getLogger(__name__)


def _row_to_event(row: sqlite3.Row, current_branch: str | None) -> TimelineEvent:
    return TimelineEvent(
        id=row["id"],
        branch=row["branch"],
        type=row["type"],
        payload=decode_payload(row["data"]),
        created_at=row["created_at"],
        is_current_branch=row["branch"] == current_branch,
    )


class Timeline:
    """Audit log over the metadata store's events table.

    Attributes:
        store: Metadata store
        default_limit: Page size when none is given
        max_limit: Largest accepted page size
    """

    def __init__(
        self,
        store: MetadataStore,
        default_limit: int = 50,
        max_limit: int = 1000,
    ) -> None:
        self.store = store
        self.default_limit = default_limit
        self.max_limit = max_limit

    def append(
        self,
        branch: str,
        event_type: EventType | str,
        payload: dict[str, Any],
    ) -> TimelineEvent:
        """Append one event to a branch's timeline.

        Raises:
            ValidationError: If the payload doesn't match the event type
        """
        kind, data = encode_payload(event_type, payload)
        row = self.store.insert_event(branch, kind.value, data)

        logger.debug(
            "Appended timeline event",
            extra={"branch": branch, "event_type": kind.value, "event_id": row["id"]},
        )
        return _row_to_event(row, branch)

    def query(
        self,
        branch: str,
        limit: int | None = None,
        offset: int = 0,
        all_branches: bool = False,
    ) -> TimelinePage:
        """Page through events, newest first.

        Args:
            branch: Branch to query (and to mark as current in results)
            limit: Page size (default_limit when None)
            offset: Events to skip
            all_branches: Ignore the branch filter

        Raises:
            ValidationError: If limit or offset is out of range
        """
        limit = self.default_limit if limit is None else limit
        if limit < 1 or limit > self.max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.max_limit}", field_name="limit"
            )
        if offset < 0:
            raise ValidationError("offset must be >= 0", field_name="offset")

        scope = None if all_branches else branch
        rows = self.store.query_events(scope, limit, offset)
        total = self.store.count_events(scope)

        return TimelinePage(
            events=[_row_to_event(row, branch) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
            branch=scope,
        )

    def stats(self, branch: str) -> dict[str, Any]:
        """Event counts for one branch, grouped by type."""
        return {
            "branch": branch,
            "total": self.store.count_events(branch),
            "by_type": self.store.event_type_counts(branch),
        }

    def clear(self, branch: str) -> int:
        """Delete every event of one branch.

        Returns:
            Number of events deleted
        """
        deleted = self.store.delete_events(branch)
        logger.info("Cleared timeline", extra={"branch": branch, "deleted": deleted})
        return deleted
