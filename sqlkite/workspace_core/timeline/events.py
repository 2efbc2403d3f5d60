"""
Timeline event types and their payload schemas.

Each event type has its own pydantic model. Payloads are validated when an
event is appended; stored rows are read back as plain dicts, so events
written by older tools (with types not listed here) stay readable.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError


class EventType(str, Enum):
    """Kinds of timeline events."""

    BRANCH_CREATED = "branch_created"
    BRANCH_CREATED_FROM = "branch_created_from"
    BRANCH_SWITCHED = "branch_switched"
    BRANCH_DELETED = "branch_deleted"
    BRANCH_PROMOTED = "branch_promoted"
    BRANCH_REPLACED = "branch_replaced"
    BRANCH_FILE_PURGED = "branch_file_purged"
    MIGRATION_CREATED = "migration_created"
    MIGRATION_APPLIED = "migration_applied"
    MIGRATION_DELETED = "migration_deleted"
    SNAPSHOT_CREATED = "snapshot_created"
    SNAPSHOT_RESTORED = "snapshot_restored"
    SNAPSHOT_DELETED = "snapshot_deleted"


class EventPayload(BaseModel):
    """Base for all payload schemas."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class BranchCreatedPayload(EventPayload):
    """Logged in the base branch."""

    branch: str
    from_branch: str = Field(alias="from")


class BranchCreatedFromPayload(EventPayload):
    """Logged in the new branch."""

    from_branch: str = Field(alias="from")
    snapshot_id: int | None = None


class BranchSwitchedPayload(EventPayload):
    from_branch: str = Field(alias="from")
    to: str


class BranchDeletedPayload(EventPayload):
    branch: str
    db_file: str


class PromotionPayload(EventPayload):
    """Logged in both the source and the target of a promotion."""

    source: str
    target: str
    snapshot_id: int | None = None


class BranchFilePurgedPayload(EventPayload):
    db_file: str
    size: int | None = None


class MigrationCreatedPayload(EventPayload):
    filename: str
    name: str


class MigrationPayload(EventPayload):
    filename: str


class SnapshotCreatedPayload(EventPayload):
    snapshot_id: int
    filename: str
    name: str
    size: int


class SnapshotPayload(EventPayload):
    snapshot_id: int
    filename: str


PAYLOAD_MODELS: dict[EventType, type[EventPayload]] = {
    EventType.BRANCH_CREATED: BranchCreatedPayload,
    EventType.BRANCH_CREATED_FROM: BranchCreatedFromPayload,
    EventType.BRANCH_SWITCHED: BranchSwitchedPayload,
    EventType.BRANCH_DELETED: BranchDeletedPayload,
    EventType.BRANCH_PROMOTED: PromotionPayload,
    EventType.BRANCH_REPLACED: PromotionPayload,
    EventType.BRANCH_FILE_PURGED: BranchFilePurgedPayload,
    EventType.MIGRATION_CREATED: MigrationCreatedPayload,
    EventType.MIGRATION_APPLIED: MigrationPayload,
    EventType.MIGRATION_DELETED: MigrationPayload,
    EventType.SNAPSHOT_CREATED: SnapshotCreatedPayload,
    EventType.SNAPSHOT_RESTORED: SnapshotPayload,
    EventType.SNAPSHOT_DELETED: SnapshotPayload,
}


def encode_payload(event_type: EventType | str, payload: dict[str, Any]) -> tuple[EventType, str]:
    """Validate a payload against its event type and serialize it.

    Returns:
        Tuple of (event type, JSON text)

    Raises:
        ValidationError: If the type is unknown or the payload doesn't match
    """
    try:
        kind = EventType(event_type)
    except ValueError:
        raise ValidationError(f"Unknown event type: {event_type}", field_name="type")

    model = PAYLOAD_MODELS[kind]
    try:
        validated = model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid payload for event type '{kind.value}'",
            field_name="payload",
            errors=[err["msg"] for err in e.errors()],
        ) from e

    return kind, validated.model_dump_json(by_alias=True)


def decode_payload(data: str | None) -> dict[str, Any]:
    """Read a stored payload back as a dict."""
    if not data:
        return {}
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        return {"raw": data}
    return decoded if isinstance(decoded, dict) else {"value": decoded}
