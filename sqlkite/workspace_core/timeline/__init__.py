"""
Timeline module for the sqlkite workspace.

Invariants:
    - Events are append-only and tagged with one branch
    - Payloads are validated per event type on append
    - Deletion happens only per branch (clear)
"""

from .events import PAYLOAD_MODELS, EventType, decode_payload, encode_payload
from .timeline import Timeline

__all__ = [
    "EventType",
    "PAYLOAD_MODELS",
    "Timeline",
    "decode_payload",
    "encode_payload",
]
