"""Resolve tag reads into attendance events and MQTT topic/payload pairs.

Field resolution (per field, first non-empty wins)::

    room      : line ROOM:   → configured default room
    device_id : line ESP32:  → bound session identity → "esp32-unknown"
    tag_id    : line TAG:    → (none: the read is suppressed)

Topic layout::

    presenca/attendance/<room, whitespace runs → "_">/<device_id>/tag-read
"""

from __future__ import annotations

import re
from typing import Optional

import orjson

from presenca_serial_bridge.models import AttendanceEvent, TagRead
from presenca_serial_bridge.session import SessionState

UNKNOWN_DEVICE = "esp32-unknown"

TOPIC_PREFIX = "presenca/attendance"
TOPIC_SUFFIX = "tag-read"

_WHITESPACE_RE = re.compile(r"\s+")

# Characters that would break or widen the MQTT topic if interpolated.
RESERVED_TOPIC_CHARS = frozenset("+#/\x00")


def build(
    msg: TagRead,
    session: SessionState,
    default_room: str,
) -> Optional[AttendanceEvent]:
    """Resolve *msg* into an :class:`AttendanceEvent`.

    Returns ``None`` when the read carries no tag id; such reads must never
    be published.
    """
    if not msg.tag_id:
        return None

    room = msg.room or default_room
    device_id = msg.device_id or session.current() or UNKNOWN_DEVICE

    return AttendanceEvent(tag_id=msg.tag_id, room=room, device_id=device_id)


def topic_for(event: AttendanceEvent) -> str:
    """Return the publish topic for *event*.

    Only whitespace in the room is rewritten; other characters are passed
    through as-is (see :func:`invalid_topic_segments`).
    """
    room = _WHITESPACE_RE.sub("_", event.room)
    return f"{TOPIC_PREFIX}/{room}/{event.device_id}/{TOPIC_SUFFIX}"


def encode_payload(event: AttendanceEvent) -> bytes:
    """Serialize the wire payload ``{"tagId", "room", "esp32Id"}``."""
    return orjson.dumps(event.to_payload())


def invalid_topic_segments(event: AttendanceEvent) -> list[str]:
    """Return the names of the fields that would corrupt the topic.

    A room or device id containing an MQTT wildcard, a level separator or
    NUL cannot be interpolated safely.
    """
    bad = []
    if RESERVED_TOPIC_CHARS.intersection(event.room):
        bad.append("room")
    if RESERVED_TOPIC_CHARS.intersection(event.device_id):
        bad.append("device_id")
    return bad
