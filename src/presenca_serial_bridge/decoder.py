"""Decode raw serial lines from the RFID reader.

Decoding pipeline::

    raw line (trimmed)
      │
      ├─ starts with "ESP32_ID:"  → IdentityAnnouncement(identity)
      ├─ contains "TAG:"          → TagRead(tag_id, room, device_id)
      └─ otherwise                → Ignored

Tag-read lines are ``|``-separated segments; recognized prefixes are
``TAG:``, ``ROOM:`` and ``ESP32:`` (case-sensitive).  Unknown segments are
skipped and segment order does not matter.  :func:`decode` never raises.
"""

from __future__ import annotations

from typing import Optional

from presenca_serial_bridge.models import (
    IGNORED,
    DecodedMessage,
    IdentityAnnouncement,
    TagRead,
)

IDENTITY_PREFIX = "ESP32_ID:"
TAG_MARKER = "TAG:"
FIELD_SEPARATOR = "|"

TAG_PREFIX = "TAG:"
ROOM_PREFIX = "ROOM:"
DEVICE_PREFIX = "ESP32:"


def decode(line: str) -> DecodedMessage:
    """Classify a single line received from the reader.

    Parameters
    ----------
    line:
        One line of text without its newline terminator.  Surrounding
        whitespace is stripped before interpretation.

    Returns
    -------
    IdentityAnnouncement
        For ``ESP32_ID:<identity>``.  The identity may be empty.
    TagRead
        For any line containing ``TAG:``.  ``tag_id`` may be empty or
        ``None``; callers must not publish such reads.
    Ignored
        For everything else.
    """
    line = line.strip()

    if line.startswith(IDENTITY_PREFIX):
        return IdentityAnnouncement(identity=line[len(IDENTITY_PREFIX):].strip())

    if TAG_MARKER not in line:
        return IGNORED

    tag_id: Optional[str] = None
    room: Optional[str] = None
    device_id: Optional[str] = None

    for segment in line.split(FIELD_SEPARATOR):
        if segment.startswith(TAG_PREFIX):
            tag_id = segment[len(TAG_PREFIX):].strip()
        elif segment.startswith(ROOM_PREFIX):
            room = _keep_non_empty(room, segment[len(ROOM_PREFIX):].strip())
        elif segment.startswith(DEVICE_PREFIX):
            device_id = _keep_non_empty(device_id, segment[len(DEVICE_PREFIX):].strip())

    return TagRead(tag_id=tag_id, room=room, device_id=device_id)


def _keep_non_empty(current: Optional[str], value: str) -> str:
    """A later empty segment does not erase an earlier value."""
    if value or current is None:
        return value
    return current
