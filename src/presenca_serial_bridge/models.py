"""Dataclass models for the serial → MQTT attendance bridge.

Decoded lines are one of :class:`IdentityAnnouncement`, :class:`TagRead`
or :class:`Ignored`.  A :class:`TagRead` is resolved into an
:class:`AttendanceEvent`, which serializes via :meth:`AttendanceEvent.to_payload`
followed by ``orjson.dumps()``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union


class ConnectionStatus(enum.Enum):
    """Bus connectivity as last reported by the bus client."""

    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class DeliveryOutcome(enum.Enum):
    """Result of handing an event to the delivery gate."""

    ATTEMPTED = "ATTEMPTED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class IdentityAnnouncement:
    """``ESP32_ID:<identity>`` sent by the reader on boot."""

    identity: str


@dataclass(frozen=True)
class TagRead:
    """A ``TAG:...|ROOM:...|ESP32:...`` line.

    ``room`` and ``device_id`` are ``None`` when the segment was absent.
    ``tag_id`` is ``None`` when no ``TAG:`` segment was found.
    """

    tag_id: Optional[str] = None
    room: Optional[str] = None
    device_id: Optional[str] = None


@dataclass(frozen=True)
class Ignored:
    """A line that is neither an announcement nor a tag read."""


IGNORED = Ignored()

DecodedMessage = Union[IdentityAnnouncement, TagRead, Ignored]


@dataclass(frozen=True)
class AttendanceEvent:
    """A resolved, publish-ready tag read."""

    tag_id: str
    room: str
    device_id: str

    def to_payload(self) -> dict:
        """Return the wire payload (field names fixed by the backend)."""
        return {
            "tagId": self.tag_id,
            "room": self.room,
            "esp32Id": self.device_id,
        }
