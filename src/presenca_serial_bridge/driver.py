"""Bridge driver: one serialized loop over serial lines and bus status.

Two inbound streams are merged into a single :class:`asyncio.Queue`::

    serial lines   ── pump task ─────────────┐
                                              ├─► queue ─► handle_line / handle_status
    bus status     ── call_soon_threadsafe ──┘

so decoding, session updates and delivery decisions all happen on the
event loop thread, in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Union

from presenca_serial_bridge.builder import build, invalid_topic_segments, topic_for
from presenca_serial_bridge.decoder import decode
from presenca_serial_bridge.gate import DeliveryGate
from presenca_serial_bridge.models import (
    ConnectionStatus,
    DeliveryOutcome,
    IdentityAnnouncement,
    TagRead,
)
from presenca_serial_bridge.session import BridgeState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChange:
    """Queue item carrying a bus status notification."""

    status: ConnectionStatus


class _EndOfStream:
    pass


_END = _EndOfStream()

QueueItem = Union[str, StatusChange, _EndOfStream]


class BridgeDriver:
    """Stateful glue between the decoder, builder and delivery gate.

    Parameters
    ----------
    gate:
        Delivery gate wrapping the bus publish primitive.
    default_room:
        Room used when a tag read carries no ``ROOM:`` segment.
    state:
        Shared bridge state; a fresh one is created when omitted.
    port:
        Serial device path, for diagnostics only.
    """

    def __init__(
        self,
        gate: DeliveryGate,
        default_room: str,
        state: Optional[BridgeState] = None,
        port: Optional[str] = None,
    ) -> None:
        self._gate = gate
        self._default_room = default_room
        self.state = state or BridgeState()
        self._port = port
        self._queue: Optional[asyncio.Queue[QueueItem]] = None
        self.suppressed = 0

    # ── synchronous handlers ────────────────────────────────────────

    def handle_line(self, line: str) -> Optional[DeliveryOutcome]:
        """Process one serial line.

        Returns the delivery outcome for tag reads that reached the gate,
        ``None`` for everything else.
        """
        msg = decode(line)

        if isinstance(msg, IdentityAnnouncement):
            self._bind_identity(msg.identity)
            return None

        if not isinstance(msg, TagRead):
            return None

        event = build(msg, self.state.session, self._default_room)
        if event is None:
            self.suppressed += 1
            logger.debug("Tag read without tag id suppressed: %r", line)
            return None

        bad_fields = invalid_topic_segments(event)
        if bad_fields:
            self.suppressed += 1
            logger.warning(
                "Tag %s not published: %s contain reserved topic characters",
                event.tag_id,
                ", ".join(bad_fields),
            )
            return None

        return self._gate.publish(self.state.status, topic_for(event), event)

    def handle_status(self, status: ConnectionStatus) -> None:
        """Apply a bus connectivity change."""
        if not self.state.set_status(status):
            logger.debug("Bus status repeated: %s", status.value)

    # ── async loop ──────────────────────────────────────────────────

    def status_callback(self, loop: asyncio.AbstractEventLoop) -> Callable[[ConnectionStatus], None]:
        """Return a thread-safe callback that enqueues status changes.

        *loop* must be the loop that later awaits :meth:`run`.
        """
        queue = self._ensure_queue()

        def _enqueue(status: ConnectionStatus) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, StatusChange(status))

        return _enqueue

    async def run(self, lines: AsyncIterator[str]) -> None:
        """Consume *lines* and queued status changes until *lines* ends.

        Exceptions raised by *lines* propagate after the queue drains.
        """
        queue = self._ensure_queue()
        pump = asyncio.create_task(self._pump(lines, queue))

        try:
            while True:
                item = await queue.get()
                if isinstance(item, _EndOfStream):
                    break
                if isinstance(item, StatusChange):
                    self.handle_status(item.status)
                else:
                    self.handle_line(item)
        finally:
            if not pump.done():
                pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    async def _pump(self, lines: AsyncIterator[str], queue: asyncio.Queue) -> None:
        try:
            async for line in lines:
                await queue.put(line)
        finally:
            queue.put_nowait(_END)

    # ── helpers ─────────────────────────────────────────────────────

    def _ensure_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def _bind_identity(self, identity: str) -> None:
        session = self.state.session
        if not identity:
            if session.is_bound:
                logger.warning("Empty ESP32 identity announced, keeping %s", session.current())
            else:
                logger.warning("Empty ESP32 identity announced, device still unidentified")
            return
        session.bind(identity)
        logger.info("ESP32 identified: %s (port %s)", identity, self._port or "unknown")
