"""Delivery gate: publish now or drop, depending on bus connectivity.

Decision table::

    DISCONNECTED → SKIPPED    (warning; event lost, never buffered)
    CONNECTED    → send once with QoS 1 → ATTEMPTED
                   send failure → error logged, still ATTEMPTED (no retry)

The gate never changes :class:`ConnectionStatus`; that is driven by the
bus client's connect / disconnect callbacks.
"""

from __future__ import annotations

import logging
from typing import Callable

from presenca_serial_bridge.builder import encode_payload
from presenca_serial_bridge.exceptions import PublishError
from presenca_serial_bridge.models import AttendanceEvent, ConnectionStatus, DeliveryOutcome

logger = logging.getLogger(__name__)

# "at-least-once acknowledged"
PUBLISH_QOS = 1

SendFn = Callable[[str, bytes, int], object]


class DeliveryGate:
    """Hands events to the bus client's publish primitive.

    Parameters
    ----------
    send:
        ``send(topic, payload, qos)``.  Expected to raise
        :class:`PublishError` when the bus client rejects the request.
    """

    def __init__(self, send: SendFn) -> None:
        self._send = send
        self.attempted = 0
        self.skipped = 0
        self.failed = 0

    def publish(
        self,
        status: ConnectionStatus,
        topic: str,
        payload: AttendanceEvent,
    ) -> DeliveryOutcome:
        """Publish *payload* on *topic* if the bus is connected.

        Returns
        -------
        DeliveryOutcome
            ``SKIPPED`` when disconnected (the send primitive is not
            called), ``ATTEMPTED`` otherwise, even if the send failed.
        """
        if status is not ConnectionStatus.CONNECTED:
            self.skipped += 1
            logger.warning(
                "MQTT disconnected, tag %s not sent (waiting for connection)",
                payload.tag_id,
            )
            return DeliveryOutcome.SKIPPED

        data = encode_payload(payload)
        logger.info("Publishing topic=%s payload=%s", topic, data.decode())

        self.attempted += 1
        try:
            self._send(topic, data, PUBLISH_QOS)
        except (PublishError, ValueError, OSError) as exc:
            self.failed += 1
            logger.error("Publish failed for tag %s on %s: %s", payload.tag_id, topic, exc)

        return DeliveryOutcome.ATTEMPTED
