"""Bus clients: MQTT (paho) and stdout (for debugging and dry-run).

MqttBus
    Connects asynchronously and lets paho's network thread handle
    reconnects.  Connection changes are reported through ``on_status``
    **from paho's thread**; callers marshal them onto their event loop.

StdoutBus
    Writes one NDJSON record per publish to ``sys.stdout.buffer`` and
    reports itself connected immediately.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable

import orjson
import paho.mqtt.client as mqtt

from presenca_serial_bridge.config import MqttConfig
from presenca_serial_bridge.exceptions import PublishError
from presenca_serial_bridge.models import ConnectionStatus

logger = logging.getLogger(__name__)

StatusCallback = Callable[[ConnectionStatus], None]


class MqttBus:
    """Owns the paho client lifecycle.

    Parameters
    ----------
    config:
        Broker URL, client id, keepalive and reconnect delays.
    on_status:
        Called with ``CONNECTED`` / ``DISCONNECTED`` on every change.
    client_factory:
        Builds the paho client.  Overridable for tests.
    """

    def __init__(
        self,
        config: MqttConfig,
        on_status: StatusCallback,
        client_factory: Callable[..., mqtt.Client] = mqtt.Client,
    ) -> None:
        self._config = config
        self._on_status = on_status
        self._client_factory = client_factory
        self._client: mqtt.Client | None = None

    def start(self) -> None:
        """Create the client, schedule the connection and start the network loop."""
        self.stop()
        host, port = self._config.host, self._config.port
        logger.info("Connecting to MQTT broker %s (%s:%d)", self._config.broker_url, host, port)

        client = self._client_factory(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._config.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(logger)
        client.reconnect_delay_set(
            min_delay=self._config.reconnect_min_delay_s,
            max_delay=self._config.reconnect_max_delay_s,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_connect_fail = self._on_connect_fail
        client.on_publish = self._on_publish

        client.connect_async(host, port, keepalive=self._config.keepalive)
        client.loop_start()
        self._client = client

    def send(self, topic: str, payload: bytes, qos: int) -> int:
        """Queue one publish request and return its message id.

        Raises
        ------
        PublishError
            When paho rejects the request (e.g. no connection, queue full).
        ValueError
            When paho rejects the topic (wildcards, empty).
        """
        if self._client is None:
            raise PublishError("MQTT client not started", topic=topic)
        info = self._client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(mqtt.error_string(info.rc), topic=topic, rc=info.rc)
        return info.mid

    def stop(self) -> None:
        """Disconnect and stop the network loop if running."""
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            logger.info("MQTT network loop stopped")

    # ── paho callbacks (network thread) ─────────────────────────────

    def _on_connect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.is_failure:
            logger.warning("MQTT connect refused: %s", reason_code)
            self._on_status(ConnectionStatus.DISCONNECTED)
            return
        logger.info("MQTT connected (broker %s)", self._config.broker_url)
        self._on_status(ConnectionStatus.CONNECTED)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        logger.warning("MQTT connection closed: %s", reason_code)
        self._on_status(ConnectionStatus.DISCONNECTED)

    def _on_connect_fail(self, _client: mqtt.Client, _userdata: Any) -> None:
        logger.warning("MQTT connection failed, reconnecting")
        self._on_status(ConnectionStatus.DISCONNECTED)

    def _on_publish(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        mid: int,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.is_failure:
            logger.error("Publish mid=%d rejected by broker: %s", mid, reason_code)
        else:
            logger.info("Tag published (mid=%d)", mid)


class StdoutBus:
    """Write publish requests as NDJSON to stdout instead of a broker."""

    def __init__(self, on_status: StatusCallback) -> None:
        self._on_status = on_status
        self._mid = 0

    def start(self) -> None:
        self._on_status(ConnectionStatus.CONNECTED)

    def send(self, topic: str, payload: bytes, qos: int) -> int:
        """Write one ``{"topic", "payload", "qos"}`` record.

        Raises
        ------
        BrokenPipeError
            If the stdout consumer has gone away.
        """
        self._mid += 1
        record = {"topic": topic, "payload": orjson.loads(payload), "qos": qos}
        try:
            sys.stdout.buffer.write(orjson.dumps(record, option=orjson.OPT_APPEND_NEWLINE))
            sys.stdout.buffer.flush()
        except BrokenPipeError:
            logger.warning("stdout broken, consumer likely exited")
            raise
        return self._mid

    def stop(self) -> None:
        """No-op for stdout."""
