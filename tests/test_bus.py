"""Tests for the bus module (MqttBus and StdoutBus)."""

from unittest.mock import MagicMock, patch

import orjson
import paho.mqtt.client as mqtt
import pytest

from presenca_serial_bridge.bus import MqttBus, StdoutBus
from presenca_serial_bridge.config import MqttConfig
from presenca_serial_bridge.exceptions import PublishError
from presenca_serial_bridge.models import ConnectionStatus


def _reason(failure: bool) -> MagicMock:
    rc = MagicMock()
    rc.is_failure = failure
    return rc


class TestMqttBus:
    """Tests for :class:`MqttBus`."""

    def _started(self) -> tuple[MqttBus, MagicMock, list]:
        statuses: list = []
        client = MagicMock()
        factory = MagicMock(return_value=client)
        bus = MqttBus(
            MqttConfig(broker_url="mqtt://broker.local:1884", client_id="test"),
            statuses.append,
            client_factory=factory,
        )
        bus.start()
        return bus, client, statuses

    def test_start_connects_async(self) -> None:
        _, client, _ = self._started()
        client.connect_async.assert_called_once_with("broker.local", 1884, keepalive=60)
        client.loop_start.assert_called_once()
        client.reconnect_delay_set.assert_called_once_with(min_delay=1, max_delay=120)

    def test_connect_and_disconnect_report_status(self) -> None:
        bus, client, statuses = self._started()
        client.on_connect(client, None, {}, _reason(False), None)
        client.on_disconnect(client, None, {}, _reason(True), None)
        assert statuses == [ConnectionStatus.CONNECTED, ConnectionStatus.DISCONNECTED]

    def test_refused_connect_reports_disconnected(self) -> None:
        _, client, statuses = self._started()
        client.on_connect(client, None, {}, _reason(True), None)
        assert statuses == [ConnectionStatus.DISCONNECTED]

    def test_connect_fail_reports_disconnected(self) -> None:
        _, client, statuses = self._started()
        client.on_connect_fail(client, None)
        assert statuses == [ConnectionStatus.DISCONNECTED]

    def test_send_success_returns_mid(self) -> None:
        bus, client, _ = self._started()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS, mid=7)
        assert bus.send("a/b", b"{}", 1) == 7
        client.publish.assert_called_once_with("a/b", b"{}", qos=1)

    def test_send_failure_raises(self) -> None:
        bus, client, _ = self._started()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN, mid=0)
        with pytest.raises(PublishError) as excinfo:
            bus.send("a/b", b"{}", 1)
        assert excinfo.value.rc == mqtt.MQTT_ERR_NO_CONN
        assert excinfo.value.topic == "a/b"

    def test_send_before_start_raises(self) -> None:
        bus = MqttBus(MqttConfig(), lambda s: None, client_factory=MagicMock())
        with pytest.raises(PublishError):
            bus.send("a/b", b"{}", 1)

    def test_publish_ack_logged(self, caplog) -> None:
        _, client, _ = self._started()
        with caplog.at_level("INFO", logger="presenca_serial_bridge.bus"):
            client.on_publish(client, None, 3, _reason(False), None)
        assert any("mid=3" in r.getMessage() for r in caplog.records)

    def test_stop_disconnects(self) -> None:
        bus, client, _ = self._started()
        bus.stop()
        client.disconnect.assert_called_once()
        client.loop_stop.assert_called_once()
        bus.stop()  # idempotent
        client.disconnect.assert_called_once()


class TestStdoutBus:
    """Tests for :class:`StdoutBus`."""

    def test_start_reports_connected(self) -> None:
        statuses: list = []
        StdoutBus(statuses.append).start()
        assert statuses == [ConnectionStatus.CONNECTED]

    def test_send_writes_ndjson(self) -> None:
        bus = StdoutBus(lambda s: None)
        mock_stdout = MagicMock()
        with patch("presenca_serial_bridge.bus.sys") as mock_sys:
            mock_sys.stdout = mock_stdout
            mid = bus.send("presenca/attendance/Sala_101/esp32-1/tag-read", b'{"tagId":"AA"}', 1)

        written = mock_stdout.buffer.write.call_args.args[0]
        assert written.endswith(b"\n")
        assert orjson.loads(written) == {
            "topic": "presenca/attendance/Sala_101/esp32-1/tag-read",
            "payload": {"tagId": "AA"},
            "qos": 1,
        }
        assert mid == 1
