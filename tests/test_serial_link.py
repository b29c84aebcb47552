"""Tests for the serial_link module."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
import serial

from presenca_serial_bridge.config import SerialConfig
from presenca_serial_bridge.exceptions import NoSerialPortError, SerialLinkError
from presenca_serial_bridge.serial_link import PortInfo, SerialLink, find_esp32_port


class TestFindEsp32Port:
    """Tests for :func:`find_esp32_port`."""

    def test_matches_manufacturer(self) -> None:
        ports = [
            PortInfo("/dev/ttyS0", "Intel"),
            PortInfo("/dev/ttyACM0", "Silicon Labs"),
        ]
        assert find_esp32_port(ports) == "/dev/ttyACM0"

    def test_matches_ch340(self) -> None:
        ports = [PortInfo("COM3", None), PortInfo("COM4", "wch.cn CH340")]
        assert find_esp32_port(ports) == "COM4"

    @pytest.mark.parametrize("device", ["/dev/ttyUSB0", "/dev/tty.usbserial-0001"])
    def test_matches_path(self, device: str) -> None:
        ports = [PortInfo("/dev/ttyS0"), PortInfo(device)]
        assert find_esp32_port(ports) == device

    def test_falls_back_to_first_port(self, caplog) -> None:
        ports = [PortInfo("/dev/ttyS0"), PortInfo("/dev/ttyS1")]
        assert find_esp32_port(ports) == "/dev/ttyS0"
        assert any(r.levelname == "WARNING" for r in caplog.records)

    def test_no_ports_raises(self) -> None:
        with pytest.raises(NoSerialPortError):
            find_esp32_port([])


def _link(readlines: list, port: str = "/dev/ttyUSB0") -> tuple[SerialLink, MagicMock]:
    fake = MagicMock()
    fake.readline.side_effect = readlines
    factory = MagicMock(return_value=fake)
    link = SerialLink(SerialConfig(port=port, baud_rate=115200), serial_factory=factory)
    return link, factory


async def _collect(link: SerialLink, n: int) -> list[str]:
    out = []
    async for line in link.lines():
        out.append(line)
        if len(out) == n:
            link.request_shutdown()
    return out


class TestSerialLink:
    """Tests for :class:`SerialLink`."""

    def test_open_configured_port(self) -> None:
        link, factory = _link([])
        assert link.open() == "/dev/ttyUSB0"
        factory.assert_called_once_with(port="/dev/ttyUSB0", baudrate=115200, timeout=1.0)
        assert link.port == "/dev/ttyUSB0"

    def test_open_autodetects(self) -> None:
        link, factory = _link([], port="")
        ports = [PortInfo("/dev/ttyS0"), PortInfo("/dev/ttyUSB3", "Silicon Labs")]
        with patch("presenca_serial_bridge.serial_link.list_ports", return_value=ports):
            assert link.open() == "/dev/ttyUSB3"

    def test_open_failure_raises(self) -> None:
        factory = MagicMock(side_effect=serial.SerialException("busy"))
        link = SerialLink(SerialConfig(port="/dev/ttyUSB0"), serial_factory=factory)
        with pytest.raises(SerialLinkError) as excinfo:
            link.open()
        assert excinfo.value.port == "/dev/ttyUSB0"

    def test_lines_stripped_and_blank_skipped(self) -> None:
        link, _ = _link([b"ESP32_ID:esp32-1\r\n", b"\r\n", b"", b"TAG:AA\n"])
        link.open()
        assert asyncio.run(_collect(link, 2)) == ["ESP32_ID:esp32-1", "TAG:AA"]
        assert link.lines_read == 2

    def test_partial_line_joined(self) -> None:
        """A read timeout mid-line does not split the record."""
        link, _ = _link([b"TAG:AA|RO", b"OM:Lab 2\n"])
        link.open()
        assert asyncio.run(_collect(link, 1)) == ["TAG:AA|ROOM:Lab 2"]

    def test_invalid_utf8_replaced(self) -> None:
        link, _ = _link([b"TAG:\xff\xfe\n"])
        link.open()
        assert asyncio.run(_collect(link, 1)) == ["TAG:\ufffd\ufffd"]

    def test_read_error_raises(self) -> None:
        link, _ = _link([serial.SerialException("device disconnected")])
        link.open()
        with pytest.raises(SerialLinkError):
            asyncio.run(_collect(link, 1))

    def test_lines_before_open_raises(self) -> None:
        link, _ = _link([])
        with pytest.raises(SerialLinkError):
            asyncio.run(_collect(link, 1))

    def test_close(self) -> None:
        link, factory = _link([])
        link.open()
        link.close()
        factory.return_value.close.assert_called_once()
