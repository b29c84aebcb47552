"""Serial link to the ESP32 RFID reader.

Port selection::

    configured port            → used as-is
    manufacturer Silicon/CH340 → ESP32 port
    path usbserial/ttyUSB      → ESP32 port
    anything else              → first available port (warning)
    no ports                   → NoSerialPortError

Exposed as an async generator via :meth:`SerialLink.lines`.  Blocking
``readline`` calls run in the default executor so the event loop stays
free for bus status changes.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, Optional

import serial
from serial.tools import list_ports as serial_list_ports

from presenca_serial_bridge.config import SerialConfig
from presenca_serial_bridge.exceptions import NoSerialPortError, SerialLinkError

logger = logging.getLogger(__name__)

ESP32_MANUFACTURER_HINTS = ("Silicon", "CH340")
ESP32_PATH_HINTS = ("usbserial", "ttyUSB")

# Seconds a single readline may block; bounds shutdown latency.
READ_TIMEOUT_S = 1.0


@dataclass(frozen=True)
class PortInfo:
    """A serial port as reported by the OS."""

    device: str
    manufacturer: Optional[str] = None
    description: Optional[str] = None


class LinkState(enum.Enum):
    """Lifecycle of the serial link."""

    INIT = "INIT"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


def list_ports() -> list[PortInfo]:
    """Return the serial ports currently visible to the OS."""
    return [
        PortInfo(device=p.device, manufacturer=p.manufacturer, description=p.description)
        for p in serial_list_ports.comports()
    ]


def find_esp32_port(ports: Iterable[PortInfo]) -> str:
    """Pick the port most likely to be the ESP32.

    Raises
    ------
    NoSerialPortError
        If *ports* is empty.
    """
    ports = list(ports)
    for port in ports:
        manufacturer = port.manufacturer or ""
        if any(hint in manufacturer for hint in ESP32_MANUFACTURER_HINTS) or any(
            hint in port.device for hint in ESP32_PATH_HINTS
        ):
            logger.info("ESP32 found on %s", port.device)
            return port.device

    if ports:
        logger.warning("No ESP32 port recognized, using first available: %s", ports[0].device)
        return ports[0].device

    raise NoSerialPortError("No serial port found")


class SerialLink:
    """Owns the serial port and yields decoded text lines.

    Parameters
    ----------
    config:
        Serial settings (port, baud rate).
    serial_factory:
        Callable returning a ``serial.Serial``-like object.  Overridable
        for tests.
    """

    def __init__(
        self,
        config: SerialConfig,
        serial_factory: Callable[..., serial.Serial] = serial.Serial,
    ) -> None:
        self._config = config
        self._serial_factory = serial_factory
        self._serial: Optional[serial.Serial] = None
        self._port: Optional[str] = None
        self._state = LinkState.INIT
        self._shutdown = asyncio.Event()
        self.lines_read = 0

    @property
    def port(self) -> Optional[str]:
        """The device path in use (set by :meth:`open`)."""
        return self._port

    def request_shutdown(self) -> None:
        """Stop :meth:`lines` after the current read returns."""
        self._shutdown.set()

    def open(self) -> str:
        """Resolve the port and open it.

        Raises
        ------
        NoSerialPortError
            When no port is configured and none can be discovered.
        SerialLinkError
            When the port cannot be opened.
        """
        port = self._config.port
        if not port:
            ports = list_ports()
            for i, p in enumerate(ports, start=1):
                logger.info("Serial port %d: %s - %s", i, p.device, p.manufacturer or "unknown")
            port = find_esp32_port(ports)

        logger.info("Opening %s @ %d baud", port, self._config.baud_rate)
        try:
            self._serial = self._serial_factory(
                port=port,
                baudrate=self._config.baud_rate,
                timeout=READ_TIMEOUT_S,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise SerialLinkError(f"Cannot open {port}: {exc}", port=port) from exc

        self._port = port
        self._set_state(LinkState.OPEN)
        return port

    async def lines(self) -> AsyncIterator[str]:
        """Async generator yielding stripped, non-empty lines.

        Raises
        ------
        SerialLinkError
            If reading from the port fails.
        """
        if self._serial is None:
            raise SerialLinkError("Serial port is not open", port=self._port or "")

        loop = asyncio.get_running_loop()
        pending = b""

        while not self._shutdown.is_set():
            try:
                chunk = await loop.run_in_executor(None, self._serial.readline)
            except (serial.SerialException, OSError) as exc:
                raise SerialLinkError(f"Read failed on {self._port}: {exc}", port=self._port or "") from exc

            if not chunk:
                continue  # read timeout
            pending += chunk
            if not pending.endswith(b"\n"):
                continue  # partial line, timeout hit mid-record

            raw, pending = pending, b""
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue

            self.lines_read += 1
            logger.debug("ESP32: %s", line)
            yield line

    def close(self) -> None:
        """Close the port if open."""
        if self._serial is not None:
            try:
                self._serial.close()
            finally:
                self._serial = None
                self._set_state(LinkState.CLOSED)

    # ── helpers ─────────────────────────────────────────────────────

    def _set_state(self, new: LinkState) -> None:
        old = self._state
        self._state = new
        logger.info("Serial link: %s → %s", old.value, new.value)
