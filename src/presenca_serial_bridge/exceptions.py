"""Exception hierarchy for the attendance bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class ConfigError(BridgeError):
    """Invalid or unresolvable configuration."""


class NoSerialPortError(BridgeError):
    """No serial port is available to read from."""


class SerialLinkError(BridgeError):
    """The serial port could not be opened or read."""

    def __init__(self, message: str, *, port: str = "") -> None:
        self.port = port
        super().__init__(message)


class PublishError(BridgeError):
    """The bus client refused a publish request."""

    def __init__(self, message: str, *, topic: str = "", rc: int | None = None) -> None:
        self.topic = topic
        self.rc = rc
        super().__init__(message)
