"""Configuration loading, environment-variable interpolation, and validation.

Resolution order for ``${VAR}`` placeholders:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.

Without a config file the built-in :data:`DEFAULT_RAW_CONFIG` is used; it
honours ``MQTT_BROKER_URL``, ``ROOM_NAME`` and ``SERIAL_PORT``.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import jsonschema
import orjson

from presenca_serial_bridge.exceptions import ConfigError

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

_SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "config.schema.json"

DEFAULT_BROKER_URL = "mqtt://localhost:1883"
DEFAULT_ROOM = "Sala 101"
DEFAULT_MQTT_PORT = 1883

DEFAULT_RAW_CONFIG: dict[str, Any] = {
    "serial": {"port": "${SERIAL_PORT:-}", "baud_rate": 115200},
    "mqtt": {"broker_url": f"${{MQTT_BROKER_URL:-{DEFAULT_BROKER_URL}}}"},
    "bridge": {"default_room": f"${{ROOM_NAME:-{DEFAULT_ROOM}}}"},
}


@dataclass
class SerialConfig:
    """Serial port settings.  An empty ``port`` means auto-detect."""

    port: str = ""
    baud_rate: int = 115200


@dataclass
class MqttConfig:
    """MQTT broker connection settings."""

    broker_url: str = DEFAULT_BROKER_URL
    client_id: str = "presenca-serial-bridge"
    keepalive: int = 60
    reconnect_min_delay_s: int = 1
    reconnect_max_delay_s: int = 120

    @property
    def host(self) -> str:
        return _parse_broker_url(self.broker_url)[0]

    @property
    def port(self) -> int:
        return _parse_broker_url(self.broker_url)[1]


@dataclass
class BridgeConfig:
    """Attendance bridge behaviour."""

    default_room: str = DEFAULT_ROOM


@dataclass
class LogFileConfig:
    """Optional log file output settings.

    When ``enabled`` is True the application writes operational logs to a
    rotating file in addition to stderr.
    """

    enabled: bool = False
    path: str = "/var/log/presenca-serial-bridge/app.log"
    max_size_bytes: int = 10485760   # 10 MB
    backup_count: int = 5


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    file: LogFileConfig = field(default_factory=LogFileConfig)


@dataclass
class AppConfig:
    """Top-level application configuration."""

    serial: SerialConfig = field(default_factory=SerialConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_broker_url(url: str) -> tuple[str, int]:
    """Split ``mqtt://host:port`` into ``(host, port)``."""
    parts = urlsplit(url if "://" in url else f"mqtt://{url}")
    if parts.scheme not in ("mqtt", "tcp"):
        raise ConfigError(f"Unsupported broker URL scheme: {parts.scheme!r}")
    if not parts.hostname:
        raise ConfigError(f"Broker URL has no host: {url!r}")
    try:
        port = parts.port
    except ValueError as exc:
        raise ConfigError(f"Invalid port in broker URL {url!r}: {exc}") from exc
    return parts.hostname, port or DEFAULT_MQTT_PORT


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        # 1. CLI overrides
        if overrides and var_name in overrides:
            return overrides[var_name]
        # 2. Environment variables
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        # 3. Default
        if default is not None:
            return default

        raise ConfigError(
            f"Required variable ${{{var_name}}} is not set in environment or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def _pick(cls: type, raw: dict[str, Any]) -> Any:
    return cls(**{k: raw[k] for k in raw if k in cls.__dataclass_fields__})


def _dict_to_config(raw: dict[str, Any]) -> AppConfig:
    """Convert a raw dict into a typed :class:`AppConfig`."""
    logging_raw = raw.get("logging", {})

    cfg = AppConfig(
        serial=_pick(SerialConfig, raw.get("serial", {})),
        mqtt=_pick(MqttConfig, raw.get("mqtt", {})),
        bridge=_pick(BridgeConfig, raw.get("bridge", {})),
        logging=LoggingConfig(
            level=logging_raw.get("level", "info"),
            file=_pick(LogFileConfig, logging_raw.get("file", {})),
        ),
    )
    validate_config(cfg)
    return cfg


def validate_config(cfg: AppConfig) -> None:
    """Semantic checks the JSON schema cannot express.

    Raises
    ------
    ConfigError
        On an unusable broker URL, a non-positive baud rate or an empty
        default room.
    """
    _parse_broker_url(cfg.mqtt.broker_url)
    if cfg.serial.baud_rate <= 0:
        raise ConfigError(f"serial.baud_rate must be positive, got {cfg.serial.baud_rate}")
    if not cfg.bridge.default_room.strip():
        raise ConfigError("bridge.default_room must not be empty")


def _validate_schema(raw: dict[str, Any], schema_path: str | Path | None) -> None:
    sp = Path(schema_path) if schema_path else _SCHEMA_PATH
    if not sp.exists():
        logger.warning("Schema file not found at %s, skipping validation", sp)
        return
    schema = orjson.loads(sp.read_bytes())
    try:
        jsonschema.validate(instance=raw, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ConfigError(f"Schema validation failed: {exc.message}") from exc
    logger.debug("Config passed schema validation")


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, str] | None = None,
    schema_path: str | Path | None = None,
) -> AppConfig:
    """Load, interpolate, validate, and return the application config.

    Parameters
    ----------
    path:
        Filesystem path to ``config.json``.  ``None`` uses the built-in
        defaults.
    overrides:
        CLI-supplied variable overrides.
    schema_path:
        Path to the JSON Schema file.  Defaults to
        ``config/config.schema.json`` relative to the project root.

    Returns
    -------
    AppConfig
        Fully resolved and validated configuration.

    Raises
    ------
    ConfigError
        If a required ``${VAR}`` cannot be resolved, the file is not valid
        JSON, or validation fails.
    """
    if path is None:
        raw: dict[str, Any] = DEFAULT_RAW_CONFIG
    else:
        try:
            raw = orjson.loads(Path(path).read_bytes())
        except orjson.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc

    interpolated = _walk_and_interpolate(raw, overrides=overrides)
    _validate_schema(interpolated, schema_path)
    return _dict_to_config(interpolated)


def resolve_config_path(explicit: Optional[str], default: str) -> Optional[str]:
    """Pick the config file: explicit path, else *default* if it exists."""
    if explicit:
        return explicit
    if Path(default).exists():
        return default
    return None
