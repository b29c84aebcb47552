"""Click CLI for the serial → MQTT attendance bridge.

Entry point registered in ``pyproject.toml`` as ``presenca-serial-bridge``.

Subcommands::

    presenca-serial-bridge              # run the bridge
    presenca-serial-bridge --dry-run    # print publishes to stdout, no broker
    presenca-serial-bridge ports        # list serial ports and the detected ESP32
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import click
import orjson

from presenca_serial_bridge import __version__
from presenca_serial_bridge.bus import MqttBus, StdoutBus
from presenca_serial_bridge.config import (
    AppConfig,
    LogFileConfig,
    load_config,
    resolve_config_path,
    validate_config,
)
from presenca_serial_bridge.driver import BridgeDriver
from presenca_serial_bridge.exceptions import BridgeError, NoSerialPortError, SerialLinkError
from presenca_serial_bridge.gate import DeliveryGate
from presenca_serial_bridge.models import ConnectionStatus
from presenca_serial_bridge.serial_link import SerialLink, find_esp32_port, list_ports

logger = logging.getLogger("presenca_serial_bridge")

DEFAULT_CONFIG = "/etc/presenca/config.json"


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON to stderr."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(level: str, log_file_config: Optional[LogFileConfig] = None) -> None:
    """Configure the root logger with JSON output on stderr + optional file."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_JsonFormatter())
    root.addHandler(stderr_handler)

    if log_file_config and log_file_config.enabled:
        from logging.handlers import RotatingFileHandler

        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file_config.path,
            maxBytes=log_file_config.max_size_bytes,
            backupCount=log_file_config.backup_count,
        )
        file_handler.setFormatter(_JsonFormatter())
        root.addHandler(file_handler)


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("-p", "--port", default=None, help="Serial port (default: auto-detect).")
@click.option("-b", "--baud-rate", type=int, default=None, help="Serial baud rate.")
@click.option("--broker-url", default=None, help="MQTT broker URL (mqtt://host:port).")
@click.option("--room", default=None, help="Default room for tag reads without ROOM:.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--dry-run", is_flag=True, help="Print publishes to stdout instead of MQTT.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    port: Optional[str],
    baud_rate: Optional[int],
    broker_url: Optional[str],
    room: Optional[str],
    log_level: Optional[str],
    dry_run: bool,
    validate_only: bool,
) -> None:
    """Presença serial bridge: ESP32 RFID reads to MQTT attendance events."""
    if ctx.invoked_subcommand is not None:
        return  # defer to subcommand

    # --- build overrides for ${VAR} placeholders ---
    overrides: dict[str, str] = {}
    if broker_url:
        overrides["MQTT_BROKER_URL"] = broker_url
    if room:
        overrides["ROOM_NAME"] = room
    if port:
        overrides["SERIAL_PORT"] = port

    cfg_path = resolve_config_path(
        config_path or os.environ.get("PRESENCA_CONFIG"), DEFAULT_CONFIG
    )

    try:
        cfg = load_config(cfg_path, overrides=overrides)

        # --- explicit options beat config file values ---
        if port:
            cfg.serial.port = port
        if baud_rate is not None:
            cfg.serial.baud_rate = baud_rate
        if broker_url:
            cfg.mqtt.broker_url = broker_url
        if room is not None:
            cfg.bridge.default_room = room
        validate_config(cfg)
    except (BridgeError, OSError) as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    effective_level = (
        log_level
        or os.environ.get("PRESENCA_LOG_LEVEL")
        or cfg.logging.level
    )
    _setup_logging(effective_level, cfg.logging.file)

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting presenca-serial-bridge %s (broker=%s, room=%s, dry_run=%s)",
        __version__,
        cfg.mqtt.broker_url,
        cfg.bridge.default_room,
        dry_run,
    )

    try:
        asyncio.run(_run_bridge(cfg, dry_run))
    except (NoSerialPortError, SerialLinkError) as exc:
        logger.error("Serial error: %s", exc)
        raise SystemExit(1) from exc


# ── async bridge ────────────────────────────────────────────────────


async def _run_bridge(cfg: AppConfig, dry_run: bool) -> None:
    """Open serial + bus, then run the serialized driver loop until shutdown."""
    loop = asyncio.get_running_loop()

    link = SerialLink(cfg.serial)
    port = link.open()

    # bus → gate → driver; status notifications only flow once bus.start() runs
    def on_status(status: ConnectionStatus) -> None:
        enqueue_status(status)

    bus: MqttBus | StdoutBus = StdoutBus(on_status) if dry_run else MqttBus(cfg.mqtt, on_status)
    gate = DeliveryGate(send=bus.send)
    driver = BridgeDriver(gate, cfg.bridge.default_room, port=port)
    enqueue_status = driver.status_callback(loop)

    # --- signal handling ---
    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        link.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    logger.info("Bridge ready, waiting for ESP32 identification on %s", port)
    bus.start()
    try:
        await driver.run(link.lines())
    finally:
        bus.stop()
        link.close()
        logger.info(
            "Bridge shut down (lines=%d, attempted=%d, failed=%d, skipped=%d, suppressed=%d)",
            link.lines_read,
            gate.attempted,
            gate.failed,
            gate.skipped,
            driver.suppressed,
        )


# ── ports subcommand ────────────────────────────────────────────────


@main.command("ports")
def ports_cmd() -> None:
    """List serial ports and show which one would be used."""
    ports = list_ports()
    for i, p in enumerate(ports, start=1):
        click.echo(f"{i}. {p.device} - {p.manufacturer or 'unknown'}")
    try:
        click.echo(f"Selected: {find_esp32_port(ports)}")
    except NoSerialPortError as exc:
        click.echo(str(exc), err=True)
        raise SystemExit(1) from exc
