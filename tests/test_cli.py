"""Tests for the click entry point."""

import logging
from unittest.mock import patch

import orjson
import pytest
from click.testing import CliRunner

from presenca_serial_bridge.cli import main
from presenca_serial_bridge.exceptions import NoSerialPortError
from presenca_serial_bridge.serial_link import PortInfo


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch):
    for var in ("PRESENCA_CONFIG", "PRESENCA_LOG_LEVEL", "MQTT_BROKER_URL", "ROOM_NAME", "SERIAL_PORT"):
        monkeypatch.delenv(var, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield CliRunner()
    # main() installs stderr handlers bound to the runner's streams
    root.handlers[:] = handlers
    root.setLevel(level)


def test_validate_config(runner: CliRunner) -> None:
    result = runner.invoke(main, ["--validate-config", "--room", "Lab 2"])
    assert result.exit_code == 0
    assert "Configuration is valid." in result.output


def test_config_error_exits_1(runner: CliRunner, tmp_path) -> None:
    result = runner.invoke(main, ["--config", str(tmp_path / "missing.json")])
    assert result.exit_code == 1
    assert "Config error" in result.output


def test_bad_broker_url_exits_1(runner: CliRunner) -> None:
    result = runner.invoke(main, ["--validate-config", "--broker-url", "http://x"])
    assert result.exit_code == 1


@pytest.mark.parametrize("option", [
    ["--broker-url", "ws://bad:9001"],
    ["--broker-url", "mqtt://bad:99999"],
    ["--room", "   "],
    ["--baud-rate", "0"],
])
def test_bad_option_over_config_file_exits_1(runner: CliRunner, tmp_path, option: list[str]) -> None:
    """Options that replace config file values are validated too."""
    cfg = tmp_path / "config.json"
    cfg.write_bytes(orjson.dumps({"mqtt": {"broker_url": "mqtt://ok:1883"}}))
    result = runner.invoke(main, ["--config", str(cfg), "--validate-config", *option])
    assert result.exit_code == 1
    assert "Config error" in result.output


def test_no_serial_port_is_fatal(runner: CliRunner) -> None:
    """Startup without any serial port exits non-zero."""
    with patch("presenca_serial_bridge.serial_link.list_ports", return_value=[]):
        result = runner.invoke(main, ["--dry-run"])
    assert result.exit_code == 1


def test_ports_lists_and_selects(runner: CliRunner) -> None:
    ports = [PortInfo("/dev/ttyS0", None), PortInfo("/dev/ttyUSB0", "Silicon Labs")]
    with patch("presenca_serial_bridge.cli.list_ports", return_value=ports):
        result = runner.invoke(main, ["ports"])
    assert result.exit_code == 0
    assert "1. /dev/ttyS0 - unknown" in result.output
    assert "Selected: /dev/ttyUSB0" in result.output


def test_ports_none_found(runner: CliRunner) -> None:
    with patch("presenca_serial_bridge.cli.list_ports", return_value=[]):
        result = runner.invoke(main, ["ports"])
    assert result.exit_code == 1
    assert str(NoSerialPortError("No serial port found")) in result.output
