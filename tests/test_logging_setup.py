from __future__ import annotations

import json
import logging

from inverter_bridge.common.config import LoggerSettings
from inverter_bridge.common.logging_setup import (
    TRACE,
    JsonFormatter,
    apply_logger_settings,
    parse_level,
)


def test_parse_level_accepts_aliases() -> None:
    assert parse_level("trace") == TRACE
    assert parse_level("warn") == logging.WARNING
    assert parse_level("Debug") == logging.DEBUG
    assert parse_level("nonsense") == logging.INFO
    assert parse_level(logging.ERROR) == logging.ERROR


def test_json_formatter_includes_service_and_extras() -> None:
    record = logging.LogRecord("inverter_bridge.mqtt", logging.INFO, __file__, 1, "connected", None, None)
    record.service = "mqtt"
    record.broker = "localhost"

    data = json.loads(JsonFormatter().format(record))

    assert data["service"] == "mqtt"
    assert data["message"] == "connected"
    assert data["level"] == "INFO"
    assert data["broker"] == "localhost"


def test_apply_logger_settings_sets_per_component_levels(monkeypatch) -> None:
    monkeypatch.delenv("INVERTER_BRIDGE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("INVERTER_BRIDGE_LOG_FORMAT", raising=False)

    apply_logger_settings(LoggerSettings(level="warning", levels={"modbus": "debug"}))

    assert logging.getLogger("inverter_bridge.modbus").level == logging.DEBUG
    assert logging.getLogger("inverter_bridge.observation").level == logging.WARNING
    assert logging.getLogger("inverter_bridge.mqtt").level == logging.WARNING
    assert not logging.getLogger("inverter_bridge.queue").propagate


def test_environment_overrides_file(monkeypatch) -> None:
    monkeypatch.setenv("INVERTER_BRIDGE_LOG_LEVEL", "ERROR")

    apply_logger_settings(LoggerSettings(level="debug"))

    assert logging.getLogger("inverter_bridge.health").level == logging.ERROR
    monkeypatch.delenv("INVERTER_BRIDGE_LOG_LEVEL")
    apply_logger_settings(LoggerSettings())
