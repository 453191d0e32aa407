"""
Structured Logging Setup

Consistent logging configuration across all bridge components.
Uses JSON format for structured logs in production, plain text otherwise.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from .config import LoggerSettings

LOGGER_PREFIX = "inverter_bridge"

# Component loggers that can be tuned individually from the config file
SERVICE_NAMES = ("main", "modbus", "observation", "mqtt", "queue", "health")

# Extra level below DEBUG used for raw protocol traces
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def parse_level(level: str | int) -> int:
    """Map a level name (including 'trace' and 'warn') to its number"""
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name == "TRACE":
        return TRACE
    if name == "WARN":
        name = "WARNING"
    return getattr(logging, name, logging.INFO)


def setup_logging(
    service_name: str,
    log_level: str | int = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a component.

    Args:
        service_name: Name of the component (e.g., "modbus", "mqtt")
        log_level: Logging level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = parse_level(log_level)

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{service_name}")
    logger.setLevel(numeric_level)

    # Clear existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the component

    Returns:
        Logger adapter with service name in all logs
    """
    # Check for environment variable override
    log_level = os.environ.get("INVERTER_BRIDGE_LOG_LEVEL", "INFO")
    json_format = os.environ.get("INVERTER_BRIDGE_LOG_FORMAT", "text").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def apply_logger_settings(settings: LoggerSettings) -> None:
    """
    Reconfigure every component logger from the `logger` config section.

    Environment variables still win over the file so a deployment can
    raise verbosity without editing the config.
    """
    env_level = os.environ.get("INVERTER_BRIDGE_LOG_LEVEL")
    env_format = os.environ.get("INVERTER_BRIDGE_LOG_FORMAT")
    json_format = (env_format or settings.format).lower() == "json"

    for name in SERVICE_NAMES:
        level = env_level or settings.levels.get(name, settings.level)
        setup_logging(name, level, json_format)
