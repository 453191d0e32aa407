#!/usr/bin/env python3
"""
Inverter Bridge - Main Entry Point

Polls a solar inverter over Modbus and publishes its values, events and
identity to an MQTT broker.

Usage:
    inverter-bridge -c config.yaml            # Run the bridge
    inverter-bridge -c config.yaml --dry-run  # Print config and exit
    inverter-bridge -V                        # Print version and exit

Exit codes:
    0 - stopped by signal (or dry run)
    1 - invalid configuration or fatal runtime error
"""

import argparse
import asyncio
import sys

from inverter_bridge import __version__
from inverter_bridge.bridge import run_bridge
from inverter_bridge.common.config import BridgeConfig, load_bridge_config, load_config_file
from inverter_bridge.common.exceptions import ConfigError
from inverter_bridge.common.logging_setup import apply_logger_settings, get_service_logger
from inverter_bridge.common.validator import ConfigValidator

logger = get_service_logger("main")


def load_config(config_path: str) -> BridgeConfig:
    """
    Load and validate the configuration file.

    Args:
        config_path: Path to configuration file

    Returns:
        Parsed configuration

    Raises:
        ConfigError: file unreadable or invalid; `errors` lists every problem
    """
    data = load_config_file(config_path)

    valid, errors = ConfigValidator().validate(data)
    if not valid:
        raise ConfigError(f"Invalid configuration in {config_path}", errors=errors)

    return load_bridge_config(data)


def print_config_summary(config: BridgeConfig) -> None:
    """Print a summary of the configuration."""
    modbus = config.modbus
    mqtt = config.mqtt
    device = modbus.device

    print("\n" + "=" * 60)
    print(f"  INVERTER BRIDGE {__version__}")
    print("=" * 60)

    print(f"\n  Modbus ({modbus.protocol.value.upper()}):")
    print(f"    - Endpoint: {modbus.endpoint}")
    print(f"    - Slave ID: {modbus.slave_id}")
    print(f"    - Interval: {modbus.update_interval}s")
    print(f"    - Timeout: {modbus.response_timeout.seconds}s")
    print(f"    - Device: {device.phases} phase(s), {device.inputs} input(s), "
          f"{'hybrid' if device.hybrid else 'non-hybrid'}")
    print(f"    - Registers: {len(modbus.registers)}")
    print(f"    - Identity refresh: {modbus.identity_refresh.value}")

    print(f"\n  MQTT:")
    print(f"    - Broker: {mqtt.broker}:{mqtt.port}")
    print(f"    - Topics: {mqtt.values_topic}, {mqtt.events_topic}, {mqtt.device_topic}")
    print(f"    - QoS: {mqtt.qos}, retain: {mqtt.retain}")
    print(f"    - Queue size: {mqtt.queue_size}")

    if config.health.port:
        print(f"\n  Health: http://{config.health.host}:{config.health.port}/health")
    else:
        print(f"\n  Health: Disabled")

    print("=" * 60 + "\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inverter-bridge",
        description="Modbus inverter to MQTT bridge",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without starting the bridge"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(e.message)
        for error in e.errors:
            logger.error(f"Configuration error: {error}")
        sys.exit(1)

    # Set log levels
    if args.verbose:
        config.logger.level = "debug"
        config.logger.levels = {}
    apply_logger_settings(config.logger)

    # Dry run mode
    if args.dry_run:
        print_config_summary(config)
        print("Dry run mode - exiting without starting the bridge")
        sys.exit(0)

    logger.info(f"Starting inverter-bridge {__version__} with config '{args.config}'")

    sys.exit(asyncio.run(run_bridge(config)))


if __name__ == "__main__":
    main()
