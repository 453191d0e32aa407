"""
Inverter Bridge

Wires the device driver, the observation engine, one delivery queue per
topic and the MQTT transport together, and serves a local health endpoint.

Data flow:
    driver -> ObservationEngine -> callback -> OutboundDeliveryQueue -> MQTT
"""

import asyncio
from datetime import datetime, timezone

from aiohttp import web

from inverter_bridge.common.config import BridgeConfig
from inverter_bridge.common.logging_setup import get_service_logger
from inverter_bridge.common.shutdown import ShutdownCoordinator
from inverter_bridge.services.delivery import OutboundDeliveryQueue
from inverter_bridge.services.device import DeviceDriver, ModbusInverterDriver
from inverter_bridge.services.observation import Category, ObservationEngine
from inverter_bridge.services.transport import MqttTransport, TransportClient

logger = get_service_logger("main")
health_logger = get_service_logger("health")


class Bridge:
    """
    Owns every long-running component and their start/stop order.

    `run()` blocks until the shared shutdown signal is set and returns the
    process exit code.
    """

    def __init__(
        self,
        config: BridgeConfig,
        driver: DeviceDriver | None = None,
        transport: TransportClient | None = None,
        shutdown: ShutdownCoordinator | None = None,
    ):
        self.config = config
        self.shutdown = shutdown or ShutdownCoordinator()

        self.driver = driver or ModbusInverterDriver(config.modbus)
        self.transport = transport or MqttTransport(config.mqtt)
        self.engine = ObservationEngine.from_settings(self.driver, config.modbus, self.shutdown)

        mqtt = config.mqtt
        topics = {
            Category.VALUES: mqtt.values_topic,
            Category.EVENTS: mqtt.events_topic,
            Category.DEVICE: mqtt.device_topic,
        }
        self.queues: dict[Category, OutboundDeliveryQueue] = {}
        for category, topic in topics.items():
            queue = OutboundDeliveryQueue(topic, self.transport, self.shutdown, capacity=mqtt.queue_size)
            self.transport.add_listener(queue)
            self.engine.register_callback(category, queue.enqueue)
            self.queues[category] = queue

        self._start_time = datetime.now(timezone.utc)

        # Health server
        self._health_runner: web.AppRunner | None = None

    async def run(self, install_signal_handlers: bool = True) -> int:
        """
        Start everything, wait for shutdown, stop everything.

        Returns:
            0 for a requested shutdown, 1 when an error caused it
        """
        self.shutdown.attach()
        if install_signal_handlers:
            self.shutdown.install_signal_handlers()

        try:
            await self.start()
            await self.shutdown.wait()
        except (OSError, ValueError) as e:
            self.shutdown.shutdown(f"Startup failed: {e}", fatal=True)
        finally:
            await self.stop()

        logger.info(f"Shutting down: {self.shutdown.reason}")
        return 1 if self.shutdown.fatal else 0

    async def start(self) -> None:
        self._start_time = datetime.now(timezone.utc)

        # Consumers first so nothing produced early is missed
        for queue in self.queues.values():
            await queue.start()
        self.transport.connect_async()

        await self.engine.start()
        await self.driver.connect()

        if self.config.health.port:
            await self._start_health_server()

    async def stop(self) -> None:
        steps = [
            ("health server", self._stop_health_server),
            ("observation engine", self.engine.stop),
            ("device driver", self.driver.close),
            ("transport", self.transport.close),
        ]
        steps.extend((f"queue {queue.channel}", queue.stop) for queue in self.queues.values())

        for name, stop in steps:
            try:
                await stop()
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")

    # --- health server ---

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/values", self._payload_handler(Category.VALUES))
        app.router.add_get("/events", self._payload_handler(Category.EVENTS))
        app.router.add_get("/device", self._payload_handler(Category.DEVICE))

        self._health_runner = web.AppRunner(app)
        await self._health_runner.setup()

        health = self.config.health
        site = web.TCPSite(self._health_runner, health.host, health.port)
        await site.start()

        health_logger.info(f"Health server started on {health.host}:{health.port}")

    async def _stop_health_server(self) -> None:
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    def health(self) -> dict:
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        return {
            "status": "healthy" if self.shutdown.is_running else "stopping",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "device": {
                "endpoint": self.config.modbus.endpoint,
                "state": self.engine.connection_state.value,
                "cycles": self.engine.cycles,
            },
            "mqtt": {
                "broker": f"{self.config.mqtt.broker}:{self.config.mqtt.port}",
                "connected": self.transport.is_connected,
            },
            "queues": [queue.stats().to_dict() for queue in self.queues.values()],
        }

    async def _health_handler(self, request: web.Request) -> web.Response:
        return web.json_response(self.health())

    def _payload_handler(self, category: Category):
        async def handler(request: web.Request) -> web.Response:
            return web.Response(
                text=self.engine.get_current_payload(category),
                content_type="application/json",
            )
        return handler


async def run_bridge(config: BridgeConfig) -> int:
    """Run a bridge until shutdown and return its exit code"""
    bridge = Bridge(config)
    try:
        return await bridge.run()
    except asyncio.CancelledError:
        logger.info("Bridge cancelled")
        return 0
