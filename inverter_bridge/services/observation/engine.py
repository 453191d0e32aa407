"""
Observation Engine

Polls the device at a fixed interval, commits one snapshot per category
and hands each new payload to the callback registered for its category.

Cycle order: device identity (fetched once), values, events. Each update
fails independently; a failed fetch demotes the connection and skips that
category's callback, the others still run.
"""

import asyncio
import threading
import time
from collections.abc import Callable
from enum import Enum

from inverter_bridge.common.config import IdentityRefresh, ModbusSettings
from inverter_bridge.common.exceptions import CallbackError, CommunicationError, DeviceError
from inverter_bridge.common.logging_setup import get_service_logger
from inverter_bridge.common.shutdown import ShutdownCoordinator
from inverter_bridge.services.device.driver import DeviceDriver

from .snapshots import (
    DEFAULT_SNAPSHOTS,
    Category,
    Committed,
    DeviceIdentity,
    Snapshot,
    SnapshotBuilder,
)

logger = get_service_logger("observation")

SnapshotHandler = Callable[[str], None]


class ConnectionState(str, Enum):
    """Whether the polled device may be read this cycle"""
    DISCONNECTED = "disconnected"
    CONNECTED_UNVALIDATED = "connected_unvalidated"
    CONNECTED_VALID = "connected_valid"


class ObservationEngine:
    """
    Owns the polling task, the connection state and the current snapshots.

    The engine is also the driver's `DeviceListener`: connection state only
    changes inside the `on_device_*` methods. Snapshot/payload pairs and the
    callback table share one lock; callbacks are always invoked outside it.
    """

    def __init__(
        self,
        driver: DeviceDriver,
        shutdown: ShutdownCoordinator,
        update_interval: float = 5.0,
        identity_refresh: IdentityRefresh = IdentityRefresh.ONCE,
        slave_id: int | None = None,
    ):
        self.driver = driver
        self.shutdown = shutdown
        self.update_interval = update_interval
        self.identity_refresh = identity_refresh
        self.slave_id = slave_id

        self.builder = SnapshotBuilder(driver)

        self._lock = threading.Lock()
        self._committed: dict[Category, Committed] = {
            category: Committed.of(snapshot)
            for category, snapshot in DEFAULT_SNAPSHOTS.items()
        }
        self._callbacks: dict[Category, SnapshotHandler] = {}

        self._state = ConnectionState.DISCONNECTED
        self._identity_fetched = False
        self._cycles = 0
        self._task: asyncio.Task | None = None

        driver.set_listener(self)

    @classmethod
    def from_settings(
        cls,
        driver: DeviceDriver,
        settings: ModbusSettings,
        shutdown: ShutdownCoordinator,
    ) -> "ObservationEngine":
        return cls(
            driver,
            shutdown,
            update_interval=settings.update_interval,
            identity_refresh=settings.identity_refresh,
            slave_id=settings.slave_id,
        )

    # --- produced interface ---

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def cycles(self) -> int:
        """Number of polling cycles that ran updates"""
        return self._cycles

    def register_callback(self, category: Category, handler: SnapshotHandler | None) -> None:
        """Set (or with None, remove) the single handler for a category"""
        with self._lock:
            if handler is None:
                self._callbacks.pop(category, None)
            else:
                self._callbacks[category] = handler

    def get_current_snapshot(self, category: Category) -> Snapshot:
        with self._lock:
            return self._committed[category].snapshot

    def get_current_payload(self, category: Category) -> str:
        with self._lock:
            return self._committed[category].payload

    def get_current(self, category: Category) -> Committed:
        """Snapshot and payload as one consistent pair"""
        with self._lock:
            return self._committed[category]

    # --- lifecycle ---

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run_loop(), name="observation-loop")
        logger.info(f"Observation engine started (interval: {self.update_interval}s)")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while self.shutdown.is_running:
            if self._state == ConnectionState.CONNECTED_VALID:
                try:
                    await self.run_cycle()
                except Exception as e:
                    logger.exception(f"Unexpected error during update cycle: {e}")
                    await self.on_device_error(CommunicationError(f"Unexpected error: {e}"))

            # Wait for next update interval
            if await self.shutdown.sleep(self.update_interval):
                break

        logger.debug("Observation loop stopped")

    async def run_cycle(self) -> None:
        """Run every update once, in order"""
        self._cycles += 1
        for update in (self.update_device_identity, self.update_values, self.update_events):
            if not self.shutdown.is_running:
                return
            await update()

    # --- updates ---

    async def update_device_identity(self) -> bool:
        """
        Read nameplate data once.

        After the first success this is a no-op that reports success
        without touching the driver.
        """
        if self._identity_fetched:
            return True

        try:
            await self.driver.fetch_identity()
            identity = self.builder.build_identity(self._now_ms())
        except DeviceError as e:
            await self._fetch_failed(Category.DEVICE, e)
            return False

        self._log_identity(identity)
        payload = self._commit(Category.DEVICE, identity)
        self._identity_fetched = True
        self._dispatch(Category.DEVICE, payload)
        return True

    async def update_values(self) -> bool:
        try:
            await self.driver.fetch_registers()
            values = self.builder.build_values(self._now_ms())
        except DeviceError as e:
            await self._fetch_failed(Category.VALUES, e)
            return False

        payload = self._commit(Category.VALUES, values)
        logger.debug(payload)
        self._dispatch(Category.VALUES, payload)
        return True

    async def update_events(self) -> bool:
        """Uses the registers fetched by `update_values` this cycle"""
        try:
            events = self.builder.build_events(self._now_ms())
        except DeviceError as e:
            await self._fetch_failed(Category.EVENTS, e)
            return False

        payload = self._commit(Category.EVENTS, events)
        logger.debug(payload)
        self._dispatch(Category.EVENTS, payload)
        return True

    def _commit(self, category: Category, snapshot: Snapshot) -> str:
        committed = Committed.of(snapshot)
        with self._lock:
            self._committed[category] = committed
        return committed.payload

    def _dispatch(self, category: Category, payload: str) -> None:
        with self._lock:
            handler = self._callbacks.get(category)
        if handler is None:
            return

        try:
            handler(payload)
        except Exception as e:
            error = CallbackError(category.value, e)
            logger.error(f"FATAL error in {category.value} callback: {e}")
            self.shutdown.shutdown(error.message, fatal=True)

    async def _fetch_failed(self, category: Category, error: DeviceError) -> None:
        logger.warning(f"{category.value} update failed: {error.message}")
        await self.on_device_error(error)

    def _log_identity(self, identity: DeviceIdentity) -> None:
        logger.info(f"Manufacturer: {identity.manufacturer}")
        logger.info(f"Model: {identity.model}")
        logger.info(f"Serial number: {identity.serial_number}")
        logger.info(f"Firmware version: {identity.firmware_version}")
        logger.info(
            f"Configuration: {identity.phases} phase{'s' if identity.phases > 1 else ''}, "
            f"{identity.inputs} input{'s' if identity.inputs > 1 else ''}, "
            f"{'hybrid' if identity.hybrid else 'non-hybrid'}"
        )
        if (
            self.slave_id is not None
            and identity.device_address is not None
            and identity.device_address != self.slave_id
        ):
            logger.warning(
                f"Configured slave ID ({self.slave_id}) does not match "
                f"device-reported slave ID ({identity.device_address})"
            )

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    # --- DeviceListener ---

    async def on_device_connected(self) -> None:
        logger.info("Inverter connected successfully")
        self._set_state(ConnectionState.CONNECTED_UNVALIDATED)

        try:
            valid = await self.driver.validate_device()
        except DeviceError as e:
            logger.warning(f"Device validation error: {e.message}")
            valid = False

        if not valid:
            logger.error("Device validation failed, will retry after reconnect")
            self._set_state(ConnectionState.DISCONNECTED)
            self.driver.trigger_reconnect()
            return

        if self.identity_refresh == IdentityRefresh.PER_CONNECTION:
            self._identity_fetched = False
        self._set_state(ConnectionState.CONNECTED_VALID)

    async def on_device_disconnected(self, delay: float) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        logger.warning(
            f"Inverter disconnected, trying to reconnect in {delay:g} "
            f"{'second' if delay == 1 else 'seconds'}..."
        )

    async def on_device_error(self, error: DeviceError) -> None:
        if not error.recoverable:
            logger.error(f"FATAL Modbus error: {error.message}")
            self.shutdown.shutdown(error.message, fatal=True)
            return

        logger.debug(f"Transient Modbus error: {error.message}")
        self._set_state(ConnectionState.DISCONNECTED)
        self.driver.trigger_reconnect()

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug(f"Connection state {self._state.value} -> {state.value}")
        self._state = state
