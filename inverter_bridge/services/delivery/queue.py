"""
Outbound Delivery Queue

Bounded FIFO of serialized payloads for one egress channel. Producers never
block: when the queue is full the oldest entry is evicted. A drain task
publishes entries in order, and only while the transport is connected.
"""

import asyncio
import threading
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any

from inverter_bridge.common.exceptions import PublishError
from inverter_bridge.common.logging_setup import get_service_logger
from inverter_bridge.common.shutdown import ShutdownCoordinator
from inverter_bridge.services.transport.base import TransportClient

logger = get_service_logger("queue")

# Pause before retrying after a rejected publish
PUBLISH_RETRY_DELAY = 1.0


@dataclass(frozen=True)
class QueueEntry:
    sequence: int
    payload: str


@dataclass
class QueueStats:
    """Point-in-time counters for one channel"""
    channel: str
    size: int
    capacity: int
    dropped: int
    published: int
    connected: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class OutboundDeliveryQueue:
    """
    Drop-oldest queue with its own drain task.

    `enqueue()` is safe from any thread. The drain task runs on the event
    loop passed to `start()` and publishes outside the channel lock; an
    entry is removed only after the transport accepted it.

    Also a `TransportListener`: the transport's connection edges decide
    whether the drain task may publish.
    """

    def __init__(
        self,
        channel: str,
        transport: TransportClient,
        shutdown: ShutdownCoordinator,
        capacity: int = 100,
        retry_delay: float = PUBLISH_RETRY_DELAY,
    ):
        if capacity < 1:
            raise ValueError(f"Queue capacity must be at least 1, got {capacity}")

        self.channel = channel
        self.transport = transport
        self.shutdown = shutdown
        self.capacity = capacity
        self.retry_delay = retry_delay

        self._lock = threading.Lock()
        self._entries: deque[QueueEntry] = deque()
        self._sequence = 0
        self._dropped = 0
        self._published = 0
        self._connected = transport.is_connected

        self._wake = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None

        shutdown.add_listener(self._wake_up)

    # --- producer side ---

    def enqueue(self, payload: str) -> None:
        """Append a payload, evicting the oldest entry when full"""
        with self._lock:
            if len(self._entries) >= self.capacity:
                self._entries.popleft()
                self._dropped += 1

            self._sequence += 1
            self._entries.append(QueueEntry(self._sequence, payload))

            # Logging only while disconnected
            if not self._connected:
                if self._dropped > 0:
                    logger.warning(
                        f"Queue '{self.channel}' full, dropped oldest message "
                        f"(total dropped: {self._dropped})"
                    )
                else:
                    logger.debug(
                        f"Waiting for MQTT connection... "
                        f"({len(self._entries)} messages cached for '{self.channel}')"
                    )

        self._wake_up()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    @property
    def is_connected(self) -> bool:
        return self._connected

    def snapshot(self) -> list[str]:
        """Queued payloads, oldest first"""
        with self._lock:
            return [entry.payload for entry in self._entries]

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                channel=self.channel,
                size=len(self._entries),
                capacity=self.capacity,
                dropped=self._dropped,
                published=self._published,
                connected=self._connected,
            )

    # --- TransportListener ---

    def on_transport_connected(self) -> None:
        with self._lock:
            self._connected = True
        self._wake_up()

    def on_transport_disconnected(self, code: int) -> None:
        with self._lock:
            self._connected = False
        logger.debug(f"Queue '{self.channel}' paused (transport disconnected, rc={code})")
        self._wake_up()

    # --- lifecycle ---

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._drain_loop(), name=f"drain-{self.channel}")
        logger.info(f"Delivery queue '{self.channel}' started (capacity: {self.capacity})")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = len(self)
        if pending:
            logger.info(f"Delivery queue '{self.channel}' stopped with {pending} unsent message(s)")

    def _wake_up(self) -> None:
        """Set the wake flag from whichever thread we are on"""
        loop = self._loop
        if loop is None:
            self._wake.set()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._wake.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._wake.set)

    # --- drain side ---

    async def _drain_loop(self) -> None:
        while await self._wait_until_ready():
            if not self._drain_burst():
                # Publish rejected, retry the same entry on the next wake
                await self._pause(self.retry_delay)

        logger.debug(f"Drain loop for '{self.channel}' stopped")

    async def _pause(self, timeout: float) -> None:
        """Wait for the next wake-up, at most `timeout` seconds"""
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _wait_until_ready(self) -> bool:
        """
        Wait until the transport is connected and the queue is non-empty.

        Returns:
            False when shutdown was signalled instead
        """
        while self.shutdown.is_running:
            self._wake.clear()
            with self._lock:
                if self._connected and self._entries:
                    return True
            await self._wake.wait()
        return False

    def _drain_burst(self) -> bool:
        """
        Publish from the front until empty, disconnected or rejected.

        Returns:
            False if the transport rejected a publish
        """
        while self.shutdown.is_running:
            with self._lock:
                if not self._entries:
                    # Reset dropped count once queue is empty
                    self._dropped = 0
                    return True
                if not self._connected:
                    return True
                entry = self._entries[0]

            try:
                self.transport.publish(self.channel, entry.payload)
            except PublishError as e:
                logger.error(f"MQTT publish to '{self.channel}' failed: {e.message}")
                return False

            with self._lock:
                # The entry may have been evicted while we were publishing
                if self._entries and self._entries[0].sequence == entry.sequence:
                    self._entries.popleft()
                self._published += 1

            logger.debug(f"Published MQTT message to topic '{self.channel}': {entry.payload}")

        return True
