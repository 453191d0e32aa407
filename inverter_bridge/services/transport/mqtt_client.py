"""
MQTT Transport

paho-mqtt client running its own network thread. Connection callbacks are
moved onto the asyncio loop before listeners see them; publishing is a
non-blocking hand-off to paho's outgoing buffer.
"""

import asyncio
from typing import Any

import paho.mqtt.client as mqtt

from inverter_bridge.common.config import MqttSettings
from inverter_bridge.common.exceptions import PublishError
from inverter_bridge.common.logging_setup import get_service_logger

from .base import TransportListener

logger = get_service_logger("mqtt")


class MqttTransport:
    """
    TransportClient backed by paho-mqtt.

    paho reconnects on its own using the configured backoff; every connect
    and disconnect edge is forwarded to the registered listeners on the loop
    that called `connect_async()`.
    """

    def __init__(self, settings: MqttSettings, client: mqtt.Client | None = None):
        self.settings = settings
        self._client = client or self._create_client()
        self._listeners: list[TransportListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected = False
        self._started = False

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

    def _create_client(self) -> mqtt.Client:
        settings = self.settings
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.client_id or "",
        )
        client.enable_logger(logger.logger)

        if settings.user:
            client.username_pw_set(settings.user, settings.password)

        delay = settings.reconnect_delay
        max_delay = delay.max if delay.exponential else delay.min
        client.reconnect_delay_set(
            min_delay=max(1, int(delay.min)),
            max_delay=max(1, int(max_delay)),
        )
        return client

    @property
    def is_connected(self) -> bool:
        return self._connected

    def add_listener(self, listener: TransportListener) -> None:
        self._listeners.append(listener)

    def connect_async(self) -> None:
        """Start the paho network thread; must be called from the event loop"""
        self._loop = asyncio.get_running_loop()

        # The network thread retries the initial connect as well
        self._client.connect_async(
            self.settings.broker,
            self.settings.port,
            keepalive=self.settings.keepalive,
        )
        self._client.loop_start()
        self._started = True
        logger.info(f"Connecting to MQTT broker at {self.settings.broker}:{self.settings.port}")

    def publish(self, channel: str, payload: str) -> None:
        try:
            info = self._client.publish(
                channel,
                payload,
                qos=self.settings.qos,
                retain=self.settings.retain,
            )
        except ValueError as e:
            raise PublishError(str(e), channel=channel) from e

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(mqtt.error_string(info.rc), channel=channel, rc=info.rc)

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        self._client.disconnect()
        self._client.loop_stop()
        self._connected = False
        logger.debug("MQTT network loop stopped")

    # --- paho callbacks (network thread) ---

    def _on_connect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            logger.warning(f"MQTT connect failed: {reason_code} ({reason_code.value}), will retry...")
            return
        logger.info("MQTT connected successfully")
        self._post(self._notify_connected)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        code = reason_code.value
        if code == 0:
            logger.info("MQTT disconnected cleanly")
        else:
            logger.warning(f"MQTT connection lost: {reason_code} ({code}), will retry...")
        self._post(self._notify_disconnected, code)

    def _post(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    # --- listener fan-out (event loop) ---

    def _notify_connected(self) -> None:
        self._connected = True
        for listener in self._listeners:
            listener.on_transport_connected()

    def _notify_disconnected(self, code: int) -> None:
        self._connected = False
        for listener in self._listeners:
            listener.on_transport_disconnected(code)
