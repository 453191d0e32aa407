from __future__ import annotations

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paho.mqtt.client as mqtt
import pytest
from conftest import wait_for

from inverter_bridge.common.config import MqttSettings, ReconnectDelay
from inverter_bridge.common.exceptions import PublishError
from inverter_bridge.services.transport import MqttTransport


class RecordingListener:
    def __init__(self) -> None:
        self.edges: list[tuple] = []
        self.threads: list[int] = []

    def on_transport_connected(self) -> None:
        self.threads.append(threading.get_ident())
        self.edges.append(("connected",))

    def on_transport_disconnected(self, code: int) -> None:
        self.threads.append(threading.get_ident())
        self.edges.append(("disconnected", code))


def _transport(**kwargs) -> tuple[MqttTransport, MagicMock]:
    client = MagicMock()
    return MqttTransport(MqttSettings(**kwargs), client=client), client


def test_client_is_configured_from_settings() -> None:
    settings = MqttSettings(
        user="bridge",
        password="secret",
        client_id="inverter-1",
        reconnect_delay=ReconnectDelay(min=2, max=30, exponential=False),
    )
    with patch("inverter_bridge.services.transport.mqtt_client.mqtt.Client") as client_cls:
        MqttTransport(settings)

    client_cls.assert_called_once_with(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id="inverter-1",
    )
    client = client_cls.return_value
    client.username_pw_set.assert_called_once_with("bridge", "secret")
    client.reconnect_delay_set.assert_called_once_with(min_delay=2, max_delay=2)
    client.enable_logger.assert_called_once()


def test_anonymous_client_sets_no_credentials() -> None:
    with patch("inverter_bridge.services.transport.mqtt_client.mqtt.Client") as client_cls:
        MqttTransport(MqttSettings())

    client_cls.return_value.username_pw_set.assert_not_called()
    client_cls.return_value.reconnect_delay_set.assert_called_once_with(min_delay=1, max_delay=60)


def test_publish_uses_qos_and_retain() -> None:
    transport, client = _transport(qos=2, retain=False)
    client.publish.return_value = SimpleNamespace(rc=mqtt.MQTT_ERR_SUCCESS)

    transport.publish("inverter/events", "{}")

    client.publish.assert_called_once_with("inverter/events", "{}", qos=2, retain=False)


def test_rejected_publish_raises() -> None:
    transport, client = _transport()
    client.publish.return_value = SimpleNamespace(rc=mqtt.MQTT_ERR_NO_CONN)

    with pytest.raises(PublishError) as exc_info:
        transport.publish("inverter", "{}")

    assert exc_info.value.rc == mqtt.MQTT_ERR_NO_CONN
    assert exc_info.value.channel == "inverter"


def test_invalid_publish_arguments_raise_publish_error() -> None:
    transport, client = _transport()
    client.publish.side_effect = ValueError("Publish topic cannot contain wildcards.")

    with pytest.raises(PublishError):
        transport.publish("inverter/#", "{}")


@pytest.mark.asyncio
async def test_callbacks_are_delivered_on_the_loop() -> None:
    transport, client = _transport(broker="broker.local", port=1884, keepalive=30)
    listener = RecordingListener()
    transport.add_listener(listener)

    transport.connect_async()
    client.connect_async.assert_called_once_with("broker.local", 1884, keepalive=30)
    client.loop_start.assert_called_once()

    ok = SimpleNamespace(value=0)
    lost = SimpleNamespace(value=7)
    thread = threading.Thread(target=transport._on_connect, args=(client, None, None, ok, None))
    thread.start()
    thread.join()
    await wait_for(lambda: listener.edges == [("connected",)])
    assert transport.is_connected

    thread = threading.Thread(target=transport._on_disconnect, args=(client, None, None, lost, None))
    thread.start()
    thread.join()
    await wait_for(lambda: len(listener.edges) == 2)

    assert listener.edges[1] == ("disconnected", 7)
    assert not transport.is_connected
    assert set(listener.threads) == {threading.get_ident()}


@pytest.mark.asyncio
async def test_refused_connect_is_not_an_edge() -> None:
    transport, client = _transport()
    listener = RecordingListener()
    transport.add_listener(listener)
    transport.connect_async()

    transport._on_connect(client, None, None, SimpleNamespace(value=135), None)
    await wait_for(lambda: True)

    assert listener.edges == []
    assert not transport.is_connected


@pytest.mark.asyncio
async def test_close_stops_network_loop() -> None:
    transport, client = _transport()
    transport.connect_async()

    await transport.close()

    client.disconnect.assert_called_once()
    client.loop_stop.assert_called_once()
