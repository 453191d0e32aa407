"""
Transport Layer - MQTT Communication

Responsibilities:
- Keep a broker connection alive with automatic reconnect
- Report connection edges to the delivery queues
- Publish payloads with the configured QoS and retain flag
"""

from .base import TransportClient, TransportListener
from .mqtt_client import MqttTransport

__all__ = [
    "TransportClient",
    "TransportListener",
    "MqttTransport",
]
