"""
Delivery Layer

Per-channel bounded queues that decouple snapshot production from the
MQTT connection.
"""

from .queue import OutboundDeliveryQueue, QueueEntry, QueueStats

__all__ = [
    "OutboundDeliveryQueue",
    "QueueEntry",
    "QueueStats",
]
