"""
Observation Layer

Responsibilities:
- Poll the device on a fixed cadence while it is usable
- Build immutable snapshots and their JSON payloads
- Dispatch each new payload to the handler registered for its category
"""

from .engine import ConnectionState, ObservationEngine
from .snapshots import (
    Category,
    Committed,
    DeviceIdentity,
    EventsSnapshot,
    InputReading,
    PhaseReading,
    SnapshotBuilder,
    ValuesSnapshot,
    serialize,
)

__all__ = [
    "ObservationEngine",
    "ConnectionState",
    "Category",
    "Committed",
    "SnapshotBuilder",
    "ValuesSnapshot",
    "EventsSnapshot",
    "DeviceIdentity",
    "PhaseReading",
    "InputReading",
    "serialize",
]
