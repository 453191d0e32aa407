"""
Transport Interfaces

What the delivery queues need from a message transport, and how the
transport reports connectivity back to them.
"""

from typing import Protocol, runtime_checkable


class TransportListener(Protocol):
    """Receives connection edges, always on the event loop"""

    def on_transport_connected(self) -> None: ...

    def on_transport_disconnected(self, code: int) -> None: ...


@runtime_checkable
class TransportClient(Protocol):
    """Publish-only message transport with automatic reconnect"""

    @property
    def is_connected(self) -> bool: ...

    def add_listener(self, listener: TransportListener) -> None: ...

    def connect_async(self) -> None:
        """Start connecting in the background; edges arrive via listeners"""
        ...

    def publish(self, channel: str, payload: str) -> None:
        """
        Hand one payload to the transport.

        Raises:
            PublishError: the transport did not accept the message
        """
        ...

    async def close(self) -> None: ...
