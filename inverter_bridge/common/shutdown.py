"""
Shutdown Coordinator

Process-wide cooperative cancellation signal. Every long-running task in
the bridge waits on it, so setting it once unblocks all of them.
"""

import asyncio
import signal
from collections.abc import Callable

from .logging_setup import get_service_logger

logger = get_service_logger("main")


class ShutdownCoordinator:
    """
    One-shot shutdown signal shared by the engine, the queues and the driver.

    The first call to `shutdown()` wins; its reason is kept for the exit
    log line and later calls are ignored.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reason: str | None = None
        self._fatal = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def is_running(self) -> bool:
        return not self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def fatal(self) -> bool:
        """Whether shutdown was caused by an error rather than a request"""
        return self._fatal

    def attach(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Bind to the event loop that foreign threads should signal"""
        self._loop = loop or asyncio.get_running_loop()

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Call `callback` (on the loop) when shutdown is signalled"""
        self._listeners.append(callback)

    def shutdown(self, reason: str, fatal: bool = False) -> bool:
        """
        Signal shutdown.

        Args:
            reason: Human readable cause, logged on exit
            fatal: True when an unrecoverable error caused the shutdown

        Returns:
            True if this call set the signal, False if it was already set
        """
        if self._event.is_set():
            logger.debug(f"Shutdown already in progress, ignoring: {reason}")
            return False

        self._reason = reason
        self._fatal = fatal
        self._event.set()

        if fatal:
            logger.error(f"Shutdown requested: {reason}")
        else:
            logger.info(f"Shutdown requested: {reason}")

        for callback in self._listeners:
            callback()
        return True

    def shutdown_threadsafe(self, reason: str, fatal: bool = False) -> None:
        """Signal shutdown from a thread that does not own the event loop"""
        if self._loop is None or self._loop.is_closed():
            self.shutdown(reason, fatal)
            return
        self._loop.call_soon_threadsafe(self.shutdown, reason, fatal)

    async def wait(self) -> None:
        """Block until shutdown is signalled"""
        await self._event.wait()

    async def sleep(self, timeout: float) -> bool:
        """
        Interruptible sleep.

        Returns:
            True if shutdown was signalled before the timeout elapsed
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def install_signal_handlers(self) -> None:
        """Map SIGINT/SIGTERM to a graceful shutdown"""
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop

        for sig in (signal.SIGTERM, signal.SIGINT):
            reason = f"signal {sig.name} ({sig.value})"
            try:
                loop.add_signal_handler(sig, self.shutdown, reason)
            except NotImplementedError:
                signal.signal(
                    sig,
                    lambda s, f, r=reason: self.shutdown_threadsafe(r),
                )
