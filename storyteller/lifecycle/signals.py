"""
Shutdown context shared between OS signal handlers and the lifecycle manager.

The manager never registers process-wide handlers itself. It is handed a
``ShutdownSignal`` at construction; the entry point binds SIGINT/SIGTERM to
it with ``install_signal_handlers``. Tests trigger it directly.
"""
import asyncio
import signal
from typing import Callable, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class ShutdownSignal:
    """One-shot shutdown request with the name of whatever triggered it."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self.request_count = 0
        self._listeners: list = []

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self, reason: str = "manual") -> bool:
        """
        Ask for shutdown.

        Returns True for the first request only. Later requests are counted
        and reported to subscribers, but do not change ``reason``.
        """
        self.request_count += 1
        first = not self._event.is_set()
        if first:
            self.reason = reason
            self._event.set()
            logger.info("shutdown_requested", reason=reason)
        for callback in list(self._listeners):
            callback(reason, first)
        return first

    def subscribe(self, callback: Callable[[str, bool], None]) -> None:
        """Call ``callback(reason, first)`` on every request."""
        self._listeners.append(callback)

    async def wait(self) -> str:
        await self._event.wait()
        return self.reason

    async def wait_for(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if shutdown was requested."""
        if self._event.is_set():
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


def install_signal_handlers(
    shutdown: ShutdownSignal,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    signals: Tuple[signal.Signals, ...] = HANDLED_SIGNALS,
) -> Callable[[], None]:
    """
    Route ``signals`` to ``shutdown.request``.

    Returns a callable that restores the previous handlers.
    """
    loop = loop or asyncio.get_running_loop()
    restore = []

    for sig in signals:
        try:
            loop.add_signal_handler(sig, shutdown.request, sig.name)
            restore.append(lambda s=sig: loop.remove_signal_handler(s))
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            def _handler(signum, frame, s=sig):
                loop.call_soon_threadsafe(shutdown.request, s.name)

            previous = signal.signal(sig, _handler)
            restore.append(lambda s=sig, p=previous: signal.signal(s, p))

    logger.debug("signal_handlers_installed", signals=[s.name for s in signals])

    def uninstall() -> None:
        for undo in restore:
            undo()
        logger.debug("signal_handlers_removed", signals=[s.name for s in signals])

    return uninstall


__all__ = ["ShutdownSignal", "install_signal_handlers", "HANDLED_SIGNALS"]
