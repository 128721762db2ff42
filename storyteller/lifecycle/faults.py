"""
Reporting of unhandled runtime faults.

Uncaught exceptions (in the main thread, in worker threads, and in asyncio
tasks nobody awaited) are logged and counted. They only trigger a shutdown
when ``request_shutdown`` is enabled; requests raised off the event loop
thread are handed to the loop with ``call_soon_threadsafe``.
"""
import asyncio
import sys
import threading
from typing import Any, Callable, Dict, Optional

import structlog

from ..metrics.registry import track_fault
from .signals import ShutdownSignal

logger = structlog.get_logger(__name__)


class FaultReporter:
    """Installs process and event-loop fault hooks and restores them on uninstall."""

    def __init__(self, shutdown: Optional[ShutdownSignal] = None, request_shutdown: bool = False):
        self.shutdown = shutdown
        self.request_shutdown = request_shutdown and shutdown is not None
        self.fault_count = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous_excepthook = None
        self._previous_threading_hook = None
        self._previous_loop_handler: Optional[Callable] = None

    def report(self, source: str, error: Optional[BaseException], **context) -> None:
        self.fault_count += 1
        track_fault(source)
        logger.error(
            "unhandled_fault",
            source=source,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
            exc_info=(type(error), error, error.__traceback__) if error else None,
            **context
        )
        if self.request_shutdown:
            self._request_shutdown(f"fault:{source}")

    def _request_shutdown(self, reason: str) -> None:
        loop = self._loop
        if loop is None or self._on_loop_thread(loop):
            self.shutdown.request(reason)
            return
        if loop.is_closed():
            logger.warning("fault_shutdown_request_dropped", reason=reason, error="event loop closed")
            return
        # ShutdownSignal and the manager behind it belong to the loop thread
        loop.call_soon_threadsafe(self.shutdown.request, reason)

    @staticmethod
    def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False

    # ------------------------------------------------------------------ #
    # Hooks
    # ------------------------------------------------------------------ #

    def _excepthook(self, exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            self._previous_excepthook(exc_type, exc, tb)
            return
        self.report("main_thread", exc)

    def _threading_hook(self, args):
        self.report("thread", args.exc_value, thread=getattr(args.thread, "name", None))

    def _loop_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]):
        task = context.get("task") or context.get("future")
        self.report(
            "event_loop",
            context.get("exception"),
            message=context.get("message"),
            task=repr(task) if task is not None else None,
        )

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> "FaultReporter":
        self._loop = loop or asyncio.get_running_loop()
        self._previous_excepthook = sys.excepthook
        self._previous_threading_hook = threading.excepthook
        self._previous_loop_handler = self._loop.get_exception_handler()

        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_hook
        self._loop.set_exception_handler(self._loop_handler)

        logger.debug("fault_handlers_installed", shutdown_on_fault=self.request_shutdown)
        return self

    def uninstall(self) -> None:
        if self._loop is None:
            return
        sys.excepthook = self._previous_excepthook
        threading.excepthook = self._previous_threading_hook
        self._loop.set_exception_handler(self._previous_loop_handler)
        self._loop = None
        logger.debug("fault_handlers_removed")


__all__ = ["FaultReporter"]
