"""In-flight request tracking used to drain the listener on shutdown."""
import asyncio

import structlog
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..metrics.registry import INFLIGHT_REQUESTS, track_request

logger = structlog.get_logger(__name__)


class InFlightTracker:
    """Counts HTTP requests currently being handled."""

    def __init__(self):
        self.count = 0
        self.draining = False
        self._idle = asyncio.Event()
        self._idle.set()

    def enter(self) -> None:
        self.count += 1
        self._idle.clear()
        INFLIGHT_REQUESTS.set(self.count)

    def exit(self) -> None:
        self.count -= 1
        INFLIGHT_REQUESTS.set(self.count)
        if self.count == 0:
            self._idle.set()

    def start_draining(self) -> None:
        self.draining = True
        logger.info("request_drain_started", inflight=self.count)

    async def wait_idle(self) -> None:
        await self._idle.wait()


class InFlightMiddleware:
    """
    ASGI middleware that feeds an ``InFlightTracker``.

    Once draining has started, new requests get 503 with ``Connection: close``
    while requests already running are left to finish.
    """

    def __init__(self, app: ASGIApp, tracker: InFlightTracker):
        self.app = app
        self.tracker = tracker

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if self.tracker.draining:
            track_request(503)
            response = JSONResponse(
                {"error": "Service shutting down", "status": "draining"},
                status_code=503,
                headers={"Connection": "close", "Retry-After": "5"},
            )
            await response(scope, receive, send)
            return

        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        self.tracker.enter()
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            self.tracker.exit()
            track_request(status_code)


__all__ = ["InFlightTracker", "InFlightMiddleware"]
