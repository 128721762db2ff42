"""
storyteller/api/server.py
HTTP listener driven by the lifecycle manager.

This is ONLY responsible for binding, serving and draining.
The manager decides WHEN each of those happens.
"""

import asyncio
import socket
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ..core.config import Settings
from ..core.exceptions import ListenerStartError
from ..lifecycle.base import Listener
from .middleware import InFlightTracker


class UvicornListener(Listener):
    """
    uvicorn server run without ``Server.serve()``.

    ``serve()`` installs its own SIGINT/SIGTERM handlers; here signals belong
    to the lifecycle manager, so the startup / main loop / shutdown steps of
    uvicorn are called individually.
    """

    name = "http_listener"

    def __init__(
        self,
        app: FastAPI,
        host: str = "0.0.0.0",
        port: int = 3000,
        tracker: Optional[InFlightTracker] = None,
        log_level: str = "info",
    ):
        super().__init__()
        self.app = app
        self.host = host
        self.port = port
        self.tracker = tracker or InFlightTracker()
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_config=None,
            log_level=log_level.lower(),
            access_log=False,
        )
        self.server = uvicorn.Server(self.config)
        self._sock: Optional[socket.socket] = None
        self._main_loop: Optional[asyncio.Task] = None
        self._accepting = False

    @classmethod
    def from_settings(cls, settings: Settings, app: FastAPI, tracker: Optional[InFlightTracker] = None) -> "UvicornListener":
        return cls(
            app,
            host=settings.API_HOST,
            port=settings.API_PORT,
            tracker=tracker,
            log_level=settings.LOG_LEVEL,
        )

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def open(self) -> None:
        if self._accepting:
            return

        # Bind here rather than in uvicorn, which calls sys.exit() on bind errors
        try:
            self._sock = self._bind()
        except OSError as e:
            raise ListenerStartError(self.name, f"{self.host}:{self.port}: {e}") from e

        if not self.config.loaded:
            self.config.load()
        self.server.lifespan = self.config.lifespan_class(self.config)
        await self.server.startup(sockets=[self._sock])
        if self.server.should_exit:
            raise ListenerStartError(self.name, "uvicorn startup aborted")

        bound_host, bound_port = self._sock.getsockname()[:2]
        self.port = bound_port
        self.metadata.update({
            "host": bound_host,
            "port": bound_port,
            "address": f"{bound_host}:{bound_port}",
        })
        self._main_loop = asyncio.ensure_future(self.server.main_loop())
        self._accepting = True
        self.safe_log("http_listener_opened", **self.metadata)

    async def stop_accepting(self) -> None:
        if not self._accepting:
            return
        self._accepting = False
        self.tracker.start_draining()
        for server in self.server.servers:
            server.close()
        self.safe_log("http_listener_stopped_accepting", inflight=self.tracker.count)

    async def drain(self) -> None:
        if self._main_loop is None:
            return
        self.server.should_exit = True
        await self._main_loop
        self._main_loop = None

        # Closes idle keep-alive connections and waits for running requests
        await self.server.shutdown(sockets=[self._sock] if self._sock else None)
        await self.tracker.wait_idle()
        self.safe_log("http_listener_drained")

    async def close(self) -> None:
        if self._main_loop is not None:
            self._main_loop.cancel()
            self._main_loop = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._accepting = False


__all__ = ["UvicornListener"]
