"""
storyteller/db/postgres.py
PostgreSQL connection owned by the lifecycle manager.
"""

import asyncio
import math
from typing import Optional

import psycopg

from ..core.config import Settings, mask_dsn
from ..core.exceptions import DependencyConnectionError
from ..lifecycle.base import Dependency


class PostgresDependency(Dependency):
    """
    Single async psycopg connection.

    Each ``connect`` call is one attempt. It is bounded twice: libpq's own
    ``connect_timeout`` and an outer ``asyncio.wait_for`` for the cases libpq
    does not cover (DNS, TLS handshake stalls).
    """

    name = "database"

    def __init__(self, dsn: str, connect_timeout: float = 5.0, application_name: str = "story-teller"):
        super().__init__()
        self.dsn = dsn
        self.connect_timeout = connect_timeout
        self.application_name = application_name
        self.conn: Optional[psycopg.AsyncConnection] = None
        self.metadata.update({
            "address": self.address,
            "connect_timeout": connect_timeout,
        })

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresDependency":
        return cls(
            dsn=settings.DATABASE_URL,
            connect_timeout=settings.DB_CONNECT_TIMEOUT,
            application_name=settings.APP_NAME,
        )

    @property
    def address(self) -> str:
        return mask_dsn(self.dsn)

    @property
    def connected(self) -> bool:
        return self.conn is not None and not self.conn.closed

    async def connect(self) -> None:
        if self.connected:
            return

        # libpq takes whole seconds and treats anything below 2 as 2
        libpq_timeout = max(2, math.ceil(self.connect_timeout))
        try:
            self.conn = await asyncio.wait_for(
                psycopg.AsyncConnection.connect(
                    self.dsn,
                    connect_timeout=libpq_timeout,
                    application_name=self.application_name,
                    autocommit=True,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            raise DependencyConnectionError(
                self.address, f"timed out after {self.connect_timeout}s"
            ) from None
        except psycopg.Error as e:
            raise DependencyConnectionError(self.address, str(e).strip()) from e

        info = self.conn.info
        self.metadata.update({
            "server_version": info.server_version,
            "backend_pid": info.backend_pid,
        })
        self.safe_log("database_connected", address=self.address, backend_pid=info.backend_pid)

    async def ping(self) -> bool:
        if not self.connected:
            return False
        try:
            async with self.conn.cursor() as cur:
                await cur.execute("SELECT 1")
                await cur.fetchone()
            return True
        except psycopg.Error as e:
            self.log_error("database_ping_failed", e)
            return False

    async def close(self) -> None:
        if self.conn is None:
            return
        conn, self.conn = self.conn, None
        try:
            await conn.close()
            self.safe_log("database_closed", address=self.address)
        except psycopg.Error as e:
            # Log but don't raise - best effort shutdown
            self.log_error("database_close_error", e)


__all__ = ["PostgresDependency"]
