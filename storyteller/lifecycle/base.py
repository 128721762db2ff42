"""Base classes and enums for the lifecycle manager and its collaborators."""
from abc import ABC, abstractmethod
from enum import Enum, IntEnum
from typing import Optional, Dict, Any
from datetime import datetime, timezone
import structlog

logger = structlog.get_logger(__name__)


class LifecycleState(Enum):
    """Process lifecycle states."""
    STARTING = "starting"
    CONNECTING = "connecting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


# Legal moves of the state machine. STOPPED and FAILED are terminal.
# READY -> FAILED only when the listener cannot be opened.
TRANSITIONS: Dict[LifecycleState, frozenset] = {
    LifecycleState.STARTING: frozenset({LifecycleState.CONNECTING, LifecycleState.FAILED}),
    LifecycleState.CONNECTING: frozenset({LifecycleState.READY, LifecycleState.FAILED}),
    LifecycleState.READY: frozenset({LifecycleState.STOPPING, LifecycleState.FAILED}),
    LifecycleState.STOPPING: frozenset({LifecycleState.STOPPED}),
    LifecycleState.STOPPED: frozenset(),
    LifecycleState.FAILED: frozenset(),
}


class ExitCode(IntEnum):
    """Process exit statuses returned by the manager."""
    OK = 0
    STARTUP_FAILED = 1
    SHUTDOWN_TIMEOUT = 2
    INTERRUPTED = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Collaborator(ABC):
    """Shared logging helpers for resources owned by the manager."""

    name: str = "unnamed"

    def __init__(self):
        self.metadata: Dict[str, Any] = {}
        self._logger = structlog.get_logger(f"component.{self.name}")

    def safe_log(self, event: str, **kwargs):
        """Helper for structured logging."""
        self._logger.info(event, component=self.name, **kwargs)

    def log_error(self, event: str, error: Exception, **kwargs):
        """Helper for error logging with full context."""
        self._logger.error(
            event,
            component=self.name,
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
            exc_info=True
        )


class Dependency(_Collaborator):
    """
    External resource the service cannot run without (e.g. a database).

    The manager calls ``connect`` once per retry attempt and ``close`` exactly
    once during shutdown, after the listener has stopped accepting work.
    """

    name = "dependency"

    @property
    @abstractmethod
    def address(self) -> str:
        """Printable target address, safe to log."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """True while a live handle is held."""

    @abstractmethod
    async def connect(self) -> None:
        """
        Make one connection attempt.

        Must finish (succeed or raise) within the dependency's own connect
        timeout. Failures are raised as ``DependencyConnectionError``.
        """

    @abstractmethod
    async def close(self) -> None:
        """
        Release the handle.

        Idempotent. Never raises; errors are logged.
        """

    async def ping(self) -> bool:
        """Cheap liveness probe. Default reports the handle state."""
        return self.connected


class Listener(_Collaborator):
    """
    Network listener serving inbound requests.

    Shutdown is split in two so the manager can order it against the
    dependency: ``stop_accepting`` refuses new connections right away,
    ``drain`` waits for in-flight requests, ``close`` frees what is left.
    """

    name = "listener"

    @property
    @abstractmethod
    def is_accepting(self) -> bool:
        """True while new inbound connections are accepted."""

    @abstractmethod
    async def open(self) -> None:
        """Bind and begin accepting. Raises ``ListenerStartError`` on failure."""

    @abstractmethod
    async def stop_accepting(self) -> None:
        """Stop accepting new connections."""

    @abstractmethod
    async def drain(self) -> None:
        """Wait until in-flight requests have completed."""

    async def close(self) -> None:
        """Release remaining listener resources. Default is a no-op."""


class LifecycleEvent:
    """One entry of the manager's event trace."""

    __slots__ = ("kind", "state", "timestamp", "fields")

    def __init__(self, kind: str, state: LifecycleState, fields: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.state = state
        self.timestamp = utcnow()
        self.fields = fields or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "state": self.state.value,
            "timestamp": self.timestamp.isoformat(),
            **self.fields,
        }

    def __repr__(self) -> str:
        return f"LifecycleEvent({self.kind!r}, {self.state.value})"
