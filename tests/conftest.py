import asyncio
from typing import Callable, List, Optional

import pytest

from storyteller.core.config import Settings
from storyteller.core.exceptions import DependencyConnectionError, ListenerStartError
from storyteller.lifecycle.base import Dependency, Listener
from storyteller.lifecycle.health_registry import HealthRegistry
from storyteller.lifecycle.manager import LifecycleManager
from storyteller.lifecycle.retry import RetryPolicy
from storyteller.lifecycle.signals import ShutdownSignal


class FakeDependency(Dependency):
    """Fails ``fail_times`` attempts (or all of them), then connects."""

    name = "fake_db"

    def __init__(self, trace: List[str], fail_times: int = 0, fail_forever: bool = False, connect_delay: float = 0.0):
        super().__init__()
        self.trace = trace
        self.fail_times = fail_times
        self.fail_forever = fail_forever
        self.connect_delay = connect_delay
        self.attempt_times: List[float] = []
        self.close_calls = 0
        self._connected = False

    @property
    def address(self) -> str:
        return "fake://db:5432"

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        loop = asyncio.get_running_loop()
        self.attempt_times.append(loop.time())
        self.trace.append("connect_attempt")
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.fail_forever or len(self.attempt_times) <= self.fail_times:
            raise DependencyConnectionError(self.address, "connection refused")
        self._connected = True
        self.trace.append("dependency_connected")

    async def close(self) -> None:
        self.close_calls += 1
        self._connected = False
        self.trace.append("dependency_closed")


class FakeListener(Listener):
    """Records calls; ``drain_duration=None`` makes drain hang forever."""

    name = "fake_http"

    def __init__(
        self,
        trace: List[str],
        drain_duration: Optional[float] = 0.0,
        open_error: bool = False,
        on_open: Optional[Callable[[], None]] = None,
    ):
        super().__init__()
        self.trace = trace
        self.drain_duration = drain_duration
        self.open_error = open_error
        self.on_open = on_open
        self.manager: Optional[LifecycleManager] = None
        self.state_at_open = None
        self.open_calls = 0
        self.stop_calls = 0
        self.drain_calls = 0
        self._accepting = False

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    async def open(self) -> None:
        self.open_calls += 1
        if self.manager is not None:
            self.state_at_open = self.manager.state
        if self.on_open is not None:
            self.on_open()
        if self.open_error:
            raise ListenerStartError(self.name, "address already in use")
        self._accepting = True
        self.metadata["address"] = "127.0.0.1:3000"
        self.trace.append("listener_opened")

    async def stop_accepting(self) -> None:
        self.stop_calls += 1
        self._accepting = False
        self.trace.append("listener_closed")

    async def drain(self) -> None:
        self.drain_calls += 1
        if self.drain_duration is None:
            await asyncio.Event().wait()
        await asyncio.sleep(self.drain_duration)
        self.trace.append("requests_drained")


@pytest.fixture
def trace():
    return []


@pytest.fixture
def health_registry():
    return HealthRegistry()


@pytest.fixture
def shutdown_signal():
    return ShutdownSignal()


@pytest.fixture
def settings():
    return Settings(_env_file=None, ENVIRONMENT="test", LOG_FORMAT="console")


@pytest.fixture
def make_manager(trace, health_registry, shutdown_signal):
    """Build a manager around fakes: make_manager(dependency=..., listener=..., **policy)."""

    def _make(
        dependency: Optional[FakeDependency] = None,
        listener: Optional[FakeListener] = None,
        max_attempts: int = 3,
        delay: float = 0.0,
        shutdown_timeout: float = 1.0,
        **policy
    ) -> LifecycleManager:
        dependency = dependency or FakeDependency(trace)
        listener = listener or FakeListener(trace)
        manager = LifecycleManager(
            dependency=dependency,
            listener=listener,
            shutdown_signal=shutdown_signal,
            retry_policy=RetryPolicy(max_attempts=max_attempts, delay=delay, **policy),
            shutdown_timeout=shutdown_timeout,
            health_registry=health_registry,
        )
        listener.manager = manager
        return manager

    return _make
