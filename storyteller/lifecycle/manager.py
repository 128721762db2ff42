"""
storyteller/lifecycle/manager.py
Process lifecycle manager.

Responsibilities:
1. Connect the required dependency, retrying on a bounded schedule
2. Open the network listener only once the dependency is connected
3. On SIGINT/SIGTERM stop accepting, drain, then release the dependency
4. Bound the shutdown sequence with a hard timeout

Startup:   STARTING -> CONNECTING -> READY
Shutdown:  READY -> STOPPING -> STOPPED
Failure:   STARTING | CONNECTING -> FAILED, READY -> FAILED if the listener cannot open
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..core.config import Settings
from ..core.logging import LogContext
from ..core.exceptions import (
    InvalidTransitionError,
    ShutdownTimeoutError,
    StartupFailedError,
    StartupInterruptedError,
)
from ..metrics import registry as metrics
from .base import (
    TRANSITIONS,
    Dependency,
    ExitCode,
    LifecycleEvent,
    LifecycleState,
    Listener,
    utcnow,
)
from .health_registry import HealthRegistry, get_health_registry
from .retry import RetryPolicy
from .signals import ShutdownSignal

logger = structlog.get_logger("lifecycle")


class LifecycleManager:
    """
    Owns the dependency handle and the listener handle for the process lifetime.

    Nothing else may close either handle; all closure goes through ``shutdown``.
    The shutdown context is injected so the manager can be driven without
    real OS signals.
    """

    def __init__(
        self,
        dependency: Dependency,
        listener: Listener,
        shutdown_signal: Optional[ShutdownSignal] = None,
        retry_policy: Optional[RetryPolicy] = None,
        shutdown_timeout: float = 10.0,
        health_registry: Optional[HealthRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be > 0")

        self.dependency = dependency
        self.listener = listener
        self.shutdown_signal = shutdown_signal or ShutdownSignal()
        self.retry_policy = retry_policy or RetryPolicy()
        self.shutdown_timeout = shutdown_timeout
        self.health = health_registry or get_health_registry()
        self._clock = clock

        self.state = LifecycleState.STARTING
        self.exit_code: Optional[ExitCode] = None
        self.attempts = 0
        self.events: List[LifecycleEvent] = []
        self.started_at = None
        self.ready_at = None
        self.stopped_at = None
        self.error: Optional[str] = None

        self._shutdown_task: Optional[asyncio.Task] = None
        self._serving = False
        self.shutdown_phase: Optional[str] = None
        self._log = logger.bind(dependency=dependency.name, listener=listener.name)

        metrics.set_lifecycle_state(self.state)
        self.shutdown_signal.subscribe(self._on_shutdown_request)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        dependency: Dependency,
        listener: Listener,
        shutdown_signal: Optional[ShutdownSignal] = None,
        **kwargs
    ) -> "LifecycleManager":
        return cls(
            dependency=dependency,
            listener=listener,
            shutdown_signal=shutdown_signal,
            retry_policy=RetryPolicy.from_settings(settings),
            shutdown_timeout=settings.SHUTDOWN_TIMEOUT,
            **kwargs
        )

    # ------------------------------------------------------------------ #
    # State & events
    # ------------------------------------------------------------------ #

    def _transition(self, target: LifecycleState, **fields) -> None:
        allowed = TRANSITIONS[self.state]
        if target not in allowed:
            raise InvalidTransitionError(self.state.value, target.value)
        previous = self.state
        self.state = target
        metrics.set_lifecycle_state(target)
        self._emit("state_changed", previous=previous.value, current=target.value, **fields)

    def _emit(self, kind: str, level: str = "info", **fields) -> LifecycleEvent:
        event = LifecycleEvent(kind, self.state, fields)
        self.events.append(event)
        getattr(self._log, level)(kind, state=self.state.value, **fields)
        return event

    def event_kinds(self) -> List[str]:
        """Event names in emission order, without state changes."""
        return [e.kind for e in self.events if e.kind != "state_changed"]

    def _elapsed(self, since: float) -> float:
        return round(self._clock() - since, 4)

    # ------------------------------------------------------------------ #
    # Startup
    # ------------------------------------------------------------------ #

    async def start(self) -> LifecycleState:
        """
        Connect the dependency, then open the listener.

        Returns READY or FAILED. On FAILED, ``exit_code`` tells why and the
        listener has never accepted a connection. Returns STOPPING when a
        shutdown request arrived while the listener was opening; the shutdown
        deadline is already running in that case.
        """
        if self.state is not LifecycleState.STARTING:
            raise InvalidTransitionError(self.state.value, LifecycleState.CONNECTING.value)

        with LogContext(phase="startup"):
            return await self._start()

    async def _start(self) -> LifecycleState:
        self.started_at = utcnow()
        began = self._clock()
        self._emit(
            "startup_begin",
            address=self.dependency.address,
            max_attempts=self.retry_policy.max_attempts,
            retry_delay=self.retry_policy.delay,
            retry_strategy=self.retry_policy.strategy,
        )
        self.health.register_component(self.dependency.name, address=self.dependency.address)
        self.health.register_component(self.listener.name)

        if self.shutdown_signal.requested:
            return self._fail_interrupted(attempts=0)

        self._transition(LifecycleState.CONNECTING)

        if not await self._connect_with_retry(began):
            return self.state

        self._transition(LifecycleState.READY, elapsed=self._elapsed(began))
        self.ready_at = utcnow()
        metrics.STARTUP_DURATION.set(self._clock() - began)

        try:
            await self.listener.open()
        except Exception as e:
            self.error = str(e)
            self._log.error("listener_open_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            self.health.mark_failed(self.listener.name, str(e))
            self._transition(LifecycleState.FAILED, reason="listener_open_failed")
            await self._close_dependency()
            self.exit_code = ExitCode.STARTUP_FAILED
            return self.state

        self._serving = True
        self.health.mark_healthy(self.listener.name, **self.listener.metadata)
        self._emit("listener_opened", **self.listener.metadata)

        # A signal that arrived while open() was running found nothing to stop yet.
        if self.shutdown_signal.requested and self._shutdown_task is None:
            self._begin_shutdown(self.shutdown_signal.reason)
        return self.state

    async def _connect_with_retry(self, began: float) -> bool:
        policy = self.retry_policy
        last_error: Optional[str] = None

        for attempt in range(1, policy.max_attempts + 1):
            self.attempts = attempt
            self._emit("connect_attempt", attempt=attempt, max_attempts=policy.max_attempts)
            attempt_began = self._clock()

            try:
                await self.dependency.connect()
            except Exception as e:
                last_error = str(e)
                metrics.track_connect_attempt(self.dependency.name, success=False)
                self.health.mark_degraded(self.dependency.name, last_error, attempt=attempt)
                self._emit(
                    "connect_failed",
                    level="warning",
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error=last_error,
                    error_type=type(e).__name__,
                    attempt_duration=self._elapsed(attempt_began),
                    elapsed=self._elapsed(began),
                )
                if attempt == policy.max_attempts:
                    break

                delay = policy.delay_for(attempt)
                self._emit("retry_scheduled", level="debug", attempt=attempt, delay=delay)
                if await self.shutdown_signal.wait_for(delay):
                    self._fail_interrupted(attempts=attempt)
                    return False
                continue

            metrics.track_connect_attempt(self.dependency.name, success=True)

            if self.shutdown_signal.requested:
                # Connected, but a signal arrived while the attempt was running.
                await self._close_dependency()
                self._fail_interrupted(attempts=attempt)
                return False

            self.health.mark_healthy(self.dependency.name, address=self.dependency.address)
            self._emit(
                "dependency_connected",
                attempt=attempt,
                attempt_duration=self._elapsed(attempt_began),
                elapsed=self._elapsed(began),
            )
            return True

        error = StartupFailedError(self.dependency.name, self.attempts, last_error)
        self.error = error.message
        self.health.mark_failed(self.dependency.name, error.message, attempts=self.attempts)
        self._emit("startup_failed", level="error", elapsed=self._elapsed(began), **error.details)
        self._transition(LifecycleState.FAILED, reason=error.error_code)
        self.exit_code = ExitCode.STARTUP_FAILED
        return False

    def _fail_interrupted(self, attempts: int) -> LifecycleState:
        error = StartupInterruptedError(self.shutdown_signal.reason, attempts)
        self.error = error.message
        self._emit("startup_interrupted", level="warning", **error.details)
        self._transition(LifecycleState.FAILED, reason=error.error_code)
        self.exit_code = ExitCode.INTERRUPTED
        return self.state

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    def _on_shutdown_request(self, reason: str, first: bool) -> None:
        if self._shutdown_task is not None:
            self._emit("shutdown_already_in_progress", level="warning", signal=reason)
            return
        if self.state is LifecycleState.READY and self._serving:
            self._begin_shutdown(reason)
        elif not first:
            self._emit("shutdown_already_requested", level="warning", signal=reason)
        # Before the listener is open, start() or run() notices the request itself.

    def _begin_shutdown(self, reason: Optional[str]) -> asyncio.Task:
        self._transition(LifecycleState.STOPPING, signal=reason)
        self._shutdown_task = asyncio.ensure_future(self._bounded_shutdown(reason))
        return self._shutdown_task

    async def shutdown(self, reason: Optional[str] = None) -> ExitCode:
        """
        Stop accepting, drain in-flight work, release the dependency.

        Safe to call any number of times; only the first call runs the
        sequence, later calls wait for (and return) its outcome.
        """
        if self._shutdown_task is None:
            if self.state is not LifecycleState.READY:
                if self.exit_code is None:
                    raise InvalidTransitionError(self.state.value, LifecycleState.STOPPING.value)
                return self.exit_code
            self._begin_shutdown(reason or self.shutdown_signal.reason or "manual")
        return await asyncio.shield(self._shutdown_task)

    async def _bounded_shutdown(self, reason: Optional[str]) -> ExitCode:
        with LogContext(phase="shutdown", signal=reason):
            return await self._shutdown_with_deadline(reason)

    async def _shutdown_with_deadline(self, reason: Optional[str]) -> ExitCode:
        began = self._clock()
        self._emit("shutdown_begin", signal=reason, timeout=self.shutdown_timeout)

        sequence = asyncio.ensure_future(self._graceful_sequence())
        done, _ = await asyncio.wait({sequence}, timeout=self.shutdown_timeout)

        if sequence in done:
            self.exit_code = ExitCode.OK
            outcome = "graceful"
        else:
            sequence.cancel()
            self.exit_code = ExitCode.SHUTDOWN_TIMEOUT
            outcome = "forced"
            error = ShutdownTimeoutError(self.shutdown_timeout, phase=self.shutdown_phase)
            self.error = error.message
            self._emit(
                "shutdown_timeout",
                level="warning",
                phase=self.shutdown_phase,
                timeout=self.shutdown_timeout,
                elapsed=self._elapsed(began),
            )

        duration = self._clock() - began
        metrics.SHUTDOWN_DURATION.labels(outcome=outcome).observe(duration)
        self.stopped_at = utcnow()
        self._transition(LifecycleState.STOPPED, outcome=outcome, exit_code=int(self.exit_code))
        self._emit("shutdown_complete", outcome=outcome, elapsed=round(duration, 4))
        return self.exit_code

    async def _graceful_sequence(self) -> None:
        listener = self.listener

        # Order matters: the dependency outlives every request that may use it.
        self.shutdown_phase = "stop_accepting"
        try:
            await listener.stop_accepting()
        except Exception as e:
            self._log.error("listener_stop_error", error=str(e), exc_info=True)
        self.health.mark_degraded(listener.name, "draining")
        self._emit("listener_closed")

        self.shutdown_phase = "drain"
        try:
            await listener.drain()
            self._emit("requests_drained")
        except Exception as e:
            self._log.error("drain_error", error=str(e), exc_info=True)

        self.shutdown_phase = "close_listener"
        try:
            await listener.close()
        except Exception as e:
            self._log.error("listener_close_error", error=str(e), exc_info=True)
        self.health.mark_stopped(listener.name)

        self.shutdown_phase = "close_dependency"
        await self._close_dependency()
        self.shutdown_phase = "done"

    async def _close_dependency(self) -> None:
        try:
            await self.dependency.close()
        except Exception as e:
            self._log.error("dependency_close_error", error=str(e), exc_info=True)
        self.health.mark_stopped(self.dependency.name)
        self._emit("dependency_closed")

    # ------------------------------------------------------------------ #
    # Whole-process flow
    # ------------------------------------------------------------------ #

    async def run(self) -> ExitCode:
        """Start, serve until a shutdown request, shut down. Returns the exit code."""
        if await self.start() is LifecycleState.FAILED:
            return self.exit_code

        self._log.info("serving", address=self.listener.metadata.get("address"))
        await self.shutdown_signal.wait()
        return await self.shutdown()

    def snapshot(self) -> Dict[str, Any]:
        """Lifecycle summary for health endpoints."""
        return {
            "state": self.state.value,
            "exit_code": int(self.exit_code) if self.exit_code is not None else None,
            "attempts": self.attempts,
            "max_attempts": self.retry_policy.max_attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ready_at": self.ready_at.isoformat() if self.ready_at else None,
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "shutdown_reason": self.shutdown_signal.reason,
            "shutdown_phase": self.shutdown_phase,
            "error": self.error,
            "events": [e.to_dict() for e in self.events],
        }


__all__ = ["LifecycleManager"]
