"""
Process lifecycle management for the Story Teller service.
Connects the required dependency with bounded retries, opens the listener,
and coordinates graceful shutdown on SIGINT/SIGTERM.
"""

from .base import Dependency, ExitCode, LifecycleEvent, LifecycleState, Listener
from .health_registry import ComponentHealth, HealthRegistry, HealthStatus, get_health_registry
from .manager import LifecycleManager
from .retry import RetryPolicy
from .signals import ShutdownSignal, install_signal_handlers


__all__ = [
    "LifecycleManager",
    "LifecycleState",
    "LifecycleEvent",
    "ExitCode",
    "Dependency",
    "Listener",
    "RetryPolicy",
    "ShutdownSignal",
    "install_signal_handlers",
    "HealthRegistry",
    "HealthStatus",
    "ComponentHealth",
    "get_health_registry",
]
