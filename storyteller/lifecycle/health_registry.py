"""Health tracking for the resources owned by the lifecycle manager."""
from typing import Dict, Optional, Any
from datetime import datetime
from enum import Enum
from dataclasses import dataclass, field
from threading import RLock
import structlog

from .base import utcnow

logger = structlog.get_logger(__name__)


class HealthStatus(Enum):
    """Component health status levels."""
    HEALTHY = "healthy"          # Fully operational
    DEGRADED = "degraded"        # Partially functional (e.g. draining)
    UNHEALTHY = "unhealthy"      # Not functional
    UNKNOWN = "unknown"          # Not yet started, or stopped


@dataclass
class ComponentHealth:
    """Health information for a single component."""
    name: str
    status: HealthStatus
    last_check: datetime = field(default_factory=utcnow)
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    consecutive_failures: int = 0
    total_checks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            "name": self.name,
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "error_message": self.error_message,
            "metadata": self.metadata,
            "consecutive_failures": self.consecutive_failures,
            "total_checks": self.total_checks,
        }


class HealthRegistry:
    """
    Thread-safe registry of component health.

    The lifecycle manager updates it on every transition of the dependency
    and the listener; the HTTP health routes read it.
    """

    def __init__(self):
        self._components: Dict[str, ComponentHealth] = {}
        self._lock = RLock()

    def _update(
        self,
        name: str,
        status: HealthStatus,
        error: Optional[str] = None,
        **metadata
    ) -> ComponentHealth:
        with self._lock:
            component = self._components.get(name)
            if component is None:
                component = ComponentHealth(name=name, status=status)
                self._components[name] = component
            component.status = status
            component.last_check = utcnow()
            component.metadata.update(metadata)
            component.total_checks += 1
            if status in (HealthStatus.HEALTHY, HealthStatus.UNKNOWN):
                component.consecutive_failures = 0
                component.error_message = None
            else:
                component.consecutive_failures += 1
                component.error_message = error
            return component

    def register_component(self, name: str, status: HealthStatus = HealthStatus.UNKNOWN, **metadata) -> None:
        """Register or update a component's health status."""
        self._update(name, status, **metadata)
        logger.debug("health_status_updated", component=name, status=status.value, metadata=metadata)

    def mark_healthy(self, name: str, **metadata) -> None:
        """Mark a component as healthy."""
        self.register_component(name, HealthStatus.HEALTHY, **metadata)

    def mark_degraded(self, name: str, reason: str, **metadata) -> None:
        """Mark a component as degraded (partially functional)."""
        self._update(name, HealthStatus.DEGRADED, error=reason, **metadata)
        logger.warning("component_degraded", component=name, reason=reason, metadata=metadata)

    def mark_failed(self, name: str, error: str, **metadata) -> None:
        """Mark a component as completely failed."""
        self._update(name, HealthStatus.UNHEALTHY, error=error, **metadata)
        logger.error("component_failed", component=name, error=error, metadata=metadata)

    def mark_stopped(self, name: str, **metadata) -> None:
        """Record a clean stop."""
        self.register_component(name, HealthStatus.UNKNOWN, status_message="stopped", **metadata)

    def get_component_health(self, name: str) -> Optional[ComponentHealth]:
        """Get health info for a specific component."""
        with self._lock:
            return self._components.get(name)

    def get_all_health(self) -> Dict[str, ComponentHealth]:
        """Get health info for all registered components."""
        with self._lock:
            return self._components.copy()

    def get_overall_status(self) -> HealthStatus:
        """
        Calculate overall system health based on component statuses.

        Logic:
        - UNHEALTHY: Any component is unhealthy
        - DEGRADED: Any component is degraded
        - HEALTHY: All components healthy
        - UNKNOWN: No components, or some not yet determined
        """
        with self._lock:
            if not self._components:
                return HealthStatus.UNKNOWN

            statuses = [c.status for c in self._components.values()]

            if any(s == HealthStatus.UNHEALTHY for s in statuses):
                return HealthStatus.UNHEALTHY
            if any(s == HealthStatus.DEGRADED for s in statuses):
                return HealthStatus.DEGRADED
            if all(s == HealthStatus.HEALTHY for s in statuses):
                return HealthStatus.HEALTHY
            return HealthStatus.UNKNOWN

    def get_health_summary(self) -> Dict[str, Any]:
        """
        Get comprehensive health summary for API responses.

        Returns:
            Dictionary with overall status, timestamp, component details, and summary stats
        """
        with self._lock:
            overall = self.get_overall_status()
            components = {
                name: health.to_dict()
                for name, health in self._components.items()
            }

        counts = {status.value: 0 for status in HealthStatus}
        for component in components.values():
            counts[component["status"]] += 1

        return {
            "overall_status": overall.value,
            "timestamp": utcnow().isoformat(),
            "components": components,
            "summary": {"total": len(components), **counts},
        }

    def clear(self) -> None:
        """Clear all health data (testing only)."""
        with self._lock:
            self._components.clear()
        logger.debug("health_registry_cleared")


# Process-wide default instance
_health_registry = HealthRegistry()


def get_health_registry() -> HealthRegistry:
    """Get the process-wide health registry instance."""
    return _health_registry


__all__ = ["HealthRegistry", "HealthStatus", "ComponentHealth", "get_health_registry"]
