"""
storyteller/metrics/registry.py
Central Prometheus metrics registry for the service.
"""

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest
)
import psutil

# Global registry instance
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================
# Metric definitions
# =============================
LIFECYCLE_STATE = Gauge(
    "storyteller_lifecycle_state",
    "1 for the current lifecycle state, 0 for the others",
    ["state"],
    registry=REGISTRY,
)

CONNECT_ATTEMPTS = Counter(
    "storyteller_dependency_connect_attempts_total",
    "Dependency connection attempts by outcome",
    ["dependency", "outcome"],
    registry=REGISTRY,
)

STARTUP_DURATION = Gauge(
    "storyteller_startup_duration_seconds",
    "Seconds from start() to READY",
    registry=REGISTRY,
)

SHUTDOWN_DURATION = Histogram(
    "storyteller_shutdown_duration_seconds",
    "Duration of the shutdown sequence (seconds)",
    ["outcome"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30),
    registry=REGISTRY,
)

INFLIGHT_REQUESTS = Gauge(
    "storyteller_inflight_requests",
    "Requests currently being handled",
    registry=REGISTRY,
)

REQUEST_COUNT = Counter(
    "storyteller_http_requests_total",
    "HTTP requests by status class",
    ["status"],
    registry=REGISTRY,
)

UNHANDLED_FAULTS = Counter(
    "storyteller_unhandled_faults_total",
    "Uncaught exceptions reported by the fault hooks",
    ["source"],
    registry=REGISTRY,
)

CPU_USAGE = Gauge(
    "storyteller_system_cpu_usage_percent",
    "Current CPU utilization percentage",
    registry=REGISTRY,
)

MEMORY_USAGE = Gauge(
    "storyteller_system_memory_usage_percent",
    "Current memory utilization percentage",
    registry=REGISTRY,
)

# =============================
# Updater helpers
# =============================

def update_system_metrics():
    """Refresh system resource gauges."""
    CPU_USAGE.set(psutil.cpu_percent(interval=None))
    MEMORY_USAGE.set(psutil.virtual_memory().percent)


def set_lifecycle_state(state):
    """Flag ``state`` as current on the one-hot lifecycle gauge."""
    for candidate in type(state):
        LIFECYCLE_STATE.labels(state=candidate.value).set(1 if candidate is state else 0)


def track_connect_attempt(dependency: str, success: bool):
    CONNECT_ATTEMPTS.labels(
        dependency=dependency, outcome="success" if success else "failure"
    ).inc()


def track_request(status_code: int):
    REQUEST_COUNT.labels(status=f"{status_code // 100}xx").inc()


def track_fault(source: str):
    UNHANDLED_FAULTS.labels(source=source).inc()


def render_prometheus_metrics():
    """Return text for Prometheus scrape endpoint."""
    update_system_metrics()
    return generate_latest(REGISTRY)
