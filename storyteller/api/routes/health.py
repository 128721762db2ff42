"""Health check endpoints for monitoring and orchestration probes."""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from typing import Dict, Any, Optional
import structlog

from ...lifecycle.base import LifecycleState
from ...lifecycle.health_registry import HealthRegistry, HealthStatus, get_health_registry

router = APIRouter(prefix="/api/v1/health", tags=["health"])
logger = structlog.get_logger(__name__)


def _registry(request: Request) -> HealthRegistry:
    return getattr(request.app.state, "health_registry", None) or get_health_registry()


def _lifecycle_state(request: Request) -> Optional[LifecycleState]:
    manager = getattr(request.app.state, "lifecycle_manager", None)
    return manager.state if manager is not None else None


@router.get("", response_model=Dict[str, Any], summary="System health check")
@router.get("/", include_in_schema=False)
async def health_check(request: Request):
    """
    Comprehensive system health check.

    Status Codes:
    - 200: All components healthy
    - 503: One or more components unhealthy or degraded
    """
    summary = _registry(request).get_health_summary()
    state = _lifecycle_state(request)
    summary["lifecycle_state"] = state.value if state else None

    status_code = status.HTTP_200_OK
    if summary["overall_status"] in ("degraded", "unhealthy"):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(status_code=status_code, content=summary)


@router.get("/live", summary="Liveness probe")
async def liveness():
    """Returns 200 while the process is running. Component health is not checked."""
    return {"status": "alive", "probe": "liveness"}


@router.get("/ready", summary="Readiness probe")
async def readiness(request: Request):
    """
    Returns:
    - 200: lifecycle is READY and every component is healthy
    - 503: starting, stopping, or degraded
    """
    state = _lifecycle_state(request)
    overall = _registry(request).get_overall_status()

    if state is LifecycleState.READY and overall == HealthStatus.HEALTHY:
        return {"status": "ready", "probe": "readiness"}

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "not_ready",
            "probe": "readiness",
            "lifecycle_state": state.value if state else None,
            "reason": overall.value,
        }
    )


@router.get("/startup", summary="Startup probe")
async def startup(request: Request):
    """200 once startup has left STARTING/CONNECTING, 503 before."""
    state = _lifecycle_state(request)
    if state in (None, LifecycleState.STARTING, LifecycleState.CONNECTING):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting", "probe": "startup"}
        )
    return {"status": "started", "probe": "startup"}


@router.get("/components/{component_name}", summary="Component-specific health")
async def component_health(component_name: str, request: Request):
    """Health details for one component, or 404."""
    component = _registry(request).get_component_health(component_name)

    if not component:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Component not found", "component": component_name}
        )

    return component.to_dict()


@router.get("/lifecycle", summary="Lifecycle state and event trace")
async def lifecycle(request: Request):
    manager = getattr(request.app.state, "lifecycle_manager", None)
    if manager is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": "Lifecycle manager not available",
                "message": "Application may still be starting up"
            }
        )
    return manager.snapshot()
