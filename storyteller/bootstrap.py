"""
storyteller/bootstrap.py
Wires settings, collaborators and the lifecycle manager into one process.
"""

import asyncio
from typing import Optional

from .api.main import create_app
from .api.middleware import InFlightTracker
from .api.server import UvicornListener
from .core.config import Settings, get_settings
from .core.logging import get_logger
from .db.postgres import PostgresDependency
from .lifecycle.base import ExitCode
from .lifecycle.faults import FaultReporter
from .lifecycle.manager import LifecycleManager
from .lifecycle.signals import ShutdownSignal, install_signal_handlers

logger = get_logger("bootstrap")


def build_manager(settings: Settings, shutdown_signal: Optional[ShutdownSignal] = None) -> LifecycleManager:
    """Create the app, its listener, the database dependency and their manager."""
    tracker = InFlightTracker()
    app = create_app(settings, tracker=tracker)
    manager = LifecycleManager.from_settings(
        settings,
        dependency=PostgresDependency.from_settings(settings),
        listener=UvicornListener.from_settings(settings, app, tracker=tracker),
        shutdown_signal=shutdown_signal,
        health_registry=app.state.health_registry,
    )
    app.state.lifecycle_manager = manager
    return manager


async def serve(settings: Optional[Settings] = None) -> ExitCode:
    """Run the service until it is told to stop. Returns the process exit code."""
    settings = settings or get_settings()
    loop = asyncio.get_running_loop()

    shutdown_signal = ShutdownSignal()
    remove_signal_handlers = install_signal_handlers(shutdown_signal, loop)
    faults = FaultReporter(shutdown_signal, request_shutdown=settings.SHUTDOWN_ON_FAULT).install(loop)

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        config=settings.model_dump_safe() if settings.DEBUG else None,
    )

    try:
        manager = build_manager(settings, shutdown_signal)
        exit_code = await manager.run()
    finally:
        faults.uninstall()
        remove_signal_handlers()

    logger.info("application_exiting", exit_code=int(exit_code), state=manager.state.value)
    return exit_code


__all__ = ["build_manager", "serve"]
