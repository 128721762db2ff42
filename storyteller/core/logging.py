"""
storyteller/core/logging.py
Structured logging setup using structlog
"""

import logging
import logging.handlers
import sys
from typing import Optional
import structlog
from structlog.stdlib import BoundLogger
from .config import Settings, get_settings


def setup_logging(settings: Optional[Settings] = None) -> BoundLogger:
    """
    Configure structured logging for the application
    Returns configured logger instance
    """
    settings = settings or get_settings()

    # Configure stdlib logging
    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                settings.LOG_FILE,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
        )
    logging.basicConfig(
        format="%(message)s",
        handlers=handlers,
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )

    # Shared processors for all logs
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Output format based on environment
    if settings.LOG_FORMAT == "json":
        # JSON format for production (easy to parse)
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ]
    else:
        # Console format for development (human-readable)
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("storyteller")

    logger.info(
        "logging_configured",
        level=settings.LOG_LEVEL,
        format=settings.LOG_FORMAT,
        environment=settings.ENVIRONMENT
    )

    return logger


def get_logger(name: Optional[str] = None) -> BoundLogger:
    """
    Get a logger instance

    Args:
        name: Logger name (e.g., "lifecycle", "db")

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(f"storyteller.{name}")
    return structlog.get_logger("storyteller")


# ============================================================================
# Context Manager for Scoped Logging
# ============================================================================

class LogContext:
    """
    Context manager for binding fields to every log line inside a block

    Usage:
        with LogContext(phase="shutdown", signal="SIGTERM"):
            logger.info("listener_closed")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._tokens = None

    def __enter__(self):
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.reset_contextvars(**self._tokens)
        return False


# ============================================================================
# Export
# ============================================================================

__all__ = ["setup_logging", "get_logger", "LogContext"]
