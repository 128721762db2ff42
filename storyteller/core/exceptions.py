"""
storyteller/core/exceptions.py
Custom exceptions for the Story Teller service
"""

from typing import Optional


class ServiceException(Exception):
    """Base exception for all service errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/response"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Dependency Exceptions
# ============================================================================

class DependencyConnectionError(ServiceException):
    """A single connection attempt failed (transient, retried)"""

    def __init__(self, dependency: str, reason: str):
        super().__init__(
            message=f"Could not connect to '{dependency}': {reason}",
            error_code="DEPENDENCY_UNAVAILABLE",
            details={"dependency": dependency, "reason": reason}
        )


# ============================================================================
# Startup Exceptions
# ============================================================================

class StartupFailedError(ServiceException):
    """Dependency still unreachable after every retry was spent"""

    def __init__(self, dependency: str, attempts: int, last_error: Optional[str] = None):
        super().__init__(
            message=f"Giving up on '{dependency}' after {attempts} attempt(s)",
            error_code="STARTUP_FAILED",
            details={
                "dependency": dependency,
                "attempts": attempts,
                "last_error": last_error,
            }
        )


class StartupInterruptedError(ServiceException):
    """Termination signal arrived before the service became ready"""

    def __init__(self, signal_name: Optional[str], attempts: int):
        super().__init__(
            message=f"Startup interrupted by {signal_name or 'shutdown request'}",
            error_code="STARTUP_INTERRUPTED",
            details={"signal": signal_name, "attempts": attempts}
        )


class ListenerStartError(ServiceException):
    """Network listener could not be opened"""

    def __init__(self, listener: str, reason: str):
        super().__init__(
            message=f"Failed to open listener '{listener}': {reason}",
            error_code="LISTENER_START_FAILED",
            details={"listener": listener, "reason": reason}
        )


# ============================================================================
# Shutdown / State Exceptions
# ============================================================================

class ShutdownTimeoutError(ServiceException):
    """Graceful shutdown did not finish inside its time bound"""

    def __init__(self, timeout_seconds: float, phase: Optional[str] = None):
        super().__init__(
            message=f"Shutdown did not complete within {timeout_seconds} seconds",
            error_code="SHUTDOWN_TIMEOUT",
            details={"timeout_seconds": timeout_seconds, "phase": phase}
        )


class InvalidTransitionError(ServiceException):
    """Lifecycle state machine was asked for an illegal move"""

    def __init__(self, current: str, target: str):
        super().__init__(
            message=f"Illegal lifecycle transition {current} -> {target}",
            error_code="INVALID_TRANSITION",
            details={"from": current, "to": target}
        )


class ConfigurationError(ServiceException):
    """Invalid runtime configuration"""

    def __init__(self, parameter: str, reason: str):
        super().__init__(
            message=f"Invalid parameter '{parameter}': {reason}",
            error_code="INVALID_CONFIGURATION",
            details={"parameter": parameter, "reason": reason}
        )


# ============================================================================
# Export
# ============================================================================

__all__ = [
    "ServiceException",
    "DependencyConnectionError",
    "StartupFailedError",
    "StartupInterruptedError",
    "ListenerStartError",
    "ShutdownTimeoutError",
    "InvalidTransitionError",
    "ConfigurationError",
]
