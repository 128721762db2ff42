"""Delay schedule for the startup retry loop."""
from dataclasses import dataclass
from typing import Iterator, Literal

from ..core.config import Settings
from ..core.exceptions import ConfigurationError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded connection retry schedule.

    ``fixed`` waits ``delay`` between every pair of attempts.
    ``exponential`` waits ``delay * multiplier ** (n - 1)`` after the n-th
    failed attempt, never more than ``max_delay``.
    """

    max_attempts: int = 5
    delay: float = 5.0
    strategy: Literal["fixed", "exponential"] = "fixed"
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts", "must be >= 1")
        if self.delay < 0:
            raise ConfigurationError("delay", "must be >= 0")
        if self.strategy not in ("fixed", "exponential"):
            raise ConfigurationError("strategy", f"unknown strategy {self.strategy!r}")
        if self.multiplier < 1:
            raise ConfigurationError("multiplier", "must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.DB_MAX_RETRIES,
            delay=settings.DB_RETRY_DELAY,
            strategy=settings.DB_RETRY_STRATEGY,
            multiplier=settings.DB_RETRY_MULTIPLIER,
            max_delay=settings.DB_RETRY_MAX_DELAY,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if self.strategy == "fixed":
            return self.delay
        return min(self.delay * self.multiplier ** (attempt - 1), self.max_delay)

    def delays(self) -> Iterator[float]:
        """Every wait the loop can perform. There is none after the last attempt."""
        for attempt in range(1, self.max_attempts):
            yield self.delay_for(attempt)

    @property
    def worst_case_wait(self) -> float:
        return sum(self.delays())


__all__ = ["RetryPolicy"]
