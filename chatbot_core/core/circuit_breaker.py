"""
Circuit Breaker for Provider Calls
==================================

Fails fast while a provider keeps failing and lets a single trial call
through once the reset timeout has passed.
"""

import time
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .exceptions import CircuitOpenException

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreaker:
    """
    Circuit breaker around an async operation.

    After ``failure_threshold`` consecutive failures the circuit opens and
    every call raises CircuitOpenException until ``reset_timeout`` seconds
    have passed. The next call then runs half-open: success closes the
    circuit, failure opens it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default"
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failures = 0
        self.last_failure_time: Optional[float] = None

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenException: While the circuit is open
        """
        if self.state == CircuitState.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0.0)
            if elapsed > self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit {self.name} half-open, allowing a trial call")
            else:
                raise CircuitOpenException(retry_after=self.reset_timeout - elapsed)

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        if self.state != CircuitState.CLOSED:
            logger.info(f"✅ Circuit {self.name} closed")
        self.failures = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(
                    f"⚠️ Circuit {self.name} opened after {self.failures} failure(s)"
                )
            self.state = CircuitState.OPEN

    def reset(self) -> None:
        """Force the circuit closed."""
        self.failures = 0
        self.last_failure_time = None
        self.state = CircuitState.CLOSED

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "last_failure_time": self.last_failure_time,
        }
