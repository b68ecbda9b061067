"""
Circuit breaker for notification channels.
"""

import time
import logging
from enum import Enum
from typing import Callable, Any, Optional

from .exceptions import CircuitOpenError


logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker that stops calling a failing channel for a while.

    Failures are counted both from raised exceptions (``call``) and from
    failed results reported by the caller (``record_failure``), since the
    senders report provider errors as results rather than exceptions.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Channel name for logging
            failure_threshold: Consecutive failures that open the circuit
            timeout_seconds: Seconds before a half-open trial call is allowed
            clock: Monotonic time source
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None

        logger.debug(f"Circuit breaker '{name}' initialized")

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open
            Exception: Whatever ``func`` raises, after counting the failure
        """
        if not self.is_available():
            raise CircuitOpenError(self.name)

        try:
            return func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

    def record_success(self):
        """Reset the failure count; closes a half-open circuit."""
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}' closed - channel recovered")
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    def record_failure(self):
        """Count a failure and open the circuit once the threshold is hit."""
        self.failure_count += 1
        self.last_failure_time = self._clock()

        logger.warning(f"Circuit breaker '{self.name}': Failure {self.failure_count}/{self.failure_threshold}")

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Circuit breaker '{self.name}' opened due to failures")
            self.state = CircuitState.OPEN

    def is_available(self) -> bool:
        """
        Check if circuit allows requests.

        Returns:
            True if requests are allowed
        """
        if self.state == CircuitState.OPEN and self.last_failure_time is not None:
            if self._clock() - self.last_failure_time >= self.timeout_seconds:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker '{self.name}' half-opened for testing")
        return self.state != CircuitState.OPEN

    def reset(self):
        """Reset circuit breaker to initial state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        logger.info(f"Circuit breaker '{self.name}' reset")

    def get_status(self) -> dict:
        """
        Get current circuit breaker status.

        Returns:
            Dictionary with status information
        """
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "timeout_seconds": self.timeout_seconds,
            "is_available": self.is_available()
        }
