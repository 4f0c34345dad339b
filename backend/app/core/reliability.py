"""
Reliability Utilities.

Circuit Breaker guarding calls to the payment gateway.
"""

import time
import logging
from typing import Callable, Any

logger = logging.getLogger("zapshift.reliability")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' consecutive failures occur, the circuit opens
    and rejects calls for 'reset_timeout' seconds.
    """
    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60, name: str = "default"):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED" # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable, *args, should_trip: Callable[[Exception], bool] = None, **kwargs) -> Any:
        """
        Await `func(*args, **kwargs)` under the breaker.

        `should_trip` decides whether an exception counts as a failure;
        by default every exception does.
        """
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit '{self.name}' is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if should_trip is None or should_trip(e):
                self.record_failure()
            raise

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold and self.state != "OPEN":
            self.state = "OPEN"
            logger.warning(
                "Circuit opened",
                extra={"circuit": self.name, "failures": self.failures}
            )

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"
