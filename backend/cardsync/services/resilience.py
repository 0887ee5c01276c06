"""
CardSync Pro Backend — Circuit Breaker
=======================================

What:  Per-provider circuit breaker shared by the Gemini and Stripe clients.
Why:   When a hosted dependency is down, fail fast instead of letting every
       request wait out timeouts and retries.

State Machine:
    CLOSED (normal operation)
        → On failure: increment failure_count
        → When failure_count >= threshold: transition to OPEN

    OPEN (rejecting all requests)
        → All calls raise CircuitBreakerOpenError immediately
        → After recovery_timeout seconds: transition to HALF_OPEN

    HALF_OPEN (testing recovery)
        → Allow ONE request through
        → On success: transition to CLOSED (reset failure_count)
        → On failure: transition back to OPEN (reset timer)

Thread Safety:
    Simple counters, not thread-safe. Acceptable because uvicorn async
    workers share a single event loop per process; each worker process has
    its own breaker.
"""

import logging
import time
from typing import Optional

from cardsync.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, service: str, failure_threshold: int = 5, recovery_timeout: int = 60):
        """
        Args:
            service: Provider name used in logs and in the error message
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before testing recovery
        """
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.state == self.OPEN

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through.

        Raises:
            CircuitBreakerOpenError if the circuit is OPEN and the recovery
            timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.monotonic() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "%s circuit breaker transitioning to HALF_OPEN after %.1fs",
                    self.service,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(service=self.service, recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("%s circuit breaker transitioning to CLOSED (service recovered)", self.service)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN:
            logger.warning("%s circuit breaker returning to OPEN (test request failed)", self.service)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "%s circuit breaker OPENING after %d consecutive failures",
                self.service,
                self.failure_count,
            )
            self.state = self.OPEN
