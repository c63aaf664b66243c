"""
CareBridge Backend — Circuit Breaker
======================================

What:  Fails fast when an outbound dependency keeps failing.
Who:   Wraps every ledger call (balance, transfer, settlement record).

State Machine:
    CLOSED   → each failure increments the counter; at the threshold → OPEN
    OPEN     → calls raise CircuitBreakerOpenError until recovery_timeout elapses,
               then the next call is let through as a probe (HALF_OPEN)
    HALF_OPEN→ probe success → CLOSED; probe failure → OPEN with a fresh timer

Single-process only: state lives in this object, shared by the async workers
of one uvicorn process.
"""

import logging
import time
from typing import Optional

from carebridge.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.opened_at: Optional[float] = None

    def remaining_recovery_time(self) -> int:
        if self.opened_at is None:
            return 0
        elapsed = time.monotonic() - self.opened_at
        return max(0, int(self.recovery_timeout - elapsed))

    def can_execute(self) -> bool:
        """
        Returns True when a call may proceed.

        Raises:
            CircuitBreakerOpenError: the circuit is OPEN and still cooling down.
        """
        if self.state != self.OPEN:
            return True

        # Still cooling down: reject without touching the dependency
        remaining = self.remaining_recovery_time()
        if remaining > 0:
            raise CircuitBreakerOpenError(
                recovery_time=remaining,
                context={"dependency": self.name},
            )

        logger.info("Circuit '%s' half-open, probing dependency", self.name)
        self.state = self.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state != self.CLOSED:
            logger.info("Circuit '%s' closed, dependency recovered", self.name)
        self.failure_count = 0
        self.state = self.CLOSED
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        # A failed HALF_OPEN probe re-opens immediately, whatever the count
        if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != self.OPEN:
                logger.warning(
                    "Circuit '%s' opened after %d consecutive failures",
                    self.name,
                    self.failure_count,
                )
            self.state = self.OPEN
            self.opened_at = time.monotonic()
