"""
CareBridge Backend — Circuit Breaker Tests
============================================

What we test:
    ✅ CLOSED → OPEN at the failure threshold
    ✅ OPEN fails fast with the remaining recovery time
    ✅ HALF_OPEN probe closes on success and re-opens on failure
"""

import pytest

from carebridge.exceptions import CircuitBreakerOpenError
from carebridge.services.circuit_breaker import CircuitBreaker


class TestCircuitBreaker:
    def test_opens_at_threshold(self):
        breaker = CircuitBreaker("ledger", failure_threshold=3, recovery_timeout=30)
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            breaker.can_execute()
        assert 0 < exc_info.value.recovery_time <= 30

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("ledger", failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.can_execute() is True

    def test_half_open_probe(self):
        breaker = CircuitBreaker("ledger", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN

        assert breaker.can_execute() is True
        assert breaker.state == CircuitBreaker.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitBreaker.CLOSED

    def test_failed_probe_reopens(self):
        breaker = CircuitBreaker("ledger", failure_threshold=5, recovery_timeout=0)
        for _ in range(5):
            breaker.record_failure()
        breaker.can_execute()
        assert breaker.state == CircuitBreaker.HALF_OPEN

        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN
        assert breaker.opened_at is not None
