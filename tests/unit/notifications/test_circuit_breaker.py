"""
Unit tests for the channel circuit breaker.
"""

import pytest

from imunia_alerts.notifications.circuit_breaker import CircuitBreaker, CircuitState
from imunia_alerts.notifications.exceptions import CircuitOpenError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("whatsapp", failure_threshold=3, timeout_seconds=60, clock=clock)


class TestCircuitBreaker:
    """Test circuit breaker state machine."""

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_available()

    def test_opens_after_threshold(self, breaker):
        for _ in range(3):
            breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.is_available()

    def test_success_resets_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_after_timeout(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()

        clock.advance(59)
        assert not breaker.is_available()

        clock.advance(1)
        assert breaker.is_available()
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_failure_reopens(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        breaker.is_available()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN

    def test_half_open_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        breaker.is_available()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_call_blocked_when_open(self, breaker):
        for _ in range(3):
            breaker.record_failure()

        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.call(lambda: "sent")

        assert exc_info.value.channel == "whatsapp"

    def test_call_counts_exceptions(self, breaker):
        def failing():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            breaker.call(failing)

        assert breaker.failure_count == 1

    def test_call_passes_arguments(self, breaker):
        assert breaker.call(lambda to, body: f"{to}:{body}", "+221", body="hi") == "+221:hi"

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()

        breaker.reset()

        assert breaker.get_status() == {
            "name": "whatsapp",
            "state": "closed",
            "failure_count": 0,
            "failure_threshold": 3,
            "timeout_seconds": 60,
            "is_available": True
        }
