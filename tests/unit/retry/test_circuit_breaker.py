"""Tests for the rolling-window circuit breaker."""
import pytest

from convene.retry.circuit_breaker import CircuitBreaker


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_stays_closed_below_min_samples():
    breaker = CircuitBreaker(min_samples=5)
    for _ in range(4):
        breaker.record_failure()
    assert breaker.failure_rate == 1.0
    assert breaker.is_open is False
    assert breaker.allow_retry() is True


def test_opens_above_threshold():
    breaker = CircuitBreaker(failure_threshold=0.8, min_samples=5)
    for _ in range(5):
        breaker.record_failure()
    assert breaker.is_open is True
    assert breaker.allow_retry() is False


def test_threshold_is_exclusive():
    breaker = CircuitBreaker(failure_threshold=0.8, min_samples=5)
    for _ in range(4):
        breaker.record_failure()
    breaker.record_success()
    assert breaker.failure_rate == pytest.approx(0.8)
    assert breaker.is_open is False


def test_old_outcomes_fall_out_of_window():
    clock = FakeClock()
    breaker = CircuitBreaker(window=60.0, min_samples=5, clock=clock)
    for _ in range(5):
        breaker.record_failure()
    assert breaker.is_open

    clock.now += 61
    assert breaker.failure_rate == 0.0
    assert breaker.is_open is False


def test_recovers_with_successes():
    breaker = CircuitBreaker(failure_threshold=0.5, min_samples=2)
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.is_open
    for _ in range(3):
        breaker.record_success()
    assert breaker.failure_rate == pytest.approx(0.4)
    assert not breaker.is_open


def test_reset():
    breaker = CircuitBreaker(min_samples=1)
    breaker.record_failure()
    breaker.reset()
    assert breaker.failure_rate == 0.0
    assert not breaker.is_open


@pytest.mark.parametrize(
    "kwargs",
    [{"window": 0}, {"failure_threshold": 0}, {"failure_threshold": 1.5}, {"min_samples": 0}],
)
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        CircuitBreaker(**kwargs)
