"""Tests for retry policies and backoff."""
import random

import pytest

from convene.errors import (
    CircuitOpenError,
    ValidationError,
    WorkerFailedError,
)
from convene.execution.models import FailureKind, SanitizedError
from convene.retry.policy import (
    AGGRESSIVE_POLICY,
    CONSERVATIVE_POLICY,
    DEFAULT_AGENT_POLICY,
    BackoffKind,
    RetryPolicy,
    compute_delay,
    create_retry_policy,
    error_identifiers,
)


def test_first_attempt_is_never_delayed():
    assert compute_delay(RetryPolicy(jitter=False), 1) == 0.0


def test_exponential_backoff():
    policy = RetryPolicy(base_delay=1.0, backoff_base=2.0, max_delay=100.0, jitter=False)
    assert [compute_delay(policy, n) for n in (2, 3, 4)] == [2.0, 4.0, 8.0]


def test_linear_backoff():
    policy = RetryPolicy(backoff=BackoffKind.LINEAR, base_delay=0.5, jitter=False)
    assert compute_delay(policy, 2) == 1.0
    assert compute_delay(policy, 4) == 2.0


def test_fixed_backoff():
    policy = RetryPolicy(backoff=BackoffKind.FIXED, base_delay=2.0, jitter=False)
    assert compute_delay(policy, 2) == compute_delay(policy, 7) == 2.0


def test_delay_capped_at_max_delay():
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)
    assert compute_delay(policy, 10) == 5.0


def test_huge_attempt_number_does_not_overflow():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=False)
    assert compute_delay(policy, 100_000) == 30.0


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(base_delay=10.0, backoff=BackoffKind.FIXED, max_delay=100.0)
    rng = random.Random(42)
    delays = [compute_delay(policy, 2, rng=rng) for _ in range(200)]
    assert all(9.0 <= d <= 11.0 for d in delays)
    assert len(set(delays)) > 1


def test_jitter_never_exceeds_max_delay():
    policy = RetryPolicy(base_delay=5.0, max_delay=5.0, backoff=BackoffKind.FIXED)
    assert all(0 <= compute_delay(policy, 2) <= 5.0 for _ in range(100))


def test_backoff_accepts_string():
    assert RetryPolicy(backoff="linear").backoff is BackoffKind.LINEAR


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0},
        {"base_delay": -1.0},
        {"base_delay": float("nan")},
        {"base_delay": 10.0, "max_delay": 1.0},
        {"backoff_base": 0.5},
        {"backoff": "sideways"},
        {"retryable": ("(unclosed",)},
    ],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ValidationError):
        RetryPolicy(**kwargs)


def test_empty_pattern_list_matches_everything():
    assert RetryPolicy().matches(["anything"]) is True


def test_patterns_fullmatch_identifiers():
    policy = RetryPolicy(retryable=("timeout", "exit_.*"))
    assert policy.matches(["timeout"])
    assert policy.matches(["exit_nonzero"])
    assert not policy.matches(["timeout_extra"])
    assert not policy.matches(["signal"])


def test_error_identifiers_use_code_and_class_names():
    error = WorkerFailedError(SanitizedError(FailureKind.TIMEOUT, "took too long: timeout"))
    identifiers = error_identifiers(error)
    assert identifiers[0] == "timeout"
    assert "WorkerFailedError" in identifiers
    assert "ConveneError" in identifiers
    assert "took too long: timeout" not in identifiers


def test_error_identifiers_for_plain_exception():
    assert error_identifiers(KeyError("x")) == ["KeyError", "LookupError"]


def test_error_identifiers_resource_error():
    identifiers = error_identifiers(CircuitOpenError("open"))
    assert identifiers[0] == "rejected"
    assert "CircuitOpenError" in identifiers


def test_create_retry_policy_overrides():
    policy = create_retry_policy(max_attempts=7)
    assert policy.max_attempts == 7
    assert policy.base_delay == DEFAULT_AGENT_POLICY.base_delay


def test_create_retry_policy_validates():
    with pytest.raises(ValidationError):
        create_retry_policy(CONSERVATIVE_POLICY, max_attempts=0)


def test_presets():
    assert AGGRESSIVE_POLICY.max_attempts > DEFAULT_AGENT_POLICY.max_attempts
    assert CONSERVATIVE_POLICY.backoff is BackoffKind.FIXED
    assert not CONSERVATIVE_POLICY.matches(["exit_nonzero"])
