"""Retry engine: policies, backoff and the retry executor."""

from convene.retry.circuit_breaker import CircuitBreaker
from convene.retry.executor import RetryExecutor
from convene.retry.models import RetryEventKind, RetryState
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

__all__ = [
    "AGGRESSIVE_POLICY",
    "CONSERVATIVE_POLICY",
    "DEFAULT_AGENT_POLICY",
    "BackoffKind",
    "CircuitBreaker",
    "RetryEventKind",
    "RetryExecutor",
    "RetryPolicy",
    "RetryState",
    "compute_delay",
    "create_retry_policy",
    "error_identifiers",
]
