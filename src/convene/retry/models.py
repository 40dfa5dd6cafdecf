"""Retry state and event payloads."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RetryEventKind(Enum):
    """Events published by ``RetryExecutor``.

    Payloads: ATTEMPT -> RetryAttempt, SUCCESS -> RetrySucceeded,
    EXHAUSTED -> RetryExhausted, CANCELLED -> RetryCancelled,
    REJECTED -> RetryRejected.
    """

    ATTEMPT = "retry_attempt"
    SUCCESS = "retry_success"
    EXHAUSTED = "retry_exhausted"
    CANCELLED = "retry_cancelled"
    REJECTED = "retry_rejected"


@dataclass
class RetryState:
    """Live bookkeeping for one in-flight operation."""
    operation_id: str
    attempt_number: int
    started_at: datetime
    last_error: str | None = None
    last_error_code: str | None = None
    total_backoff: float = 0.0
    next_retry_at: datetime | None = None

    @property
    def is_retrying(self) -> bool:
        return self.next_retry_at is not None


@dataclass(frozen=True)
class RetryAttempt:
    operation_id: str
    attempt: int  # the attempt that failed
    max_attempts: int
    delay: float
    error_code: str
    error: str
    next_retry_at: datetime


@dataclass(frozen=True)
class RetrySucceeded:
    operation_id: str
    attempts: int
    total_backoff: float


@dataclass(frozen=True)
class RetryExhausted:
    operation_id: str
    attempts: int
    error_code: str
    last_error: str
    total_backoff: float


@dataclass(frozen=True)
class RetryCancelled:
    operation_id: str
    attempts: int


@dataclass(frozen=True)
class RetryRejected:
    operation_id: str
    attempts: int
    reason: str
