"""Retry policies and backoff calculation."""
import math
import random
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from convene.errors import ValidationError

JITTER_FRACTION = 0.1

# Non-predictable source so concurrent workers do not retry in lockstep
_system_random = random.SystemRandom()


class BackoffKind(Enum):
    """Delay strategy between attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    ``retryable`` holds regex sources (or compiled patterns) matched against
    structured error identifiers, see ``error_identifiers``. An empty tuple
    means every retryable-kind error is retried.
    """

    max_attempts: int = 3
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_base: float = 2.0
    jitter: bool = True
    retryable: tuple[str | re.Pattern, ...] = ()
    _compiled: tuple[re.Pattern, ...] = field(
        default=(), init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if isinstance(self.backoff, str):
            try:
                object.__setattr__(self, "backoff", BackoffKind(self.backoff))
            except ValueError as e:
                raise ValidationError(f"Unknown backoff kind: {self.backoff}") from e
        if not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValidationError(f"max_attempts must be >= 1 (got {self.max_attempts})")
        for name in ("base_delay", "max_delay"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ValidationError(f"{name} must be a finite value >= 0 (got {value})")
        if self.max_delay < self.base_delay:
            raise ValidationError("max_delay must be >= base_delay")
        if not math.isfinite(self.backoff_base) or self.backoff_base < 1:
            raise ValidationError(f"backoff_base must be >= 1 (got {self.backoff_base})")

        patterns = tuple(self.retryable)
        compiled = []
        for pattern in patterns:
            if isinstance(pattern, re.Pattern):
                compiled.append(pattern)
                continue
            try:
                compiled.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                raise ValidationError(f"Invalid retryable pattern {pattern!r}: {e}") from e
        object.__setattr__(self, "retryable", patterns)
        object.__setattr__(self, "_compiled", tuple(compiled))

    def matches(self, identifiers: list[str]) -> bool:
        """True if any identifier fully matches any retryable pattern."""
        if not self._compiled:
            return True
        return any(
            pattern.fullmatch(identifier)
            for pattern in self._compiled
            for identifier in identifiers
        )


def error_identifiers(error: BaseException) -> list[str]:
    """Structured identifiers of an error: its ``code`` then its class names.

    The message is deliberately not part of this list; text produced by the
    unit of work must never be able to steer retry behaviour.
    """
    identifiers = []
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        identifiers.append(code)
    for cls in type(error).__mro__:
        if cls in (object, BaseException, Exception):
            continue
        identifiers.append(cls.__name__)
    return identifiers


def compute_delay(
    policy: RetryPolicy, attempt: int, rng: random.Random | None = None
) -> float:
    """Delay in seconds before ``attempt`` (1-indexed). Attempt 1 is never delayed."""
    if attempt <= 1:
        return 0.0

    if policy.backoff is BackoffKind.EXPONENTIAL:
        try:
            delay = policy.base_delay * policy.backoff_base ** (attempt - 1)
        except OverflowError:
            delay = policy.max_delay
    elif policy.backoff is BackoffKind.LINEAR:
        delay = policy.base_delay * attempt
    else:
        delay = policy.base_delay

    if not math.isfinite(delay):
        delay = policy.max_delay
    delay = min(delay, policy.max_delay)

    if policy.jitter and delay > 0:
        source = rng or _system_random
        delay += delay * JITTER_FRACTION * source.uniform(-1.0, 1.0)

    return max(0.0, min(delay, policy.max_delay))


def create_retry_policy(base: RetryPolicy | None = None, **overrides: Any) -> RetryPolicy:
    """Copy ``base`` (default agent policy) with overrides applied."""
    return replace(base or DEFAULT_AGENT_POLICY, **overrides)


DEFAULT_AGENT_POLICY = RetryPolicy(
    max_attempts=3,
    backoff=BackoffKind.EXPONENTIAL,
    base_delay=1.0,
    max_delay=30.0,
    jitter=True,
)

# Critical operations: more attempts, faster first retry
AGGRESSIVE_POLICY = RetryPolicy(
    max_attempts=5,
    backoff=BackoffKind.LINEAR,
    base_delay=0.5,
    max_delay=30.0,
    jitter=True,
    retryable=("timeout", "exit_nonzero", "signal", "worker_error", "rate_limit"),
)

# Non-critical operations: one retry on clearly transient failures only
CONSERVATIVE_POLICY = RetryPolicy(
    max_attempts=2,
    backoff=BackoffKind.FIXED,
    base_delay=2.0,
    max_delay=30.0,
    jitter=False,
    retryable=("timeout", "signal"),
)
