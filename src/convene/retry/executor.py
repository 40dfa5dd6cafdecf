"""Execute units of work under a retry policy."""
import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from convene.errors import (
    CircuitOpenError,
    DuplicateOperationError,
    ResourceKind,
    RetryBudgetExceededError,
    RetryCancelledError,
)
from convene.events import EventEmitter
from convene.retry.circuit_breaker import CircuitBreaker
from convene.retry.models import (
    RetryAttempt,
    RetryCancelled,
    RetryEventKind,
    RetryExhausted,
    RetryRejected,
    RetryState,
    RetrySucceeded,
)
from convene.retry.policy import (
    DEFAULT_AGENT_POLICY,
    RetryPolicy,
    compute_delay,
    error_identifiers,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_EVENT_MESSAGE_LENGTH = 500


def _describe(error: BaseException) -> str:
    message = str(error) or type(error).__name__
    return message[:MAX_EVENT_MESSAGE_LENGTH]


def _code_of(error: BaseException) -> str:
    # a bare Exception() has no structured identifiers
    identifiers = error_identifiers(error)
    return identifiers[0] if identifiers else type(error).__name__


class RetryExecutor:
    """Runs async units of work with bounded, policy-driven retries.

    Emits RetryEventKind events on ``self.events``. Each ``operation_id`` has
    at most one live ``RetryState`` and the state is dropped on every
    terminal outcome (success, exhaustion, rejection, cancellation).
    """

    def __init__(
        self,
        max_active_retries: int = 10,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        if max_active_retries < 1:
            raise ValueError("max_active_retries must be >= 1")
        self.max_active_retries = max_active_retries
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.events: EventEmitter[RetryEventKind] = EventEmitter(RetryEventKind)
        self._states: dict[str, RetryState] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    @classmethod
    def from_config(cls, config: Any) -> "RetryExecutor":
        """Build from a ``RetryConfig`` section."""
        breaker = config.circuit_breaker
        return cls(
            max_active_retries=config.max_active_retries,
            circuit_breaker=CircuitBreaker(
                window=breaker.window_seconds,
                failure_threshold=breaker.failure_threshold,
                min_samples=breaker.min_samples,
            ),
        )

    async def execute_with_retry(
        self,
        unit_of_work: Callable[[], Awaitable[T]],
        policy: RetryPolicy = DEFAULT_AGENT_POLICY,
        operation_id: str | None = None,
    ) -> T:
        """Run ``unit_of_work`` until it succeeds or the policy gives up.

        Raises:
            The last error when attempts are exhausted or the error is not
            retryable; RetryCancelledError when cancelled; RetryBudgetExceededError
            or CircuitOpenError when a retry is refused for capacity;
            DuplicateOperationError when ``operation_id`` is already live.
        """
        op_id = operation_id or f"retry-{uuid.uuid4().hex[:12]}"
        if op_id in self._states:
            raise DuplicateOperationError(f"Operation {op_id} is already in flight")

        state = RetryState(operation_id=op_id, attempt_number=1, started_at=datetime.now())
        cancel_event = asyncio.Event()
        self._states[op_id] = state
        self._cancel_events[op_id] = cancel_event

        attempt = 1
        try:
            while True:
                if cancel_event.is_set():
                    self._cancelled(op_id, attempt - 1)
                    raise RetryCancelledError(op_id)

                state.attempt_number = attempt
                state.next_retry_at = None
                try:
                    result = await unit_of_work()
                except Exception as error:
                    if getattr(error, "retryable", True):
                        self.circuit_breaker.record_failure()
                    state.last_error = _describe(error)
                    state.last_error_code = _code_of(error)

                    if cancel_event.is_set():
                        self._cancelled(op_id, attempt)
                        raise RetryCancelledError(op_id, error) from error

                    if not self.should_retry(error, attempt, policy):
                        if attempt >= policy.max_attempts:
                            self.events.emit(
                                RetryEventKind.EXHAUSTED,
                                RetryExhausted(
                                    operation_id=op_id,
                                    attempts=attempt,
                                    error_code=state.last_error_code,
                                    last_error=state.last_error,
                                    total_backoff=state.total_backoff,
                                ),
                            )
                            logger.warning(
                                "Operation %s exhausted %d attempts (%s)",
                                op_id, attempt, state.last_error_code,
                            )
                        else:
                            logger.debug(
                                "Operation %s failed with non-retryable %s",
                                op_id, state.last_error_code,
                            )
                        raise

                    self._check_capacity(op_id, attempt, error)

                    delay = compute_delay(policy, attempt + 1)
                    state.total_backoff += delay
                    state.next_retry_at = datetime.now() + timedelta(seconds=delay)
                    self.events.emit(
                        RetryEventKind.ATTEMPT,
                        RetryAttempt(
                            operation_id=op_id,
                            attempt=attempt,
                            max_attempts=policy.max_attempts,
                            delay=delay,
                            error_code=state.last_error_code,
                            error=state.last_error,
                            next_retry_at=state.next_retry_at,
                        ),
                    )
                    logger.info(
                        "Operation %s attempt %d/%d failed (%s); retrying in %.2fs",
                        op_id, attempt, policy.max_attempts, state.last_error_code, delay,
                    )

                    if await self._wait_or_cancel(cancel_event, delay):
                        self._cancelled(op_id, attempt)
                        raise RetryCancelledError(op_id, error) from error
                    attempt += 1
                else:
                    self.circuit_breaker.record_success()
                    if attempt > 1:
                        self.events.emit(
                            RetryEventKind.SUCCESS,
                            RetrySucceeded(
                                operation_id=op_id,
                                attempts=attempt,
                                total_backoff=state.total_backoff,
                            ),
                        )
                    return result
        finally:
            self._states.pop(op_id, None)
            self._cancel_events.pop(op_id, None)

    def should_retry(
        self, error: BaseException, attempt: int, policy: RetryPolicy
    ) -> bool:
        """Decide from attempt count and structured identifiers only."""
        if attempt >= policy.max_attempts:
            return False
        if not getattr(error, "retryable", True):
            return False
        return policy.matches(error_identifiers(error))

    def cancel(self, operation_id: str) -> bool:
        """Request cancellation; False if unknown, finished or already cancelled."""
        event = self._cancel_events.get(operation_id)
        if event is None or event.is_set():
            return False
        event.set()
        logger.info("Cancellation requested for operation %s", operation_id)
        return True

    def get_retry_state(self, operation_id: str) -> RetryState | None:
        state = self._states.get(operation_id)
        if state is None:
            return None
        return RetryState(**vars(state))

    def active_retries(self) -> dict[str, RetryState]:
        return {op_id: RetryState(**vars(state)) for op_id, state in self._states.items()}

    @property
    def retrying_count(self) -> int:
        return sum(1 for state in self._states.values() if state.is_retrying)

    def _check_capacity(self, op_id: str, attempt: int, error: BaseException) -> None:
        if not self.circuit_breaker.allow_retry():
            reason = (
                f"circuit open: failure rate {self.circuit_breaker.failure_rate:.0%} "
                f"above {self.circuit_breaker.failure_threshold:.0%}"
            )
            self._rejected(op_id, attempt, reason)
            raise CircuitOpenError(
                f"Retry of {op_id} refused, {reason}", ResourceKind.CIRCUIT_OPEN
            ) from error

        if self.retrying_count >= self.max_active_retries:
            reason = f"{self.retrying_count} operations already retrying (max {self.max_active_retries})"
            self._rejected(op_id, attempt, reason)
            raise RetryBudgetExceededError(
                f"Retry of {op_id} refused, {reason}", ResourceKind.RETRY_BUDGET
            ) from error

    def _rejected(self, op_id: str, attempt: int, reason: str) -> None:
        logger.warning("Retry of %s rejected: %s", op_id, reason)
        self.events.emit(
            RetryEventKind.REJECTED,
            RetryRejected(operation_id=op_id, attempts=attempt, reason=reason),
        )

    def _cancelled(self, op_id: str, attempts: int) -> None:
        self.events.emit(
            RetryEventKind.CANCELLED,
            RetryCancelled(operation_id=op_id, attempts=attempts),
        )

    @staticmethod
    async def _wait_or_cancel(cancel_event: asyncio.Event, delay: float) -> bool:
        """Sleep for ``delay``; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
