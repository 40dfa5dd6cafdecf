"""Error taxonomy shared by every convene component.

Errors carry a machine-readable ``code`` so that retry decisions never need
to look at message text, and a ``retryable`` flag for the kinds that must
never be retried whatever the policy says (bad input, capacity rejections,
cancellation).
"""
from enum import Enum


class ResourceKind(Enum):
    """Which capacity guard rejected a request."""

    CONCURRENCY = "concurrency"
    RETRY_BUDGET = "retry_budget"
    CIRCUIT_OPEN = "circuit_open"


class ConveneError(Exception):
    """Base class for all convene errors."""

    code: str = "error"
    retryable: bool = True


# --- Validation -------------------------------------------------------------


class ValidationError(ConveneError):
    """Bad input shape or range. Rejected immediately, never retried."""

    code = "validation"
    retryable = False


class PhaseError(ValidationError):
    """Submission does not match the debate's current phase."""

    code = "invalid_phase"


class UnknownParticipantError(ValidationError):
    """Agent is not on the debate roster."""

    code = "unknown_participant"


class IneligibleProposalError(ValidationError):
    """Vote targets a proposal with unresolved blocking critiques."""

    code = "ineligible_proposal"


class DuplicateOperationError(ValidationError):
    """An operation or task with the same id is already in flight."""

    code = "duplicate_operation"


# --- Transient / process ----------------------------------------------------


class WorkerFailedError(ConveneError):
    """A worker attempt failed; ``code`` is the failure kind."""

    # Failure kinds another attempt cannot fix
    FINAL_KINDS = frozenset({"buffer_exceeded", "cancelled", "rejected", "permission_denied"})

    def __init__(self, error, result=None):
        # error is a SanitizedError; kept untyped to avoid an import cycle
        super().__init__(error.message)
        self.error = error
        self.code = error.kind.value
        self.retryable = self.code not in self.FINAL_KINDS
        self.result = result


class StepVerificationError(ConveneError):
    """Verifier did not return a PASS verdict for a plan step."""

    code = "verification_failed"


# --- Resource ---------------------------------------------------------------


class ResourceRejectedError(ConveneError):
    """Rejected for capacity: try later, it is not a failure of the work."""

    code = "rejected"
    retryable = False
    kind: ResourceKind = ResourceKind.CONCURRENCY

    def __init__(self, message: str, kind: ResourceKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class CapacityExceededError(ResourceRejectedError):
    """Process ceiling (global or per group) reached."""

    kind = ResourceKind.CONCURRENCY


class RetryBudgetExceededError(ResourceRejectedError):
    """Too many operations are retrying at once."""

    kind = ResourceKind.RETRY_BUDGET


class CircuitOpenError(ResourceRejectedError):
    """Rolling failure rate is above the circuit breaker threshold."""

    kind = ResourceKind.CIRCUIT_OPEN


# --- Other terminal outcomes ------------------------------------------------


class RetryCancelledError(ConveneError):
    """The operation was cancelled before its next attempt."""

    code = "cancelled"
    retryable = False

    def __init__(self, operation_id: str, last_error: BaseException | None = None):
        super().__init__(f"Operation {operation_id} cancelled")
        self.operation_id = operation_id
        self.last_error = last_error


class PermissionDeniedError(ConveneError):
    """Launch policy refused to start the worker."""

    code = "permission_denied"
    retryable = False
