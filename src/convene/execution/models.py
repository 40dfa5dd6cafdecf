"""Invocation requests, results and supervisor events."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class FailureKind(Enum):
    """Why an invocation attempt failed."""

    TIMEOUT = "timeout"
    BUFFER_EXCEEDED = "buffer_exceeded"
    EXIT_NONZERO = "exit_nonzero"
    SIGNAL = "signal"
    SPAWN_FAILED = "spawn_failed"
    WORKER_ERROR = "worker_error"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    PERMISSION_DENIED = "permission_denied"


@dataclass(frozen=True)
class SanitizedError:
    """Failure summary safe to hand to callers and UIs."""

    kind: FailureKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class AgentInvocationRequest:
    """One unit of work for a worker process.

    ``group_id`` names the logical task the invocation belongs to and is
    what the per-task concurrency ceiling counts; it defaults to ``task_id``.
    """

    task_id: str
    role: str
    prompt: str
    model: str | None = None
    timeout: float | None = None
    working_directory: str | None = None
    group_id: str | None = None
    context: str | None = None
    agent: str | None = None  # registered adapter name; supervisor default if unset

    @property
    def group(self) -> str:
        return self.group_id or self.task_id


@dataclass(frozen=True)
class AgentInvocationResult:
    """Outcome of an accepted request. Exactly one per request."""

    task_id: str
    role: str
    success: bool
    content: str = ""
    error: SanitizedError | None = None
    exit_code: int | None = None
    exit_signal: int | None = None
    attempts: int = 1
    duration: float = 0.0


@dataclass(frozen=True)
class ActiveInvocation:
    """Snapshot of a live invocation."""

    task_id: str
    role: str
    group_id: str
    attempt: int
    pid: int | None
    started_at: datetime


class SupervisorEventKind(Enum):
    """Events published by ``ProcessSupervisor``.

    Payloads: STARTED -> InvocationStarted, OUTPUT -> InvocationOutput,
    ATTEMPT_FAILED -> AttemptFailed, FINISHED -> AgentInvocationResult,
    STOPPED -> InvocationStopped.
    """

    STARTED = "started"
    OUTPUT = "output"
    ATTEMPT_FAILED = "attempt_failed"
    FINISHED = "finished"
    STOPPED = "stopped"


@dataclass(frozen=True)
class InvocationStarted:
    task_id: str
    role: str
    attempt: int
    pid: int | None


@dataclass(frozen=True)
class InvocationOutput:
    task_id: str
    text: str


@dataclass(frozen=True)
class AttemptFailed:
    task_id: str
    attempt: int
    error: SanitizedError


@dataclass(frozen=True)
class InvocationStopped:
    task_id: str
    confirmed: bool


@dataclass
class AttemptOutcome:
    """Internal record of a single process run."""

    text_parts: list[str] = field(default_factory=list)
    result_text: str | None = None
    result_is_error: bool = False
    exit_code: int | None = None
    exit_signal: int | None = None
    failure: FailureKind | None = None
    detail: str = ""
    stderr_tail: str = ""

    @property
    def content(self) -> str:
        if self.result_text is not None:
            return self.result_text
        return "".join(self.text_parts)
