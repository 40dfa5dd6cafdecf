"""Tool invocation events and statistics."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ToolStatus(Enum):
    """Lifecycle of one tool invocation. Only moves forward."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.SUCCESS, ToolStatus.ERROR)


@dataclass
class ToolEvent:
    """A tool invocation reported by a worker.

    ``timestamp`` is epoch seconds at invocation; ``duration`` is only set
    once the invocation reached SUCCESS or ERROR.
    """

    tool_id: str
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str | None = None
    status: ToolStatus = ToolStatus.PENDING
    timestamp: float = 0.0
    duration: float | None = None
    error: str | None = None
    task_id: str | None = None


@dataclass(frozen=True)
class ToolStatistics:
    total_invocations: int = 0
    success_count: int = 0
    error_count: int = 0
    active_count: int = 0
    average_duration: float = 0.0
    top_tools: tuple[tuple[str, int], ...] = ()
    by_status: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        completed = self.success_count + self.error_count
        return self.success_count / completed if completed else 0.0


class TrackerEventKind(Enum):
    """Events published by ``ToolActivityTracker``.

    Payloads: TOOL_INVOKED, TOOL_STARTED, TOOL_COMPLETED and TOOL_ERROR ->
    ToolEvent (a copy); STATISTICS_UPDATED -> ToolStatistics;
    RECORD_IGNORED -> IgnoredRecord.
    """

    TOOL_INVOKED = "tool_invoked"
    TOOL_STARTED = "tool_started"
    TOOL_COMPLETED = "tool_completed"
    TOOL_ERROR = "tool_error"
    STATISTICS_UPDATED = "statistics_updated"
    RECORD_IGNORED = "record_ignored"


@dataclass(frozen=True)
class IgnoredRecord:
    reason: str
    tool_id: str | None = None
    task_id: str | None = None
