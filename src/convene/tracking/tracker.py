"""Tool invocation lifecycle tracking."""
import copy
import logging
import time
from collections import Counter, deque
from collections.abc import Callable
from typing import Any

from convene.events import EventEmitter
from convene.tracking.models import (
    IgnoredRecord,
    ToolEvent,
    ToolStatistics,
    ToolStatus,
    TrackerEventKind,
)

logger = logging.getLogger(__name__)


def _result_text(content: Any) -> str:
    """Flatten tool result content: a string, a list of blocks or a ``{text}`` dict."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
        return "\n".join(parts)
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return str(content)


class ToolActivityTracker:
    """Follows tool invocations from request to result.

    Malformed or unknown records are never raised back at the caller; they
    are logged and published as ``RECORD_IGNORED`` so the worker stream
    keeps flowing. Everything returned is a copy.
    """

    def __init__(
        self,
        history_size: int = 1000,
        top_n: int = 5,
        clock: Callable[[], float] | None = None,
    ):
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        self.top_n = top_n
        self._clock = clock or time.time
        self.events: EventEmitter[TrackerEventKind] = EventEmitter(TrackerEventKind)
        self._active: dict[str, ToolEvent] = {}
        self._history: deque[ToolEvent] = deque(maxlen=history_size)
        self._by_name: Counter[str] = Counter()
        self._success_count = 0
        self._error_count = 0
        self._duration_total = 0.0
        self._duration_samples = 0

    @classmethod
    def from_config(cls, config: Any) -> "ToolActivityTracker":
        """Build from a ``TrackerConfig`` section."""
        return cls(history_size=config.history_size, top_n=config.top_tools)

    def on_assistant_content(self, blocks: Any, task_id: str | None = None) -> None:
        """Register every ``tool_use`` block in an assistant message."""
        if not isinstance(blocks, list):
            self._ignore("assistant content is not a list", task_id=task_id)
            return

        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            tool_id = block.get("id")
            tool_name = block.get("name")
            if not isinstance(tool_id, str) or not tool_id or not isinstance(tool_name, str) or not tool_name:
                self._ignore("tool_use block without id or name", task_id=task_id)
                continue
            if tool_id in self._active or self._find_in_history(tool_id):
                self._ignore("duplicate tool_use id", tool_id=tool_id, task_id=task_id)
                continue

            tool_input = block.get("input")
            event = ToolEvent(
                tool_id=tool_id,
                tool_name=tool_name,
                input=copy.deepcopy(tool_input) if isinstance(tool_input, dict) else {},
                status=ToolStatus.PENDING,
                timestamp=self._clock(),
                task_id=task_id,
            )
            self._active[tool_id] = event
            self._by_name[tool_name] += 1
            logger.debug("Tool %s (%s) invoked", tool_name, tool_id)
            self.events.emit(TrackerEventKind.TOOL_INVOKED, copy.deepcopy(event))

    def mark_running(self, tool_id: str) -> bool:
        """Move a PENDING tool to RUNNING. Any other transition is refused."""
        event = self._active.get(tool_id)
        if event is None or event.status is not ToolStatus.PENDING:
            logger.warning("Refusing to mark tool %s running", tool_id)
            return False
        event.status = ToolStatus.RUNNING
        self.events.emit(TrackerEventKind.TOOL_STARTED, copy.deepcopy(event))
        return True

    def on_tool_result(self, record: Any) -> None:
        """Complete the tool named by ``record["tool_use_id"]``."""
        if not isinstance(record, dict):
            self._ignore("tool result is not an object")
            return
        tool_id = record.get("tool_use_id")
        event = self._active.get(tool_id) if isinstance(tool_id, str) else None
        if event is None:
            self._ignore("tool result for unknown tool id", tool_id=str(tool_id))
            return

        failed = bool(record.get("is_error"))
        output = _result_text(record.get("content"))
        event.status = ToolStatus.ERROR if failed else ToolStatus.SUCCESS
        event.duration = max(0.0, self._clock() - event.timestamp)
        event.output = output
        event.error = (output or "tool reported an error") if failed else None

        del self._active[tool_id]
        self._history.append(event)
        if failed:
            self._error_count += 1
        else:
            self._success_count += 1
        self._duration_total += event.duration
        self._duration_samples += 1

        logger.debug(
            "Tool %s (%s) finished with %s in %.3fs",
            event.tool_name, tool_id, event.status.value, event.duration,
        )
        kind = TrackerEventKind.TOOL_ERROR if failed else TrackerEventKind.TOOL_COMPLETED
        self.events.emit(kind, copy.deepcopy(event))
        self.events.emit(TrackerEventKind.STATISTICS_UPDATED, self.statistics())

    def abandon(self, task_id: str, reason: str = "worker exited before reporting a result") -> int:
        """Fail every unfinished tool of ``task_id``; returns how many were closed."""
        events = [e for e in self._active.values() if e.task_id == task_id]
        if not events:
            return 0
        now = self._clock()
        for event in events:
            event.status = ToolStatus.ERROR
            event.duration = max(0.0, now - event.timestamp)
            event.error = reason
            del self._active[event.tool_id]
            self._history.append(event)
            self._error_count += 1
            self._duration_total += event.duration
            self._duration_samples += 1
            self.events.emit(TrackerEventKind.TOOL_ERROR, copy.deepcopy(event))
        self.events.emit(TrackerEventKind.STATISTICS_UPDATED, self.statistics())
        return len(events)

    def active_tools(self) -> list[ToolEvent]:
        return [copy.deepcopy(event) for event in self._active.values()]

    def history(self) -> list[ToolEvent]:
        """Completed invocations, oldest first."""
        return [copy.deepcopy(event) for event in self._history]

    def get_tool(self, tool_id: str) -> ToolEvent | None:
        event = self._active.get(tool_id) or self._find_in_history(tool_id)
        return copy.deepcopy(event) if event else None

    def tools_by_name(self, name: str) -> list[ToolEvent]:
        events = [e for e in self._history if e.tool_name == name]
        events.extend(e for e in self._active.values() if e.tool_name == name)
        return [copy.deepcopy(event) for event in events]

    def statistics(self) -> ToolStatistics:
        by_status = {status.value: 0 for status in ToolStatus}
        for event in self._active.values():
            by_status[event.status.value] += 1
        by_status[ToolStatus.SUCCESS.value] = self._success_count
        by_status[ToolStatus.ERROR.value] = self._error_count

        ranked = sorted(self._by_name.items(), key=lambda item: (-item[1], item[0]))
        average = (
            self._duration_total / self._duration_samples if self._duration_samples else 0.0
        )
        return ToolStatistics(
            total_invocations=sum(self._by_name.values()),
            success_count=self._success_count,
            error_count=self._error_count,
            active_count=len(self._active),
            average_duration=average,
            top_tools=tuple(ranked[: self.top_n]),
            by_status=by_status,
        )

    def reset(self) -> None:
        self._active.clear()
        self._history.clear()
        self._by_name.clear()
        self._success_count = 0
        self._error_count = 0
        self._duration_total = 0.0
        self._duration_samples = 0

    def _find_in_history(self, tool_id: str) -> ToolEvent | None:
        for event in reversed(self._history):
            if event.tool_id == tool_id:
                return event
        return None

    def _ignore(
        self, reason: str, tool_id: str | None = None, task_id: str | None = None
    ) -> None:
        logger.warning("Ignoring tool record: %s (tool_id=%s)", reason, tool_id)
        self.events.emit(
            TrackerEventKind.RECORD_IGNORED,
            IgnoredRecord(reason=reason, tool_id=tool_id, task_id=task_id),
        )
