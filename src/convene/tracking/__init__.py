"""Tool activity tracking."""

from convene.tracking.models import (
    ToolEvent,
    ToolStatistics,
    ToolStatus,
    TrackerEventKind,
)
from convene.tracking.tracker import ToolActivityTracker

__all__ = [
    "ToolActivityTracker",
    "ToolEvent",
    "ToolStatistics",
    "ToolStatus",
    "TrackerEventKind",
]
