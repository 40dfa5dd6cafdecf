"""Debate and consensus between agents."""
from convene.orchestration.debate import DebateCoordinator
from convene.orchestration.debate_runner import DebateRunner, Participant
from convene.orchestration.models import (
    Debate,
    DebateEventKind,
    DebateResolution,
    DebateStatus,
    Severity,
)

__all__ = [
    "Debate",
    "DebateCoordinator",
    "DebateEventKind",
    "DebateResolution",
    "DebateRunner",
    "DebateStatus",
    "Participant",
    "Severity",
]
