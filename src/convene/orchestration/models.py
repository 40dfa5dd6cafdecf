"""Debate data model."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DebateStatus(Enum):
    """Current phase of a debate, or its terminal state."""

    PROPOSING = "proposing"
    CRITIQUING = "critiquing"
    DEFENDING = "defending"
    VOTING = "voting"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DebateStatus.RESOLVED, DebateStatus.ESCALATED, DebateStatus.CANCELLED)


# Order of the working phases inside one round
PHASE_ORDER = (
    DebateStatus.PROPOSING,
    DebateStatus.CRITIQUING,
    DebateStatus.DEFENDING,
    DebateStatus.VOTING,
)


class Severity(Enum):
    MINOR = "minor"
    MAJOR = "major"
    BLOCKING = "blocking"  # proposal cannot receive votes until addressed


@dataclass
class Proposal:
    proposal_id: str
    agent_id: str
    solution: str
    reasoning: str
    confidence: float
    submitted_at: datetime = field(default_factory=datetime.now)
    modified: bool = False


@dataclass
class Critique:
    critique_id: str
    from_agent: str
    to_agent: str
    proposal_id: str
    severity: Severity
    criticism: str
    suggested_fix: str | None = None
    addressed: bool = False
    submitted_at: datetime = field(default_factory=datetime.now)


@dataclass
class Defense:
    defense_id: str
    agent_id: str
    proposal_id: str
    critique_id: str
    text: str
    modified_solution: str | None = None
    submitted_at: datetime = field(default_factory=datetime.now)


@dataclass
class Vote:
    vote_id: str
    agent_id: str
    proposal_id: str
    weight: float
    justification: str | None = None
    cast_at: datetime = field(default_factory=datetime.now)


@dataclass
class Round:
    """One full propose, critique, defend and vote cycle."""

    number: int
    proposals: list[Proposal] = field(default_factory=list)
    critiques: list[Critique] = field(default_factory=list)
    defenses: list[Defense] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None
    timed_out: bool = False

    def is_eligible(self, proposal_id: str) -> bool:
        """False while any blocking critique of the proposal is unaddressed."""
        return not any(
            c.proposal_id == proposal_id and c.severity is Severity.BLOCKING and not c.addressed
            for c in self.critiques
        )

    def eligible_proposals(self) -> list[Proposal]:
        return [p for p in self.proposals if self.is_eligible(p.proposal_id)]

    def tally(self) -> dict[str, float]:
        totals = {p.proposal_id: 0.0 for p in self.proposals}
        for vote in self.votes:
            totals[vote.proposal_id] = totals.get(vote.proposal_id, 0.0) + vote.weight
        return totals


@dataclass
class Debate:
    debate_id: str
    topic: str
    participants: tuple[str, ...]
    status: DebateStatus = DebateStatus.PROPOSING
    rounds: list[Round] = field(default_factory=list)
    winner: Proposal | None = None
    escalation_reason: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None

    @property
    def current_round(self) -> int:
        return len(self.rounds)

    @property
    def round(self) -> Round:
        return self.rounds[-1]


@dataclass(frozen=True)
class DebateResolution:
    """Outcome of resolving one voting phase."""

    debate_id: str
    round_number: int
    status: DebateStatus
    winner: Proposal | None = None
    tally: dict[str, float] = field(default_factory=dict)
    total_weight: float = 0.0
    reason: str | None = None

    @property
    def consensus(self) -> bool:
        return self.status is DebateStatus.RESOLVED


class DebateEventKind(Enum):
    """Events published by ``DebateCoordinator``.

    Every payload is a ``DebateEvent``; ``item`` holds a copy of: the Debate
    (DEBATE_STARTED, DEBATE_CANCELLED), the Round (ROUND_STARTED,
    ROUND_COMPLETED), the new DebateStatus (PHASE_CHANGED), the Proposal,
    Critique, Defense or Vote (the *_SUBMITTED and VOTE_CAST kinds), the
    winning Proposal (CONSENSUS_REACHED) or the reason string
    (DEBATE_ESCALATED).
    """

    DEBATE_STARTED = "debate_started"
    ROUND_STARTED = "round_started"
    PHASE_CHANGED = "phase_changed"
    PROPOSAL_SUBMITTED = "proposal_submitted"
    CRITIQUE_SUBMITTED = "critique_submitted"
    DEFENSE_SUBMITTED = "defense_submitted"
    VOTE_CAST = "vote_cast"
    ROUND_COMPLETED = "round_completed"
    CONSENSUS_REACHED = "consensus_reached"
    DEBATE_ESCALATED = "debate_escalated"
    DEBATE_CANCELLED = "debate_cancelled"


@dataclass(frozen=True)
class DebateEvent:
    debate_id: str
    round_number: int
    item: Any = None
