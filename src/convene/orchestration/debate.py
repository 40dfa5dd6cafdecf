"""Multi-round debate and consensus between agents.

Each round runs propose, critique, defend and vote. A proposal with an
unaddressed blocking critique cannot receive votes. The debate resolves
when a single eligible proposal collects at least ``consensus_threshold``
of the weight cast in a round, and escalates when ``max_rounds`` pass
without that or when no proposal is eligible for votes.
"""
import asyncio
import copy
import logging
import math
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from convene.config.defaults import (
    DEFAULT_CONSENSUS_THRESHOLD,
    DEFAULT_MAX_ROUNDS,
    DEFAULT_MIN_PARTICIPANTS,
    DEFAULT_ROUND_TIMEOUT,
)
from convene.errors import (
    IneligibleProposalError,
    PhaseError,
    UnknownParticipantError,
    ValidationError,
)
from convene.events import EventEmitter
from convene.orchestration.models import (
    PHASE_ORDER,
    Critique,
    Debate,
    DebateEvent,
    DebateEventKind,
    DebateResolution,
    DebateStatus,
    Defense,
    Proposal,
    Round,
    Severity,
    Vote,
)

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _check_unit_interval(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be a finite number in [0, 1] (got {value!r})")


class DebateCoordinator:
    """Runs the debate state machine for any number of concurrent debates.

    Submissions are validated against the current phase and the roster.
    Round timeouts are armed with ``loop.call_later`` when an event loop is
    running and are also checked lazily by ``check_timeouts`` against the
    injectable ``clock``.
    """

    def __init__(
        self,
        min_participants: int = DEFAULT_MIN_PARTICIPANTS,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        consensus_threshold: float = DEFAULT_CONSENSUS_THRESHOLD,
        round_timeout: float = DEFAULT_ROUND_TIMEOUT,
        allow_proposal_modifications: bool = True,
        auto_advance: bool = False,
        clock: Callable[[], float] | None = None,
    ):
        if min_participants < 2:
            raise ValidationError("min_participants must be >= 2")
        if max_rounds < 1:
            raise ValidationError("max_rounds must be >= 1")
        if not math.isfinite(consensus_threshold) or not 0.0 < consensus_threshold <= 1.0:
            raise ValidationError("consensus_threshold must be in (0, 1]")
        if not math.isfinite(round_timeout) or round_timeout <= 0:
            raise ValidationError("round_timeout must be greater than zero")
        self.min_participants = min_participants
        self.max_rounds = max_rounds
        self.consensus_threshold = consensus_threshold
        self.round_timeout = round_timeout
        self.allow_proposal_modifications = allow_proposal_modifications
        self.auto_advance = auto_advance
        self._clock = clock or time.monotonic
        self.events: EventEmitter[DebateEventKind] = EventEmitter(DebateEventKind)
        self._debates: dict[str, Debate] = {}
        self._deadlines: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._finished: dict[str, asyncio.Event] = {}

    @classmethod
    def from_config(cls, config: Any) -> "DebateCoordinator":
        """Build from a ``DebateConfig`` section."""
        return cls(
            min_participants=config.min_participants,
            max_rounds=config.max_rounds,
            consensus_threshold=config.consensus_threshold,
            round_timeout=config.round_timeout,
            allow_proposal_modifications=config.allow_proposal_modifications,
            auto_advance=config.auto_advance,
        )

    # --- Lifecycle -----------------------------------------------------

    def start_debate(self, topic: str, participants: list[str]) -> str:
        if not isinstance(topic, str) or not topic.strip():
            raise ValidationError("topic must be a non-empty string")
        roster = tuple(participants)
        if any(not isinstance(p, str) or not p for p in roster):
            raise ValidationError("participant ids must be non-empty strings")
        if len(set(roster)) != len(roster):
            raise ValidationError("participant ids must be unique")
        if len(roster) < self.min_participants:
            raise ValidationError(
                f"Insufficient participants: minimum {self.min_participants} required, got {len(roster)}"
            )

        debate = Debate(debate_id=_new_id("debate"), topic=topic, participants=roster)
        self._debates[debate.debate_id] = debate
        self._finished[debate.debate_id] = asyncio.Event()
        logger.info("Debate %s started with %d participants", debate.debate_id, len(roster))
        self._emit(DebateEventKind.DEBATE_STARTED, debate, debate)
        self._start_round(debate)
        return debate.debate_id

    def cancel_debate(self, debate_id: str) -> bool:
        """Cancel an open debate. False if it already ended."""
        debate = self._get(debate_id)
        if debate.status.is_terminal:
            return False
        debate.round.ended_at = datetime.now()
        self._finish(debate, DebateStatus.CANCELLED)
        self._emit(DebateEventKind.DEBATE_CANCELLED, debate, debate)
        return True

    def get_debate(self, debate_id: str) -> Debate:
        return copy.deepcopy(self._get(debate_id))

    def active_debates(self) -> list[Debate]:
        return [copy.deepcopy(d) for d in self._debates.values() if not d.status.is_terminal]

    # --- Submissions ---------------------------------------------------

    def submit_proposal(
        self,
        debate_id: str,
        agent_id: str,
        solution: str,
        reasoning: str = "",
        confidence: float = 0.5,
    ) -> Proposal:
        debate = self._open(debate_id, DebateStatus.PROPOSING, agent_id)
        _check_unit_interval("confidence", confidence)
        if not isinstance(solution, str) or not solution.strip():
            raise ValidationError("solution must be a non-empty string")
        round_ = debate.round
        if any(p.agent_id == agent_id for p in round_.proposals):
            raise ValidationError(f"Agent {agent_id} already proposed in round {round_.number}")

        proposal = Proposal(
            proposal_id=_new_id("proposal"),
            agent_id=agent_id,
            solution=solution,
            reasoning=reasoning,
            confidence=float(confidence),
        )
        round_.proposals.append(proposal)
        self._emit(DebateEventKind.PROPOSAL_SUBMITTED, debate, proposal)

        if self.auto_advance and len(round_.proposals) == len(debate.participants):
            self.advance_phase(debate_id)
        return copy.deepcopy(proposal)

    def submit_critique(
        self,
        debate_id: str,
        from_agent: str,
        proposal_id: str,
        criticism: str,
        severity: Severity | str = Severity.MINOR,
        suggested_fix: str | None = None,
        to_agent: str | None = None,
    ) -> Critique:
        """Critique another agent's proposal in the current round.

        ``to_agent`` defaults to the proposal's author and must match it
        when given.
        """
        debate = self._open(debate_id, DebateStatus.CRITIQUING, from_agent)
        proposal = self._proposal(debate, proposal_id)
        if to_agent is not None and to_agent != proposal.agent_id:
            raise ValidationError(
                f"to_agent {to_agent} does not match proposal author {proposal.agent_id}"
            )
        if from_agent == proposal.agent_id:
            raise ValidationError("Agents cannot critique their own proposals")
        try:
            severity = Severity(severity)
        except ValueError as e:
            raise ValidationError(f"Unknown severity: {severity}") from e

        critique = Critique(
            critique_id=_new_id("critique"),
            from_agent=from_agent,
            to_agent=proposal.agent_id,
            proposal_id=proposal.proposal_id,
            severity=severity,
            criticism=criticism,
            suggested_fix=suggested_fix,
        )
        debate.round.critiques.append(critique)
        self._emit(DebateEventKind.CRITIQUE_SUBMITTED, debate, critique)
        return copy.deepcopy(critique)

    def submit_defense(
        self,
        debate_id: str,
        agent_id: str,
        text: str,
        critique_id: str | None = None,
        modified_solution: str | None = None,
    ) -> list[Defense]:
        """Answer critiques of the agent's own proposal.

        Answers ``critique_id`` only, or every unaddressed critique of the
        proposal when it is omitted. Answered critiques count as addressed,
        which is what makes a blocked proposal eligible again.
        """
        debate = self._open(debate_id, DebateStatus.DEFENDING, agent_id)
        round_ = debate.round
        proposal = next((p for p in round_.proposals if p.agent_id == agent_id), None)
        if proposal is None:
            raise ValidationError(f"No proposal from agent {agent_id} in round {round_.number}")
        if modified_solution is not None and not self.allow_proposal_modifications:
            raise ValidationError("Proposal modifications are not allowed")

        if critique_id is not None:
            critique = next((c for c in round_.critiques if c.critique_id == critique_id), None)
            if critique is None:
                raise ValidationError(f"Critique {critique_id} not found")
            if critique.proposal_id != proposal.proposal_id:
                raise ValidationError(f"Critique {critique_id} is not about this proposal")
            targets = [critique]
        else:
            targets = [
                c for c in round_.critiques
                if c.proposal_id == proposal.proposal_id and not c.addressed
            ]
        if not targets:
            raise ValidationError("No critiques to address")

        defenses = []
        for critique in targets:
            defense = Defense(
                defense_id=_new_id("defense"),
                agent_id=agent_id,
                proposal_id=proposal.proposal_id,
                critique_id=critique.critique_id,
                text=text,
                modified_solution=modified_solution,
            )
            critique.addressed = True
            round_.defenses.append(defense)
            defenses.append(defense)
        if modified_solution is not None:
            proposal.solution = modified_solution
            proposal.modified = True

        for defense in defenses:
            self._emit(DebateEventKind.DEFENSE_SUBMITTED, debate, defense)
        return copy.deepcopy(defenses)

    def cast_vote(
        self,
        debate_id: str,
        agent_id: str,
        proposal_id: str,
        weight: float = 1.0,
        justification: str | None = None,
    ) -> Vote:
        debate = self._open(debate_id, DebateStatus.VOTING, agent_id)
        if not isinstance(weight, (int, float)) or not math.isfinite(weight) or weight < 0:
            raise ValidationError(f"Vote weight must be a finite number >= 0 (got {weight!r})")
        round_ = debate.round
        proposal = self._proposal(debate, proposal_id)
        if not round_.is_eligible(proposal.proposal_id):
            raise IneligibleProposalError(
                f"Proposal {proposal_id} has unresolved blocking critiques"
            )
        if any(v.agent_id == agent_id for v in round_.votes):
            raise ValidationError(f"Agent {agent_id} has already voted in round {round_.number}")

        vote = Vote(
            vote_id=_new_id("vote"),
            agent_id=agent_id,
            proposal_id=proposal.proposal_id,
            weight=float(weight),
            justification=justification,
        )
        round_.votes.append(vote)
        self._emit(DebateEventKind.VOTE_CAST, debate, vote)

        if self.auto_advance and len(round_.votes) == len(debate.participants):
            self.resolve_debate(debate_id)
        return copy.deepcopy(vote)

    # --- Phase control -------------------------------------------------

    def advance_phase(self, debate_id: str) -> DebateStatus:
        """Move to the next phase; from VOTING this resolves the round."""
        debate = self._get(debate_id)
        if debate.status.is_terminal:
            raise PhaseError(f"Debate {debate_id} has ended ({debate.status.value})")
        if debate.status is DebateStatus.VOTING:
            return self.resolve_debate(debate_id).status

        next_phase = PHASE_ORDER[PHASE_ORDER.index(debate.status) + 1]
        if next_phase is DebateStatus.VOTING and not debate.round.eligible_proposals():
            self._escalate(
                debate, "No eligible proposals: every proposal has unresolved blocking critiques"
            )
            return debate.status
        self._set_phase(debate, next_phase)
        return debate.status

    def resolve_debate(self, debate_id: str) -> DebateResolution:
        """Count the current round's votes and resolve, start a new round or escalate."""
        debate = self._get(debate_id)
        if debate.status is not DebateStatus.VOTING:
            raise PhaseError(
                f"Debate {debate_id} can only be resolved while voting (status: {debate.status.value})"
            )
        round_ = debate.round
        tally = round_.tally()
        total = sum(v.weight for v in round_.votes)
        eligible = round_.eligible_proposals()

        winners = []
        if total > 0:
            required = self.consensus_threshold * total
            winners = [
                p for p in eligible
                if tally[p.proposal_id] >= required or math.isclose(tally[p.proposal_id], required)
            ]

        self._complete_round(debate)
        if len(winners) == 1:
            debate.winner = winners[0]
            self._finish(debate, DebateStatus.RESOLVED)
            logger.info("Debate %s resolved in round %d", debate_id, round_.number)
            self._emit(DebateEventKind.CONSENSUS_REACHED, debate, winners[0])
            return self._resolution(debate, round_, tally, total)

        if len(winners) > 1:
            logger.warning("Several proposals reached the threshold in debate %s", debate_id)
        if not eligible:
            reason = "No eligible proposals: every proposal has unresolved blocking critiques"
        else:
            reason = f"No consensus in round {round_.number}"
        self._next_round_or_escalate(debate, reason)
        return self._resolution(debate, round_, tally, total, reason)

    def check_timeouts(self, now: float | None = None) -> list[str]:
        """Time out every round past its deadline; returns the affected debate ids."""
        now = self._clock() if now is None else now
        expired = [
            debate_id for debate_id, deadline in self._deadlines.items() if now >= deadline
        ]
        for debate_id in expired:
            self._on_round_timeout(debate_id, self._debates[debate_id].current_round)
        return expired

    async def wait_for_outcome(self, debate_id: str) -> Debate:
        """Wait until the debate resolves, escalates or is cancelled.

        Bounded by the remaining round timeouts: every wake-up either finds
        the debate finished or times out the current round.
        """
        self._get(debate_id)
        finished = self._finished[debate_id]
        while not self._debates[debate_id].status.is_terminal:
            self.check_timeouts()
            deadline = self._deadlines.get(debate_id)
            if deadline is None:
                break
            try:
                await asyncio.wait_for(finished.wait(), timeout=max(0.0, deadline - self._clock()))
            except asyncio.TimeoutError:
                pass
        return self.get_debate(debate_id)

    # --- Internals -----------------------------------------------------

    def _get(self, debate_id: str) -> Debate:
        debate = self._debates.get(debate_id)
        if debate is None:
            raise ValidationError(f"Debate {debate_id} not found")
        return debate

    def _open(self, debate_id: str, phase: DebateStatus, agent_id: str) -> Debate:
        debate = self._get(debate_id)
        if agent_id not in debate.participants:
            raise UnknownParticipantError(
                f"Agent {agent_id} is not a participant in debate {debate_id}"
            )
        if debate.status is not phase:
            raise PhaseError(
                f"Debate {debate_id} is {debate.status.value}, not {phase.value}"
            )
        return debate

    def _proposal(self, debate: Debate, proposal_id: str) -> Proposal:
        for proposal in debate.round.proposals:
            if proposal.proposal_id == proposal_id:
                return proposal
        raise ValidationError(f"Proposal {proposal_id} not found in round {debate.current_round}")

    def _emit(self, kind: DebateEventKind, debate: Debate, item: Any) -> None:
        self.events.emit(
            kind, DebateEvent(debate.debate_id, debate.current_round, copy.deepcopy(item))
        )

    def _set_phase(self, debate: Debate, phase: DebateStatus) -> None:
        debate.status = phase
        logger.debug("Debate %s round %d: %s", debate.debate_id, debate.current_round, phase.value)
        self._emit(DebateEventKind.PHASE_CHANGED, debate, phase)

    def _start_round(self, debate: Debate) -> None:
        round_ = Round(number=debate.current_round + 1)
        debate.rounds.append(round_)
        self._deadlines[debate.debate_id] = self._clock() + self.round_timeout
        self._arm_timer(debate.debate_id, round_.number)
        self._emit(DebateEventKind.ROUND_STARTED, debate, round_)
        self._set_phase(debate, DebateStatus.PROPOSING)

    def _complete_round(self, debate: Debate) -> None:
        debate.round.ended_at = datetime.now()
        self._disarm(debate.debate_id)
        self._emit(DebateEventKind.ROUND_COMPLETED, debate, debate.round)

    def _next_round_or_escalate(self, debate: Debate, reason: str) -> None:
        if debate.current_round >= self.max_rounds:
            self._escalate(
                debate,
                f"Maximum {self.max_rounds} rounds reached without consensus ({reason})",
            )
        else:
            self._start_round(debate)

    def _escalate(self, debate: Debate, reason: str) -> None:
        if debate.round.ended_at is None:
            self._complete_round(debate)
        debate.escalation_reason = reason
        self._finish(debate, DebateStatus.ESCALATED)
        logger.warning("Debate %s escalated: %s", debate.debate_id, reason)
        self._emit(DebateEventKind.DEBATE_ESCALATED, debate, reason)

    def _finish(self, debate: Debate, status: DebateStatus) -> None:
        debate.status = status
        debate.ended_at = datetime.now()
        self._disarm(debate.debate_id)
        self._finished[debate.debate_id].set()

    def _resolution(
        self,
        debate: Debate,
        round_: Round,
        tally: dict[str, float],
        total: float,
        reason: str | None = None,
    ) -> DebateResolution:
        return DebateResolution(
            debate_id=debate.debate_id,
            round_number=round_.number,
            status=debate.status,
            winner=copy.deepcopy(debate.winner),
            tally=dict(tally),
            total_weight=total,
            reason=debate.escalation_reason or reason,
        )

    def _arm_timer(self, debate_id: str, round_number: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[debate_id] = loop.call_later(
            self.round_timeout, self._on_round_timeout, debate_id, round_number
        )

    def _disarm(self, debate_id: str) -> None:
        self._deadlines.pop(debate_id, None)
        timer = self._timers.pop(debate_id, None)
        if timer is not None:
            timer.cancel()

    def _on_round_timeout(self, debate_id: str, round_number: int) -> None:
        debate = self._debates.get(debate_id)
        if debate is None or debate.status.is_terminal or debate.current_round != round_number:
            return
        round_ = debate.round
        round_.timed_out = True
        logger.warning(
            "Round %d of debate %s timed out during %s",
            round_number, debate_id, debate.status.value,
        )
        self._complete_round(debate)
        self._next_round_or_escalate(debate, f"round {round_number} timed out")
