"""Drive a debate with real agent workers.

Each phase asks every participant's worker for a JSON answer and feeds it
to the ``DebateCoordinator``. Workers that fail or answer with something
unusable simply sit that phase out; the coordinator's rules (eligibility,
thresholds, round limits, timeouts) decide the outcome.
"""
import asyncio
import json
import logging
from dataclasses import dataclass

from convene.errors import ConveneError, ValidationError
from convene.execution.models import AgentInvocationRequest
from convene.execution.pipeline import iter_json_objects
from convene.execution.supervisor import ProcessSupervisor
from convene.orchestration.debate import DebateCoordinator
from convene.orchestration.models import Debate, DebateStatus, Proposal, Round

logger = logging.getLogger(__name__)

DEBATER_ROLE = "debater"


@dataclass(frozen=True)
class Participant:
    """A debate seat backed by an agent adapter and optional model."""

    agent_id: str
    agent: str | None = None
    model: str | None = None

    @classmethod
    def parse(cls, value: str) -> "Participant":
        """Parse ``agent[:model]``; the whole string is the seat id."""
        agent, _, model = value.partition(":")
        if not agent:
            raise ValidationError(f"Invalid participant: {value!r}")
        return cls(agent_id=value, agent=agent, model=model or None)


def _proposals_json(proposals: list[Proposal]) -> str:
    return json.dumps(
        [
            {
                "proposal_id": p.proposal_id,
                "agent_id": p.agent_id,
                "solution": p.solution,
                "reasoning": p.reasoning,
            }
            for p in proposals
        ],
        indent=2,
    )


def _first_object(text: str) -> dict | None:
    return next(iter_json_objects(text), None)


class DebateRunner:
    """Runs one debate end to end through a ``ProcessSupervisor``."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        coordinator: DebateCoordinator,
        working_directory: str | None = None,
    ):
        self.supervisor = supervisor
        self.coordinator = coordinator
        self.working_directory = working_directory
        self._slots = asyncio.Semaphore(supervisor.max_per_group)

    async def run(self, topic: str, participants: list[Participant]) -> Debate:
        by_id = {p.agent_id: p for p in participants}
        debate_id = self.coordinator.start_debate(topic, list(by_id))

        steps = {
            DebateStatus.PROPOSING: self._propose,
            DebateStatus.CRITIQUING: self._critique,
            DebateStatus.DEFENDING: self._defend,
            DebateStatus.VOTING: self._vote,
        }
        while True:
            debate = self.coordinator.get_debate(debate_id)
            if debate.status.is_terminal:
                return debate
            number, phase = debate.current_round, debate.status
            await steps[phase](debate_id, number, topic, by_id)
            # A round timeout or auto-advance may already have moved on
            if self._in(debate_id, number, phase):
                self.coordinator.advance_phase(debate_id)

    def _in(self, debate_id: str, number: int, phase: DebateStatus) -> bool:
        debate = self.coordinator.get_debate(debate_id)
        return debate.current_round == number and debate.status is phase

    def _round(self, debate_id: str) -> Round:
        return self.coordinator.get_debate(debate_id).round

    async def _propose(self, debate_id, number, topic, by_id) -> None:
        prompt = (
            f"Debate topic:\n{topic}\n\n"
            "Propose your solution. Answer with JSON only:\n"
            '{"solution": "...", "reasoning": "...", "confidence": 0.0-1.0}'
        )
        answers = await self._ask_all(debate_id, number, "propose", by_id, lambda _: prompt)
        for agent_id, data in answers.items():
            confidence = data.get("confidence", 0.5)
            self._submit(
                self.coordinator.submit_proposal,
                debate_id,
                agent_id,
                str(data.get("solution", "")),
                str(data.get("reasoning", "")),
                confidence if isinstance(confidence, (int, float)) else 0.5,
            )

    async def _critique(self, debate_id, number, topic, by_id) -> None:
        proposals = self._round(debate_id).proposals

        def prompt_for(agent_id: str) -> str | None:
            others = [p for p in proposals if p.agent_id != agent_id]
            if not others:
                return None
            return (
                f"Debate topic:\n{topic}\n\nProposals from the other participants:\n"
                f"{_proposals_json(others)}\n\n"
                "Critique them. Use severity \"blocking\" only for problems that make a "
                "proposal unacceptable. Answer with JSON only:\n"
                '{"critiques": [{"proposal_id": "...", "severity": "minor|major|blocking", '
                '"criticism": "...", "suggested_fix": "..."}]}'
            )

        answers = await self._ask_all(debate_id, number, "critique", by_id, prompt_for)
        for agent_id, data in answers.items():
            critiques = data.get("critiques")
            if not isinstance(critiques, list):
                continue
            for item in critiques:
                if not isinstance(item, dict):
                    continue
                self._submit(
                    self.coordinator.submit_critique,
                    debate_id,
                    agent_id,
                    str(item.get("proposal_id", "")),
                    str(item.get("criticism", "")),
                    str(item.get("severity", "minor")).lower(),
                    str(item["suggested_fix"]) if item.get("suggested_fix") else None,
                )

    async def _defend(self, debate_id, number, topic, by_id) -> None:
        round_ = self._round(debate_id)

        def prompt_for(agent_id: str) -> str | None:
            own = next((p for p in round_.proposals if p.agent_id == agent_id), None)
            if own is None:
                return None
            critiques = [c for c in round_.critiques if c.proposal_id == own.proposal_id]
            if not critiques:
                return None
            listed = "\n".join(f"- [{c.severity.value}] {c.criticism}" for c in critiques)
            return (
                f"Debate topic:\n{topic}\n\nYour proposal:\n{own.solution}\n\n"
                f"Critiques of it:\n{listed}\n\n"
                "Defend it, or improve it to address the critiques. Answer with JSON only:\n"
                '{"defense": "...", "modified_solution": "... or null"}'
            )

        answers = await self._ask_all(debate_id, number, "defend", by_id, prompt_for)
        for agent_id, data in answers.items():
            modified = data.get("modified_solution")
            self._submit(
                self.coordinator.submit_defense,
                debate_id,
                agent_id,
                str(data.get("defense", "")),
                None,
                modified if isinstance(modified, str) and modified.strip() else None,
            )

    async def _vote(self, debate_id, number, topic, by_id) -> None:
        eligible = self._round(debate_id).eligible_proposals()
        prompt = (
            f"Debate topic:\n{topic}\n\nProposals you may vote for:\n"
            f"{_proposals_json(eligible)}\n\n"
            "Vote for the single best proposal. Answer with JSON only:\n"
            '{"proposal_id": "...", "justification": "..."}'
        )
        answers = await self._ask_all(debate_id, number, "vote", by_id, lambda _: prompt)
        for agent_id, data in answers.items():
            self._submit(
                self.coordinator.cast_vote,
                debate_id,
                agent_id,
                str(data.get("proposal_id", "")),
                1.0,
                str(data["justification"]) if data.get("justification") else None,
            )

    async def _ask_all(self, debate_id, number, phase, by_id, prompt_for) -> dict[str, dict]:
        prompts = {agent_id: prompt_for(agent_id) for agent_id in by_id}
        asked = [agent_id for agent_id, prompt in prompts.items() if prompt]
        replies = await asyncio.gather(
            *(
                self._ask(
                    by_id[agent_id],
                    prompts[agent_id],
                    task_id=f"{debate_id}-r{number}-{phase}-{index}",
                    group_id=debate_id,
                )
                for index, agent_id in enumerate(asked)
            )
        )
        return {agent_id: data for agent_id, data in zip(asked, replies) if data is not None}

    async def _ask(
        self, participant: Participant, prompt: str, task_id: str, group_id: str
    ) -> dict | None:
        request = AgentInvocationRequest(
            task_id=task_id,
            role=DEBATER_ROLE,
            prompt=prompt,
            model=participant.model,
            working_directory=self.working_directory,
            group_id=group_id,
            agent=participant.agent,
        )
        async with self._slots:
            try:
                result = await self.supervisor.run(request)
            except ConveneError as e:
                logger.warning("Participant %s could not run: %s", participant.agent_id, e)
                return None
        if not result.success:
            logger.warning("Participant %s failed: %s", participant.agent_id, result.error)
            return None
        data = _first_object(result.content)
        if data is None:
            logger.warning("Participant %s gave no JSON answer", participant.agent_id)
        return data

    def _submit(self, submit, debate_id: str, agent_id: str, *args) -> None:
        try:
            submit(debate_id, agent_id, *args)
        except ValidationError as e:
            logger.warning("Rejected submission from %s: %s", agent_id, e)
