"""Plan, code and verify: run a planner's steps through coder and verifier workers."""
import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from convene.errors import ConveneError, StepVerificationError, WorkerFailedError
from convene.events import EventEmitter
from convene.execution.models import (
    AgentInvocationRequest,
    AgentInvocationResult,
    FailureKind,
    SanitizedError,
)
from convene.execution.supervisor import ProcessSupervisor
from convene.retry.executor import RetryExecutor
from convene.retry.policy import DEFAULT_AGENT_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

MAX_ERROR_CONTEXT = 500


class StepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PlanStep:
    step_id: int
    action: str
    description: str
    files: list[str] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING


@dataclass
class AgentPlan:
    task_id: str
    steps: list[PlanStep]
    created_at: datetime = field(default_factory=datetime.now)


class PipelineEventKind(Enum):
    """Events published by ``PlanExecutor``; every payload is a ``StepEvent``."""

    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"


@dataclass(frozen=True)
class StepEvent:
    task_id: str
    step: PlanStep
    error: str | None = None


def iter_json_objects(text: str):
    """Yield every top-level JSON object embedded in ``text``, in order."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, end = decoder.raw_decode(text, index)
        except ValueError:
            index = text.find("{", index + 1)
            continue
        if isinstance(value, dict):
            yield value
        index = text.find("{", end)


def parse_plan(task_id: str, text: str) -> AgentPlan | None:
    """Build a plan from the first JSON object with a ``steps`` list."""
    for data in iter_json_objects(text):
        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list):
            continue
        steps = []
        for position, raw in enumerate(raw_steps, start=1):
            if not isinstance(raw, dict):
                continue
            step_id = raw.get("id")
            files = raw.get("files")
            steps.append(
                PlanStep(
                    step_id=step_id if isinstance(step_id, int) else position,
                    action=str(raw.get("action", "")),
                    description=str(raw.get("description", "")),
                    files=[str(f) for f in files] if isinstance(files, list) else [],
                )
            )
        return AgentPlan(task_id=task_id, steps=steps)
    return None


def parse_verification(text: str) -> dict[str, Any] | None:
    """The verifier's report: the first JSON object carrying a ``verdict``."""
    for data in iter_json_objects(text):
        if "verdict" in data:
            return data
    return None


def _failure_summary(report: dict[str, Any] | None) -> str:
    if report is None:
        return "verifier returned no verdict"
    verdict = str(report.get("verdict", "")).upper() or "missing"
    errors = report.get("errors")
    details = []
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict):
                details.append(str(item.get("fix") or item.get("error") or ""))
            else:
                details.append(str(item))
    summary = f"verifier verdict {verdict}"
    details = [d for d in details if d]
    if details:
        summary += ": " + "; ".join(details)
    return summary[:MAX_ERROR_CONTEXT]


class PlanExecutor:
    """Runs a planner, then each plan step as coder + verifier.

    A step is retried as a whole under ``step_policy`` and the previous
    attempt's failure is put in front of the next coder prompt. A failed
    step does not stop later steps unless ``stop_on_failure`` is set.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        retry_executor: RetryExecutor | None = None,
        step_policy: RetryPolicy = DEFAULT_AGENT_POLICY,
        stop_on_failure: bool = False,
    ):
        self.supervisor = supervisor
        self.retry = retry_executor or RetryExecutor()
        self.step_policy = step_policy
        self.stop_on_failure = stop_on_failure
        self.events: EventEmitter[PipelineEventKind] = EventEmitter(PipelineEventKind)

    async def create_plan(
        self,
        task_id: str,
        prompt: str,
        working_directory: str | None = None,
        context: str | None = None,
    ) -> tuple[AgentInvocationResult, AgentPlan | None]:
        result = await self.supervisor.run(
            AgentInvocationRequest(
                task_id=f"{task_id}-plan",
                role="planner",
                prompt=prompt,
                working_directory=working_directory,
                group_id=task_id,
                context=context,
            )
        )
        if not result.success:
            return result, None
        plan = parse_plan(task_id, result.content)
        if plan is None:
            logger.warning("Planner output for %s contained no plan", task_id)
        return result, plan

    async def execute_plan(
        self, plan: AgentPlan, working_directory: str | None = None
    ) -> list[AgentInvocationResult]:
        """Run every step; returns coder and verifier results in order."""
        results: list[AgentInvocationResult] = []
        for step in plan.steps:
            ok = await self._execute_step(plan, step, working_directory, results)
            if not ok and self.stop_on_failure:
                break
        return results

    async def _execute_step(
        self,
        plan: AgentPlan,
        step: PlanStep,
        working_directory: str | None,
        results: list[AgentInvocationResult],
    ) -> bool:
        step.status = StepStatus.IN_PROGRESS
        self.events.emit(
            PipelineEventKind.STEP_STARTED, StepEvent(plan.task_id, copy.deepcopy(step))
        )
        last_error: str | None = None
        last_result: AgentInvocationResult | None = None

        async def attempt() -> tuple[AgentInvocationResult, AgentInvocationResult]:
            nonlocal last_error, last_result
            coder_prompt = f"Implement step {step.step_id}: {step.action}\n\nDescription: {step.description}"
            if step.files:
                coder_prompt += "\n\nFiles: " + ", ".join(step.files)
            if last_error:
                coder_prompt = f"FIX THIS ERROR: {last_error}\n\n{coder_prompt}"

            coder = await self.supervisor.run(
                AgentInvocationRequest(
                    task_id=f"{plan.task_id}-step-{step.step_id}",
                    role="coder",
                    prompt=coder_prompt,
                    working_directory=working_directory,
                    group_id=plan.task_id,
                )
            )
            last_result = coder
            if not coder.success:
                last_error = coder.error.message
                raise WorkerFailedError(coder.error, coder)

            verifier = await self.supervisor.run(
                AgentInvocationRequest(
                    task_id=f"{plan.task_id}-verify-{step.step_id}",
                    role="verifier",
                    prompt=(
                        f"Review the implementation of step {step.step_id}: {step.action}"
                        f"\n\nCoder output:\n{coder.content}"
                    ),
                    working_directory=working_directory,
                    group_id=plan.task_id,
                )
            )
            last_result = verifier
            if not verifier.success:
                last_error = verifier.error.message
                raise WorkerFailedError(verifier.error, verifier)

            report = parse_verification(verifier.content)
            if report is None or str(report.get("verdict", "")).upper() != "PASS":
                last_error = _failure_summary(report)
                raise StepVerificationError(last_error)
            return coder, verifier

        try:
            coder, verifier = await self.retry.execute_with_retry(
                attempt, self.step_policy, operation_id=f"{plan.task_id}-step-{step.step_id}"
            )
        except ConveneError as e:
            step.status = StepStatus.FAILED
            message = str(e)
            if isinstance(last_result, AgentInvocationResult) and not last_result.success:
                results.append(last_result)
            else:
                results.append(
                    AgentInvocationResult(
                        task_id=f"{plan.task_id}-step-{step.step_id}",
                        role="verifier" if isinstance(e, StepVerificationError) else "coder",
                        success=False,
                        content=last_result.content if last_result else "",
                        error=SanitizedError(kind=FailureKind.WORKER_ERROR, message=message),
                    )
                )
            logger.warning("Step %s of %s failed: %s", step.step_id, plan.task_id, message)
            self.events.emit(
                PipelineEventKind.STEP_FAILED,
                StepEvent(plan.task_id, copy.deepcopy(step), error=message),
            )
            return False

        results.extend([coder, verifier])
        step.status = StepStatus.COMPLETED
        self.events.emit(
            PipelineEventKind.STEP_COMPLETED, StepEvent(plan.task_id, copy.deepcopy(step))
        )
        return True
