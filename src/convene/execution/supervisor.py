"""Spawn, stream, time out and clean up agent worker processes."""
import asyncio
import contextlib
import dataclasses
import logging
import time
from datetime import datetime
from typing import Any

from convene.agents.prompts import build_prompt
from convene.agents.protocol import AgentAdapter, RecordKind
from convene.agents.registry import AgentRegistry
from convene.config.defaults import (
    DEFAULT_AGENT,
    DEFAULT_ENV_ALLOWLIST,
    DEFAULT_KILL_GRACE,
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_MAX_PER_GROUP,
    DEFAULT_MAX_PROCESSES,
    DEFAULT_MAX_STDERR_BYTES,
    DEFAULT_RETRYABLE_KINDS,
    DEFAULT_ROLE_MODELS,
    DEFAULT_ROLE_RETRY,
    DEFAULT_TIMEOUT,
)
from convene.errors import (
    CapacityExceededError,
    DuplicateOperationError,
    PermissionDeniedError,
    ResourceRejectedError,
    RetryCancelledError,
    ValidationError,
    WorkerFailedError,
)
from convene.events import EventEmitter
from convene.execution.environment import build_child_env
from convene.execution.models import (
    ActiveInvocation,
    AgentInvocationRequest,
    AgentInvocationResult,
    AttemptFailed,
    AttemptOutcome,
    FailureKind,
    InvocationOutput,
    InvocationStarted,
    InvocationStopped,
    SanitizedError,
    SupervisorEventKind,
)
from convene.execution.policy import AllowlistLaunchPolicy, LaunchPolicy
from convene.execution.sanitize import sanitize_error
from convene.retry.executor import RetryExecutor
from convene.retry.policy import DEFAULT_AGENT_POLICY, RetryPolicy
from convene.tracking.tracker import ToolActivityTracker

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
STDERR_DRAIN_TIMEOUT = 1.0


def default_role_policies() -> dict[str, RetryPolicy]:
    return {
        role: RetryPolicy(retryable=tuple(DEFAULT_RETRYABLE_KINDS), **settings)
        for role, settings in DEFAULT_ROLE_RETRY.items()
    }


@dataclasses.dataclass
class _Invocation:
    request: AgentInvocationRequest
    started_at: datetime
    attempt: int = 0
    process: asyncio.subprocess.Process | None = None
    stopped: bool = False
    unconfirmed: bool = False
    last_error: str | None = None


class ProcessSupervisor:
    """Runs agent invocations as supervised child processes.

    Each accepted request produces exactly one ``AgentInvocationResult``,
    also published as a FINISHED event. Attempts run under the retry
    engine with the policy registered for the request's role. Tool
    activity found in worker output is forwarded to ``self.tracker``.
    """

    def __init__(
        self,
        adapter: AgentAdapter | None = None,
        retry_executor: RetryExecutor | None = None,
        tracker: ToolActivityTracker | None = None,
        launch_policy: LaunchPolicy | None = None,
        role_policies: dict[str, RetryPolicy] | None = None,
        default_policy: RetryPolicy = DEFAULT_AGENT_POLICY,
        role_models: dict[str, str] | None = None,
        env_allowlist: list[str] | None = None,
        instructions: str | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        kill_grace: float = DEFAULT_KILL_GRACE,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        max_stderr_bytes: int = DEFAULT_MAX_STDERR_BYTES,
        max_processes: int = DEFAULT_MAX_PROCESSES,
        max_per_group: int = DEFAULT_MAX_PER_GROUP,
    ):
        if max_processes < 1 or max_per_group < 1:
            raise ValueError("process ceilings must be >= 1")
        if default_timeout <= 0 or kill_grace <= 0:
            raise ValueError("timeouts must be greater than zero")
        self.adapter = adapter
        self.retry = retry_executor or RetryExecutor()
        self.tracker = tracker or ToolActivityTracker()
        self.launch_policy = launch_policy or LaunchPolicy()
        self.role_policies = default_role_policies() if role_policies is None else role_policies
        self.default_policy = default_policy
        self.role_models = dict(DEFAULT_ROLE_MODELS if role_models is None else role_models)
        self.env_allowlist = list(DEFAULT_ENV_ALLOWLIST if env_allowlist is None else env_allowlist)
        self.instructions = instructions
        self.default_timeout = default_timeout
        self.kill_grace = kill_grace
        self.max_output_bytes = max_output_bytes
        self.max_stderr_bytes = max_stderr_bytes
        self.max_processes = max_processes
        self.max_per_group = max_per_group
        self.events: EventEmitter[SupervisorEventKind] = EventEmitter(SupervisorEventKind)
        self._active: dict[str, _Invocation] = {}
        self._watchers: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: Any, adapter: AgentAdapter | None = None) -> "ProcessSupervisor":
        """Build from a root ``ConveneConfig``."""
        sup = config.supervisor
        retry = config.retry
        launch_policy = None
        if sup.allowed_executables is not None:
            launch_policy = AllowlistLaunchPolicy(sup.allowed_executables, sup.working_roots)
        return cls(
            adapter=adapter or AgentRegistry.get(config.global_.default_agent),
            retry_executor=RetryExecutor.from_config(retry),
            tracker=ToolActivityTracker.from_config(config.tracker),
            launch_policy=launch_policy,
            role_policies={role: p.to_policy() for role, p in retry.roles.items()},
            default_policy=retry.default.to_policy(),
            role_models=sup.role_models,
            env_allowlist=sup.env_allowlist,
            instructions=sup.instructions,
            default_timeout=sup.default_timeout,
            kill_grace=sup.kill_grace,
            max_output_bytes=sup.max_output_bytes,
            max_stderr_bytes=sup.max_stderr_bytes,
            max_processes=sup.max_processes,
            max_per_group=sup.max_per_group,
        )

    @property
    def retry_events(self) -> EventEmitter:
        return self.retry.events

    def policy_for(self, role: str) -> RetryPolicy:
        return self.role_policies.get(role, self.default_policy)

    async def run(self, request: AgentInvocationRequest) -> AgentInvocationResult:
        """Run ``request`` to completion, retrying failed attempts per role policy.

        Raises:
            ValidationError: Bad request or unknown agent.
            DuplicateOperationError: ``task_id`` is already active.
            CapacityExceededError: A process ceiling is reached.
        """
        self._validate(request)
        if request.task_id in self._active:
            raise DuplicateOperationError(f"Task {request.task_id} is already running")
        self._check_capacity(request)
        adapter = self._adapter_for(request)

        inv = _Invocation(request=request, started_at=datetime.now())
        self._active[request.task_id] = inv
        started = time.monotonic()

        async def attempt() -> AgentInvocationResult:
            inv.attempt += 1
            outcome = await self._run_attempt(inv, adapter)
            result = self._to_result(inv, outcome, started)
            if not result.success:
                inv.last_error = result.error.message
                self.events.emit(
                    SupervisorEventKind.ATTEMPT_FAILED,
                    AttemptFailed(task_id=request.task_id, attempt=inv.attempt, error=result.error),
                )
                error = WorkerFailedError(result.error, result)
                if inv.unconfirmed:
                    error.retryable = False
                raise error
            return result

        try:
            result = await self.retry.execute_with_retry(
                attempt, self.policy_for(request.role), operation_id=request.task_id
            )
        except WorkerFailedError as e:
            result = e.result
        except RetryCancelledError:
            result = self._failed(inv, FailureKind.CANCELLED, "invocation was stopped", started)
        except ResourceRejectedError as e:
            result = self._failed(inv, FailureKind.REJECTED, str(e), started)
        except Exception as e:
            logger.error("Task %s failed unexpectedly (%s)", request.task_id, type(e).__name__)
            logger.debug("Unexpected failure of task %s", request.task_id, exc_info=True)
            error = sanitize_error(
                FailureKind.WORKER_ERROR, f"{type(e).__name__}: {e}", request.working_directory
            )
            result = self._failed(inv, error.kind, error.message, started)
        finally:
            if inv.unconfirmed:
                self._watch_unconfirmed(inv)
            else:
                self._active.pop(request.task_id, None)

        result = dataclasses.replace(
            result, attempts=inv.attempt, duration=time.monotonic() - started
        )
        logger.info(
            "Task %s (%s) finished: success=%s attempts=%d",
            request.task_id, request.role, result.success, result.attempts,
        )
        self.events.emit(SupervisorEventKind.FINISHED, result)
        return result

    async def stop(self, task_id: str) -> bool:
        """Stop a running invocation. False for unknown or already-stopped tasks."""
        inv = self._active.get(task_id)
        if inv is None or inv.stopped:
            return False
        inv.stopped = True
        self.retry.cancel(task_id)
        confirmed = True
        if inv.process is not None:
            confirmed = await self._terminate(inv.process)
        logger.info("Stopped task %s", task_id)
        self.events.emit(
            SupervisorEventKind.STOPPED, InvocationStopped(task_id=task_id, confirmed=confirmed)
        )
        return True

    async def stop_all(self) -> int:
        stopped = 0
        for task_id in list(self._active):
            if await self.stop(task_id):
                stopped += 1
        return stopped

    def active_invocations(self) -> list[ActiveInvocation]:
        return [
            ActiveInvocation(
                task_id=task_id,
                role=inv.request.role,
                group_id=inv.request.group,
                attempt=inv.attempt,
                pid=inv.process.pid if inv.process else None,
                started_at=inv.started_at,
            )
            for task_id, inv in self._active.items()
        ]

    def _watch_unconfirmed(self, inv: _Invocation) -> None:
        """Keep the entry of a worker whose exit was not confirmed until it is reaped."""
        logger.error(
            "Task %s keeps its slot until worker %s exits",
            inv.request.task_id, inv.process.pid,
        )
        watcher = asyncio.create_task(self._reap(inv))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _reap(self, inv: _Invocation) -> None:
        await inv.process.wait()
        logger.info("Worker %s of task %s exited late", inv.process.pid, inv.request.task_id)
        inv.process = None
        self._active.pop(inv.request.task_id, None)

    def _validate(self, request: AgentInvocationRequest) -> None:
        if not request.task_id:
            raise ValidationError("task_id is required")
        if not request.role:
            raise ValidationError("role is required")
        if not isinstance(request.prompt, str) or not request.prompt.strip():
            raise ValidationError("prompt must be a non-empty string")
        if request.timeout is not None and request.timeout <= 0:
            raise ValidationError("timeout must be greater than zero")

    def _check_capacity(self, request: AgentInvocationRequest) -> None:
        if len(self._active) >= self.max_processes:
            raise CapacityExceededError(
                f"{len(self._active)} worker processes already running (max {self.max_processes})"
            )
        in_group = sum(1 for inv in self._active.values() if inv.request.group == request.group)
        if in_group >= self.max_per_group:
            raise CapacityExceededError(
                f"Task group {request.group} already has {in_group} workers (max {self.max_per_group})"
            )

    def _adapter_for(self, request: AgentInvocationRequest) -> AgentAdapter:
        if request.agent:
            adapter = AgentRegistry.get(request.agent)
            if adapter is None:
                raise ValidationError(f"Unknown agent: {request.agent}")
            return adapter
        adapter = self.adapter or AgentRegistry.get(DEFAULT_AGENT)
        if adapter is None:
            raise ValidationError("No agent adapter configured")
        return adapter

    async def _run_attempt(self, inv: _Invocation, adapter: AgentAdapter) -> AttemptOutcome:
        request = inv.request
        outcome = AttemptOutcome()
        argv = adapter.build_command(model=request.model or self.role_models.get(request.role))

        try:
            self.launch_policy.authorize(request, argv)
        except PermissionDeniedError as e:
            outcome.failure = FailureKind.PERMISSION_DENIED
            outcome.detail = str(e)
            return outcome

        prompt = build_prompt(
            request.role,
            request.prompt,
            context=request.context,
            instructions=self.instructions,
            retry_context=inv.last_error,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=request.working_directory,
                env=build_child_env(self.env_allowlist),
            )
        except OSError as e:
            outcome.failure = FailureKind.SPAWN_FAILED
            outcome.detail = f"could not start {argv[0]}: {e}"
            return outcome

        inv.process = process
        logger.debug("Started %s for task %s (pid %s)", argv[0], request.task_id, process.pid)
        self.events.emit(
            SupervisorEventKind.STARTED,
            InvocationStarted(
                task_id=request.task_id, role=request.role, attempt=inv.attempt, pid=process.pid
            ),
        )

        stderr_tail = bytearray()
        writer = asyncio.create_task(self._feed_stdin(process, prompt.encode("utf-8")))
        drainer = asyncio.create_task(self._drain_stderr(process, stderr_tail))
        timeout = request.timeout or self.default_timeout
        try:
            if inv.stopped:
                await self._terminate(process)
            else:
                try:
                    await asyncio.wait_for(
                        self._consume_stdout(process, adapter, inv, outcome), timeout=timeout
                    )
                except asyncio.TimeoutError:
                    if outcome.failure is None:
                        outcome.failure = FailureKind.TIMEOUT
                        outcome.detail = f"worker timed out after {timeout:g}s"
        finally:
            if process.returncode is None and not await self._terminate(process):
                inv.unconfirmed = True
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            try:
                await asyncio.wait_for(drainer, timeout=STDERR_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug("stderr of task %s still open after exit", request.task_id)
            abandoned = self.tracker.abandon(request.task_id)
            if abandoned:
                logger.debug("Closed %d unfinished tool calls of task %s", abandoned, request.task_id)
            if not inv.unconfirmed:
                inv.process = None

        outcome.stderr_tail = stderr_tail.decode("utf-8", errors="replace")
        self._classify(inv, process, outcome)
        if inv.unconfirmed:
            outcome.detail = (
                f"{outcome.detail}; worker process {process.pid} could not be confirmed terminated"
            )
        return outcome

    async def _consume_stdout(
        self,
        process: asyncio.subprocess.Process,
        adapter: AgentAdapter,
        inv: _Invocation,
        outcome: AttemptOutcome,
    ) -> None:
        total = 0
        pending = b""
        while True:
            chunk = await process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_output_bytes:
                outcome.failure = FailureKind.BUFFER_EXCEEDED
                outcome.detail = f"worker output exceeded {self.max_output_bytes} bytes"
                logger.warning("Task %s exceeded the output cap, terminating", inv.request.task_id)
                await self._terminate(process)
                return
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                self._handle_line(line, adapter, inv, outcome)
        if pending:
            self._handle_line(pending, adapter, inv, outcome)
        await process.wait()

    def _handle_line(
        self, raw: bytes, adapter: AgentAdapter, inv: _Invocation, outcome: AttemptOutcome
    ) -> None:
        task_id = inv.request.task_id
        try:
            record = adapter.decode_line(raw.decode("utf-8", errors="replace"))
        except Exception as e:
            logger.warning("Skipping malformed output line from task %s: %s", task_id, e)
            return
        if record is None:
            return

        if record.kind is RecordKind.ASSISTANT:
            if record.text:
                outcome.text_parts.append(record.text)
                self.events.emit(
                    SupervisorEventKind.OUTPUT, InvocationOutput(task_id=task_id, text=record.text)
                )
            if record.blocks:
                self.tracker.on_assistant_content(record.blocks, task_id=task_id)
        elif record.kind is RecordKind.TOOL_RESULT:
            for tool_result in record.tool_results:
                self.tracker.on_tool_result(tool_result)
        elif record.kind is RecordKind.RESULT:
            outcome.result_text = record.text
            outcome.result_is_error = record.is_error

    def _classify(
        self, inv: _Invocation, process: asyncio.subprocess.Process, outcome: AttemptOutcome
    ) -> None:
        code = process.returncode
        if code is not None and code < 0:
            outcome.exit_signal = -code
        else:
            outcome.exit_code = code

        if inv.stopped:
            outcome.failure = FailureKind.CANCELLED
            outcome.detail = "invocation was stopped"
        elif outcome.failure is not None:
            return
        elif outcome.exit_signal is not None:
            outcome.failure = FailureKind.SIGNAL
            outcome.detail = f"worker killed by signal {outcome.exit_signal}\n{outcome.stderr_tail}"
        elif code:
            outcome.failure = FailureKind.EXIT_NONZERO
            outcome.detail = outcome.stderr_tail or f"worker exited with code {code}"
        elif outcome.result_is_error:
            outcome.failure = FailureKind.WORKER_ERROR
            outcome.detail = outcome.result_text or "worker reported an error"

    def _to_result(
        self, inv: _Invocation, outcome: AttemptOutcome, started: float
    ) -> AgentInvocationResult:
        error = None
        if outcome.failure is not None:
            error = sanitize_error(
                outcome.failure, outcome.detail, inv.request.working_directory
            )
        return AgentInvocationResult(
            task_id=inv.request.task_id,
            role=inv.request.role,
            success=error is None,
            content=outcome.content,
            error=error,
            exit_code=outcome.exit_code,
            exit_signal=outcome.exit_signal,
            attempts=inv.attempt,
            duration=time.monotonic() - started,
        )

    def _failed(
        self, inv: _Invocation, kind: FailureKind, message: str, started: float
    ) -> AgentInvocationResult:
        return AgentInvocationResult(
            task_id=inv.request.task_id,
            role=inv.request.role,
            success=False,
            error=SanitizedError(kind=kind, message=message),
            attempts=inv.attempt,
            duration=time.monotonic() - started,
        )

    async def _feed_stdin(self, process: asyncio.subprocess.Process, data: bytes) -> None:
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Worker %s closed stdin early: %s", process.pid, e)
        finally:
            process.stdin.close()

    async def _drain_stderr(self, process: asyncio.subprocess.Process, tail: bytearray) -> None:
        while True:
            chunk = await process.stderr.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            tail.extend(chunk)
            if len(tail) > self.max_stderr_bytes:
                del tail[: len(tail) - self.max_stderr_bytes]

    async def _terminate(self, process: asyncio.subprocess.Process) -> bool:
        """SIGTERM, wait ``kill_grace``, SIGKILL. True once the exit is confirmed."""
        if process.returncode is not None:
            return True
        try:
            process.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace)
            return True
        except asyncio.TimeoutError:
            logger.warning("Worker %s ignored SIGTERM, killing", process.pid)

        try:
            process.kill()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            logger.error("Worker %s could not be confirmed terminated", process.pid)
            return False
        return process.returncode is not None
