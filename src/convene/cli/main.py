"""Main CLI entry point for convene."""

import asyncio
import logging
import uuid

import click

from convene.agents.registry import AgentRegistry
from convene.config.manager import ConfigManager
from convene.errors import ConveneError
from convene.execution.models import AgentInvocationRequest, SupervisorEventKind
from convene.execution.pipeline import PlanExecutor, StepStatus
from convene.execution.supervisor import ProcessSupervisor
from convene.orchestration.debate import DebateCoordinator
from convene.orchestration.debate_runner import DebateRunner, Participant
from convene.orchestration.models import DebateStatus
from convene.output.formatter import get_formatter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _task_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def _run_async(coro) -> None:
    """Run ``coro``; a False result or a library error exits with code 1."""
    formatter = get_formatter()
    try:
        ok = asyncio.run(coro)
    except ConveneError as e:
        formatter.print_error(str(e))
        raise SystemExit(1)
    if not ok:
        raise SystemExit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("--no-color", is_flag=True, help="Disable colors")
@click.version_option(package_name="convene")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, no_color: bool) -> None:
    """Convene - supervised agent workers, retries and debates.

    \b
    Examples:
        convene run "fix the failing test"           # One supervised worker
        convene plan "add a --json flag to export"   # Planner, coder, verifier
        convene debate "sql or document store?" -p claude -p claude:opus
        convene agent list                           # List agents
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color

    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format=LOG_FORMAT)
    get_formatter(color=not no_color, verbose=verbose)


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("-r", "--role", default="coder", show_default=True, help="Worker role")
@click.option("-m", "--model", help="Model to use")
@click.option("-t", "--timeout", type=float, help="Timeout in seconds per attempt")
@click.option("--cwd", "working_directory", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option("-a", "--agent", "agent_name", help="Agent adapter to use")
def run(
    prompt: tuple[str, ...],
    role: str,
    model: str | None,
    timeout: float | None,
    working_directory: str | None,
    agent_name: str | None,
) -> None:
    """Run one prompt through a supervised worker."""
    request = AgentInvocationRequest(
        task_id=_task_id("run"),
        role=role,
        prompt=" ".join(prompt),
        model=model,
        timeout=timeout,
        working_directory=working_directory,
        agent=agent_name,
    )
    _run_async(_run_invocation(request))


async def _run_invocation(request: AgentInvocationRequest) -> bool:
    config = ConfigManager.get_config()
    formatter = get_formatter()
    supervisor = ProcessSupervisor.from_config(config)

    streamed = False

    def on_output(event) -> None:
        nonlocal streamed
        streamed = True
        formatter.print_streaming(event.text)

    unsubscribe = supervisor.events.subscribe(SupervisorEventKind.OUTPUT, on_output)
    try:
        result = await supervisor.run(request)
    finally:
        unsubscribe()

    if result.success and streamed:
        formatter.console.print()
        if formatter.verbose:
            formatter.print_metadata(
                {"task": result.task_id, "attempts": result.attempts, "duration": f"{result.duration:.2f}s"}
            )
    else:
        formatter.print_result(result)

    formatter.print_tool_statistics(supervisor.tracker.statistics())
    return result.success


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("--cwd", "working_directory", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option("--stop-on-failure", is_flag=True, help="Stop at the first failed step")
def plan(prompt: tuple[str, ...], working_directory: str | None, stop_on_failure: bool) -> None:
    """Plan a task, then implement and verify each step."""
    _run_async(_run_plan(" ".join(prompt), working_directory, stop_on_failure))


async def _run_plan(prompt: str, working_directory: str | None, stop_on_failure: bool) -> bool:
    config = ConfigManager.get_config()
    formatter = get_formatter()
    supervisor = ProcessSupervisor.from_config(config)
    executor = PlanExecutor(
        supervisor,
        step_policy=config.retry.default.to_policy(),
        stop_on_failure=stop_on_failure,
    )

    formatter.print_role_header("planner", "Planning")
    result, agent_plan = await executor.create_plan(_task_id("plan"), prompt, working_directory)
    if not result.success:
        formatter.print_result(result)
        return False
    if agent_plan is None or not agent_plan.steps:
        formatter.print_error("Planner returned no steps")
        return False
    formatter.print_plan(agent_plan)

    executor.events.subscribe_all(
        lambda kind, event: logger.info("Step %s: %s", event.step.step_id, kind.value)
    )
    formatter.print_role_header("coder", "Executing")
    await executor.execute_plan(agent_plan, working_directory)
    formatter.print_plan(agent_plan)
    formatter.print_tool_statistics(supervisor.tracker.statistics())

    failed = [s for s in agent_plan.steps if s.status is StepStatus.FAILED]
    if failed:
        formatter.print_error(f"{len(failed)} of {len(agent_plan.steps)} steps failed")
        return False
    formatter.print_success(f"All {len(agent_plan.steps)} steps completed")
    return True


@cli.command()
@click.argument("topic", nargs=-1, required=True)
@click.option(
    "-p",
    "--participant",
    "participants",
    multiple=True,
    required=True,
    help="Participant as agent[:model]; repeat for each seat",
)
@click.option("--cwd", "working_directory", type=click.Path(exists=True, file_okay=False), help="Working directory")
def debate(topic: tuple[str, ...], participants: tuple[str, ...], working_directory: str | None) -> None:
    """Run a structured debate between agent workers."""
    _run_async(_run_debate(" ".join(topic), list(participants), working_directory))


async def _run_debate(topic: str, participants: list[str], working_directory: str | None) -> bool:
    config = ConfigManager.get_config()
    formatter = get_formatter()
    seats = [Participant.parse(p) for p in participants]
    supervisor = ProcessSupervisor.from_config(config)
    coordinator = DebateCoordinator.from_config(config.debate)
    coordinator.events.subscribe_all(
        lambda kind, event: logger.info("Debate %s: %s", event.debate_id, kind.value)
    )

    formatter.print_info(f"Debating with: {', '.join(s.agent_id for s in seats)}")
    result = await DebateRunner(supervisor, coordinator, working_directory).run(topic, seats)
    formatter.print_debate(result)
    return result.status is DebateStatus.RESOLVED


# --- Subcommands ---


@cli.group()
def agent() -> None:
    """Manage agent adapters."""
    pass


@agent.command("list")
@click.option("--all", "show_all", is_flag=True, help="Show unavailable agents too")
def agent_list(show_all: bool) -> None:
    """List registered agents."""
    AgentRegistry.initialize()
    formatter = get_formatter()

    if show_all:
        agents = [(a.name, a.display_name, a.is_available()) for a in AgentRegistry.get_all()]
    else:
        agents = [(a.name, a.display_name, True) for a in AgentRegistry.get_available()]

    if not agents:
        formatter.print_warning("No agents available")
        return

    formatter.print_agent_list(agents)


@cli.group()
def config() -> None:
    """Inspect configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current configuration."""
    formatter = get_formatter()
    try:
        data = ConfigManager.as_dict()
    except ConveneError as e:
        formatter.print_error(str(e))
        raise SystemExit(1)
    formatter.print_config(data)


@config.command("get")
@click.argument("key")
def config_get(key: str) -> None:
    """Show one configuration value by dotted path, e.g. debate.max_rounds."""
    formatter = get_formatter()
    try:
        value = ConfigManager.get_value(key)
    except ConveneError as e:
        formatter.print_error(str(e))
        raise SystemExit(1)
    if value is None:
        formatter.print_error(f"Unknown configuration key: {key}")
        raise SystemExit(1)
    if isinstance(value, dict):
        formatter.print_config(value)
    else:
        click.echo(value)


if __name__ == "__main__":
    cli()
