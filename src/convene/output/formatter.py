"""Output formatting using Rich for terminal output."""

import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from convene.execution.models import AgentInvocationResult
from convene.execution.pipeline import AgentPlan, StepStatus
from convene.orchestration.models import Debate, DebateStatus
from convene.tracking.models import ToolStatistics

CONVENE_THEME = Theme(
    {
        "role.planner": "magenta",
        "role.coder": "green",
        "role.verifier": "cyan",
        "role.default": "blue",
        "success": "green",
        "error": "red bold",
        "warning": "yellow",
        "info": "blue",
        "metadata": "dim",
    }
)

STEP_STYLES = {
    StepStatus.PENDING: "metadata",
    StepStatus.IN_PROGRESS: "info",
    StepStatus.COMPLETED: "success",
    StepStatus.FAILED: "error",
}


class OutputFormatter:
    """Handles all output formatting for convene."""

    def __init__(self, color: bool = True, verbose: bool = False) -> None:
        self.console = Console(
            theme=CONVENE_THEME,
            force_terminal=True if color else None,
            no_color=not color,
            highlight=color,
        )
        self.color = color
        self.verbose = verbose

    def print_result(self, result: AgentInvocationResult, show_metadata: bool = False) -> None:
        """Print an invocation result."""
        if not result.success:
            message = str(result.error) if result.error else "Unknown error"
            self.print_error(message, result.task_id)
        elif self._looks_like_markdown(result.content):
            self.console.print(Markdown(result.content))
        else:
            self.console.print(result.content, markup=False)

        if show_metadata or self.verbose:
            self.print_metadata(
                {
                    "task": result.task_id,
                    "role": result.role,
                    "attempts": result.attempts,
                    "duration": f"{result.duration:.2f}s",
                    "exit_code": result.exit_code,
                }
            )

    def print_error(self, message: str, task_id: str | None = None) -> None:
        """Print an error message."""
        prefix = f"[{task_id}] " if task_id else ""
        self.console.print(f"[error]{escape(prefix)}Error:[/error] {escape(message)}", highlight=False)

    def print_success(self, message: str) -> None:
        self.console.print(f"[success]{escape(message)}[/success]")

    def print_info(self, message: str) -> None:
        self.console.print(f"[info]{escape(message)}[/info]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[warning]{escape(message)}[/warning]")

    def print_role_header(self, role: str, title: str) -> None:
        """Print a header in front of one worker's output."""
        style = f"role.{role}" if role in ("planner", "coder", "verifier") else "role.default"
        self.console.print(f"\n[{style}]━━━ {title} ━━━[/{style}]")

    def print_streaming(self, chunk: str) -> None:
        """Print a streaming chunk without newline."""
        self.console.print(chunk, end="", markup=False, highlight=False)

    def print_tool_statistics(self, stats: ToolStatistics) -> None:
        """Print tool activity collected during a run."""
        if stats.total_invocations == 0:
            return
        table = Table(title="Tool Activity")
        table.add_column("Tool", style="cyan")
        table.add_column("Calls", justify="right")
        for name, count in stats.top_tools:
            table.add_row(name, str(count))
        self.console.print(table)
        self.print_metadata(
            {
                "total": stats.total_invocations,
                "succeeded": stats.success_count,
                "failed": stats.error_count,
                "avg": f"{stats.average_duration:.2f}s",
            }
        )

    def print_agent_list(self, agents: list[tuple[str, str, bool]]) -> None:
        """Print list of agents.

        Args:
            agents: List of (name, display_name, is_available) tuples.
        """
        table = Table(title="Registered Agents")
        table.add_column("Name", style="cyan")
        table.add_column("Display Name")
        table.add_column("Status", justify="center")

        for name, display_name, is_available in agents:
            status = "[success]available[/success]" if is_available else "[error]unavailable[/error]"
            table.add_row(name, display_name, status)

        self.console.print(table)

    def print_plan(self, plan: AgentPlan) -> None:
        """Print the steps of a plan with their current status."""
        table = Table(title=f"Plan {plan.task_id}")
        table.add_column("#", justify="right")
        table.add_column("Action", style="cyan")
        table.add_column("Files")
        table.add_column("Status", justify="center")
        for step in plan.steps:
            style = STEP_STYLES[step.status]
            table.add_row(
                str(step.step_id),
                step.action,
                ", ".join(step.files),
                f"[{style}]{step.status.value}[/{style}]",
            )
        self.console.print(table)

    def print_debate(self, debate: Debate) -> None:
        """Print the outcome of a debate: the last tally and winner or escalation."""
        if debate.rounds:
            last = debate.rounds[-1]
            agents = {p.proposal_id: p.agent_id for p in last.proposals}
            table = Table(title=f"Round {last.number} votes")
            table.add_column("Proposal", style="cyan")
            table.add_column("Author")
            table.add_column("Weight", justify="right")
            table.add_column("Eligible", justify="center")
            for proposal_id, weight in last.tally().items():
                table.add_row(
                    proposal_id,
                    agents.get(proposal_id, "?"),
                    f"{weight:.2f}",
                    "yes" if last.is_eligible(proposal_id) else "[warning]no[/warning]",
                )
            self.console.print(table)

        if debate.status is DebateStatus.RESOLVED and debate.winner is not None:
            winner = debate.winner
            body = winner.solution
            self.console.print(
                Panel(
                    Markdown(body) if self._looks_like_markdown(body) else Text(body),
                    title=f"[success]Consensus: {winner.agent_id}[/success]",
                    border_style="success",
                )
            )
        elif debate.status is DebateStatus.ESCALATED:
            self.print_warning(f"Escalated: {debate.escalation_reason}")
        else:
            self.print_info(f"Debate {debate.debate_id} is {debate.status.value}")

        self.print_metadata({"debate": debate.debate_id, "rounds": debate.current_round})

    def print_config(self, data: dict[str, Any]) -> None:
        self.console.print_json(json.dumps(data, indent=2))

    def print_metadata(self, metadata: dict[str, Any]) -> None:
        """Print metadata in a dimmed style."""
        parts = [f"{k}={v}" for k, v in metadata.items() if v is not None]
        self.console.print(f"[metadata]({', '.join(parts)})[/metadata]")

    def _looks_like_markdown(self, text: str) -> bool:
        """Check if text appears to be markdown."""
        markdown_indicators = ["```", "##", "**", "- ", "1. ", "> ", "| "]
        return any(indicator in text for indicator in markdown_indicators)


# Global formatter instance
_formatter: OutputFormatter | None = None


def get_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Get or create the global formatter instance."""
    global _formatter
    if _formatter is None:
        _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter


def reset_formatter() -> None:
    """Drop the global formatter so the next call builds a fresh one."""
    global _formatter
    _formatter = None
