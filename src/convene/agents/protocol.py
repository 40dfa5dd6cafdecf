"""Agent adapter protocol - interface for worker CLI backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RecordKind(Enum):
    """Kind of a decoded worker output line."""

    SYSTEM = "system"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    RESULT = "result"
    OTHER = "other"


@dataclass
class WorkerRecord:
    """One decoded line of worker output.

    ``text`` is the human-readable text carried by the record (assistant
    text blocks or the final result). ``blocks`` holds the raw assistant
    content blocks and ``tool_results`` the tool result payloads, both
    forwarded untouched to the tool tracker.
    """

    kind: RecordKind
    text: str = ""
    blocks: list[Any] = field(default_factory=list)
    tool_results: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentCapabilities:
    """Declares what an agent backend can do."""

    supports_streaming: bool = False
    supports_tools: bool = False
    supports_model_selection: bool = False
    task_strengths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "streaming": self.supports_streaming,
            "tools": self.supports_tools,
            "models": self.supports_model_selection,
            "strengths": self.task_strengths,
        }


class AgentAdapter(ABC):
    """Abstract base class for worker CLI adapters.

    An adapter knows how to launch one kind of worker and how to read what
    it prints. Implement this protocol and expose the class under the
    ``convene.agents`` entry point group to add a new backend.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this agent (e.g., 'claude')."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name (e.g., 'Claude Code')."""
        ...

    @property
    @abstractmethod
    def executable(self) -> str:
        """Path or name of the CLI executable."""
        ...

    @abstractmethod
    def get_capabilities(self) -> AgentCapabilities:
        """Return capabilities declaration for this agent."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the agent CLI is installed."""
        ...

    @abstractmethod
    def build_command(self, model: str | None = None) -> list[str]:
        """Build the argument vector for one worker process.

        The prompt is never part of the vector; it is written to stdin.

        Args:
            model: Optional model name.

        Returns:
            List of command arguments to execute (no shell involved).
        """
        ...

    @abstractmethod
    def decode_line(self, line: str) -> WorkerRecord | None:
        """Decode one line of worker stdout.

        Returns:
            The decoded record, or None for lines that carry nothing.

        Raises:
            ValueError: If the line is malformed.
        """
        ...
