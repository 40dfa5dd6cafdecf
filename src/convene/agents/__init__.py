"""Worker adapters and role prompts."""

from convene.agents.protocol import (
    AgentAdapter,
    AgentCapabilities,
    RecordKind,
    WorkerRecord,
)
from convene.agents.registry import AgentRegistry

__all__ = [
    "AgentAdapter",
    "AgentCapabilities",
    "AgentRegistry",
    "RecordKind",
    "WorkerRecord",
]
