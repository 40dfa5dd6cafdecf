"""Supervised execution of agent worker processes."""

from convene.execution.models import (
    AgentInvocationRequest,
    AgentInvocationResult,
    FailureKind,
    SanitizedError,
    SupervisorEventKind,
)
from convene.execution.policy import AllowlistLaunchPolicy, LaunchPolicy
from convene.execution.supervisor import ProcessSupervisor

__all__ = [
    "AgentInvocationRequest",
    "AgentInvocationResult",
    "AllowlistLaunchPolicy",
    "FailureKind",
    "LaunchPolicy",
    "ProcessSupervisor",
    "SanitizedError",
    "SupervisorEventKind",
]
