"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

from convene.agents.claude import decode_stream_json
from convene.agents.protocol import AgentAdapter, AgentCapabilities
from convene.agents.registry import AgentRegistry
from convene.config.manager import ConfigManager
from convene.execution.supervisor import ProcessSupervisor
from convene.output import formatter as formatter_module
from convene.retry.policy import BackoffKind, RetryPolicy

FAKE_WORKER = Path(__file__).parent / "fixtures" / "fake_worker.py"

# Retries without waiting
FAST_POLICY = RetryPolicy(
    max_attempts=3,
    backoff=BackoffKind.FIXED,
    base_delay=0.0,
    max_delay=0.0,
    jitter=False,
)


class FakeWorkerAgent(AgentAdapter):
    """Adapter that launches tests/fixtures/fake_worker.py in a given mode."""

    def __init__(self, mode: str = "ok", *args: str):
        self.mode = mode
        self.args = list(args)
        self.models: list[str | None] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def display_name(self) -> str:
        return "Fake Worker"

    @property
    def executable(self) -> str:
        return sys.executable

    def get_capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(supports_streaming=True, supports_tools=True)

    def is_available(self) -> bool:
        return True

    def build_command(self, model: str | None = None) -> list[str]:
        self.models.append(model)
        return [sys.executable, str(FAKE_WORKER), self.mode, *self.args]

    def decode_line(self, line: str):
        return decode_stream_json(line)


@pytest.fixture(autouse=True)
def reset_registry():
    """Reset the agent registry before each test."""
    AgentRegistry._initialized = False
    AgentRegistry._adapters.clear()
    AgentRegistry._adapter_classes.clear()
    yield


@pytest.fixture(autouse=True)
def reset_globals():
    """Drop the cached configuration and formatter between tests."""
    ConfigManager._config = None
    formatter_module.reset_formatter()
    yield
    ConfigManager._config = None
    formatter_module.reset_formatter()


@pytest.fixture
def fast_policy():
    return FAST_POLICY


@pytest.fixture
def make_supervisor():
    """Build a supervisor around a fake worker with short timeouts and no backoff."""

    def factory(mode: str = "ok", *args: str, **kwargs) -> ProcessSupervisor:
        options = {
            "role_policies": {},
            "default_policy": FAST_POLICY,
            "default_timeout": 10,
            "kill_grace": 0.5,
        }
        options.update(kwargs)
        return ProcessSupervisor(adapter=FakeWorkerAgent(mode, *args), **options)

    return factory


@pytest.fixture
def fake_agent_class():
    return FakeWorkerAgent
