"""Registry of worker adapters, keyed by adapter name."""

import logging
from importlib.metadata import entry_points
from typing import Type

from convene.agents.protocol import AgentAdapter

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "convene.agents"


class AgentRegistry:
    """Process-wide lookup of ``AgentAdapter`` instances.

    Populated lazily on first use from the built-in Claude adapter and any
    classes published under the ``convene.agents`` entry point group. A
    later registration with the same name replaces the earlier one.
    """

    _adapters: dict[str, AgentAdapter] = {}
    _adapter_classes: dict[str, Type[AgentAdapter]] = {}
    _initialized: bool = False

    @classmethod
    def initialize(cls) -> None:
        if cls._initialized:
            return

        cls._adapters.clear()
        cls._adapter_classes.clear()
        cls._add(cls._builtin())
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                cls._add(ep.load())
            except Exception as e:
                logger.warning("Failed to load agent plugin %s: %s", ep.name, e)
        logger.debug("Registered agents: %s", ", ".join(cls._adapters))
        cls._initialized = True

    @staticmethod
    def _builtin() -> Type[AgentAdapter]:
        from convene.agents.claude import ClaudeAgent

        return ClaudeAgent

    @classmethod
    def _add(cls, adapter_class: Type[AgentAdapter]) -> None:
        adapter = adapter_class()
        cls._adapter_classes[adapter.name] = adapter_class
        cls._adapters[adapter.name] = adapter

    @classmethod
    def get(cls, name: str) -> AgentAdapter | None:
        """Adapter registered as ``name``, or None."""
        cls.initialize()
        return cls._adapters.get(name)

    @classmethod
    def get_available(cls) -> list[AgentAdapter]:
        """Adapters whose CLI is installed."""
        cls.initialize()
        return [a for a in cls._adapters.values() if a.is_available()]

    @classmethod
    def get_all(cls) -> list[AgentAdapter]:
        cls.initialize()
        return list(cls._adapters.values())

    @classmethod
    def get_names(cls) -> list[str]:
        cls.initialize()
        return list(cls._adapters)

    @classmethod
    def reload(cls) -> None:
        """Drop every registration and discover again."""
        cls._initialized = False
        cls.initialize()

    @classmethod
    def register(cls, adapter_class: Type[AgentAdapter]) -> None:
        """Register an adapter class by hand, e.g. from tests or embedding code."""
        cls.initialize()
        cls._add(adapter_class)
