"""Shared behaviour for adapters backed by a CLI on ``PATH``."""

import shutil
from abc import abstractmethod

from convene.agents.protocol import AgentAdapter


class BaseAgent(AgentAdapter):
    """Adapter whose worker is a command-line program found on ``PATH``."""

    _executable_cache: str | None = None

    @property
    def executable(self) -> str:
        # Bare name when not on PATH
        if self._executable_cache is None:
            self._executable_cache = shutil.which(self.cli_name) or self.cli_name
        return self._executable_cache

    @property
    @abstractmethod
    def cli_name(self) -> str:
        """Command to look up on ``PATH`` (e.g. 'claude')."""
        ...

    def is_available(self) -> bool:
        return shutil.which(self.cli_name) is not None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} available={self.is_available()}>"
