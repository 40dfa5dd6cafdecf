"""Launch authorization consulted before every worker spawn."""
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from convene.errors import PermissionDeniedError
from convene.execution.models import AgentInvocationRequest

logger = logging.getLogger(__name__)


class LaunchPolicy:
    """Allows every launch. Subclass and override ``authorize`` to gate spawns."""

    def authorize(self, request: AgentInvocationRequest, argv: list[str]) -> None:
        """Raise ``PermissionDeniedError`` to refuse the launch."""
        return None


class AllowlistLaunchPolicy(LaunchPolicy):
    """Only launches known executables inside known working directories."""

    def __init__(
        self,
        executables: Iterable[str],
        working_roots: Iterable[str] | None = None,
    ):
        self.executables = frozenset(executables)
        self.working_roots = (
            [Path(root).resolve() for root in working_roots] if working_roots else None
        )

    def authorize(self, request: AgentInvocationRequest, argv: list[str]) -> None:
        if not argv:
            raise PermissionDeniedError("empty command")
        executable = argv[0]
        if executable not in self.executables and os.path.basename(executable) not in self.executables:
            logger.warning("Denied launch of %s for task %s", executable, request.task_id)
            raise PermissionDeniedError(f"executable {os.path.basename(executable)!r} is not allowed")

        if self.working_roots is None:
            return
        cwd = Path(request.working_directory or os.getcwd()).resolve()
        if not any(cwd == root or root in cwd.parents for root in self.working_roots):
            logger.warning("Denied launch in %s for task %s", cwd, request.task_id)
            raise PermissionDeniedError("working directory is outside the allowed roots")
