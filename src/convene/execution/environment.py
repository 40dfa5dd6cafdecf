"""Worker process environment."""
import fnmatch
import os
from collections.abc import Iterable, Mapping

from convene.config.defaults import DEFAULT_ENV_ALLOWLIST, DEFAULT_ENV_OVERRIDES


def build_child_env(
    allowlist: Iterable[str] = DEFAULT_ENV_ALLOWLIST,
    overrides: Mapping[str, str] | None = None,
    parent: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Copy only allow-listed variables from ``parent`` (default ``os.environ``).

    Allow-list entries may be glob patterns (``LC_*``). ``overrides`` are
    applied after ``NO_COLOR=1``.
    """
    source = os.environ if parent is None else parent
    patterns = list(allowlist)
    env = {
        name: value
        for name, value in source.items()
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)
    }
    env.update(DEFAULT_ENV_OVERRIDES)
    if overrides:
        env.update(overrides)
    return env
