"""Tests for launch authorization."""
import pytest

from convene.errors import PermissionDeniedError
from convene.execution.models import AgentInvocationRequest
from convene.execution.policy import AllowlistLaunchPolicy, LaunchPolicy


def request(working_directory=None):
    return AgentInvocationRequest(
        task_id="t1", role="coder", prompt="p", working_directory=working_directory
    )


def test_default_policy_allows_everything():
    assert LaunchPolicy().authorize(request(), ["/anything"]) is None


def test_allowlist_by_basename():
    policy = AllowlistLaunchPolicy(["claude"])
    policy.authorize(request(), ["/usr/local/bin/claude", "--print"])


def test_allowlist_by_full_path():
    policy = AllowlistLaunchPolicy(["/opt/claude"])
    policy.authorize(request(), ["/opt/claude"])


def test_unknown_executable_denied():
    with pytest.raises(PermissionDeniedError):
        AllowlistLaunchPolicy(["claude"]).authorize(request(), ["/bin/sh", "-c", "rm"])


def test_empty_command_denied():
    with pytest.raises(PermissionDeniedError):
        AllowlistLaunchPolicy(["claude"]).authorize(request(), [])


def test_working_roots(tmp_path):
    inside = tmp_path / "repo" / "pkg"
    inside.mkdir(parents=True)
    policy = AllowlistLaunchPolicy(["claude"], working_roots=[str(tmp_path / "repo")])

    policy.authorize(request(str(inside)), ["claude"])
    with pytest.raises(PermissionDeniedError):
        policy.authorize(request(str(tmp_path)), ["claude"])
