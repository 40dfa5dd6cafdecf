# tests/unit/config/test_schema.py
"""Tests for configuration schema."""
import pytest
from pydantic import ValidationError

from convene.config.schema import (
    ConveneConfig,
    DebateConfig,
    RetryPolicyConfig,
    SupervisorConfig,
)
from convene.retry.policy import BackoffKind


def test_convene_config_defaults():
    """Test ConveneConfig has every section with its defaults."""
    config = ConveneConfig.default()

    assert config.global_.default_agent == "claude"
    assert config.debate.max_rounds == 3
    assert config.debate.consensus_threshold == pytest.approx(2 / 3)
    assert config.supervisor.max_per_group == 5
    assert config.retry.circuit_breaker.min_samples == 5
    assert config.tracker.history_size == 1000


def test_role_retry_defaults():
    """Test each built-in role gets its own retry policy."""
    roles = ConveneConfig().retry.roles

    assert roles["planner"].backoff is BackoffKind.EXPONENTIAL
    assert roles["coder"].max_attempts == 2
    assert roles["verifier"].backoff is BackoffKind.LINEAR
    assert "timeout" in roles["coder"].retryable


def test_global_section_uses_alias():
    """Test the global section loads from its TOML name."""
    config = ConveneConfig.model_validate({"global": {"default_agent": "fake"}})
    assert config.global_.default_agent == "fake"


def test_retry_policy_config_to_policy():
    """Test RetryPolicyConfig builds a RetryPolicy."""
    policy = RetryPolicyConfig(
        max_attempts=4, backoff="linear", base_delay=0.5, max_delay=2, retryable=["timeout"]
    ).to_policy()

    assert policy.max_attempts == 4
    assert policy.backoff is BackoffKind.LINEAR
    assert policy.retryable == ("timeout",)


def test_retry_policy_config_validation():
    """Test RetryPolicyConfig rejects bad values."""
    with pytest.raises(ValidationError):
        RetryPolicyConfig(base_delay=10, max_delay=1)
    with pytest.raises(ValidationError):
        RetryPolicyConfig(max_attempts=0)
    with pytest.raises(ValidationError):
        RetryPolicyConfig(backoff="random")


def test_debate_config_validation():
    """Test DebateConfig enforces protocol limits."""
    with pytest.raises(ValidationError):
        DebateConfig(min_participants=1)
    with pytest.raises(ValidationError):
        DebateConfig(consensus_threshold=1.5)
    with pytest.raises(ValidationError):
        DebateConfig(round_timeout=0)


def test_supervisor_config_validation():
    """Test SupervisorConfig requires positive limits."""
    assert SupervisorConfig().allowed_executables is None
    with pytest.raises(ValidationError):
        SupervisorConfig(max_processes=0)
