"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from convene.config import defaults
from convene.retry.policy import BackoffKind, RetryPolicy


class RetryPolicyConfig(BaseModel):
    """One retry policy."""

    max_attempts: int = Field(default=3, ge=1)
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_base: float = Field(default=2.0, ge=1)
    jitter: bool = True
    # Regexes over error codes and class names, never message text
    retryable: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryPolicyConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff=self.backoff,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_base=self.backoff_base,
            jitter=self.jitter,
            retryable=tuple(self.retryable),
        )


class CircuitBreakerConfig(BaseModel):
    window_seconds: float = Field(default=defaults.DEFAULT_CIRCUIT_WINDOW, gt=0)
    failure_threshold: float = Field(default=defaults.DEFAULT_CIRCUIT_THRESHOLD, gt=0, le=1)
    min_samples: int = Field(default=defaults.DEFAULT_CIRCUIT_MIN_SAMPLES, ge=1)


def _default_role_policies() -> dict[str, RetryPolicyConfig]:
    return {
        role: RetryPolicyConfig(retryable=list(defaults.DEFAULT_RETRYABLE_KINDS), **settings)
        for role, settings in defaults.DEFAULT_ROLE_RETRY.items()
    }


class RetryConfig(BaseModel):
    """Retry engine configuration."""

    max_active_retries: int = Field(default=defaults.DEFAULT_MAX_ACTIVE_RETRIES, ge=1)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    default: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    roles: dict[str, RetryPolicyConfig] = Field(default_factory=_default_role_policies)


class SupervisorConfig(BaseModel):
    """Worker process limits and launch settings."""

    default_timeout: float = Field(default=defaults.DEFAULT_TIMEOUT, gt=0)
    kill_grace: float = Field(default=defaults.DEFAULT_KILL_GRACE, gt=0)
    max_output_bytes: int = Field(default=defaults.DEFAULT_MAX_OUTPUT_BYTES, ge=1)
    max_stderr_bytes: int = Field(default=defaults.DEFAULT_MAX_STDERR_BYTES, ge=1)
    max_processes: int = Field(default=defaults.DEFAULT_MAX_PROCESSES, ge=1)
    max_per_group: int = Field(default=defaults.DEFAULT_MAX_PER_GROUP, ge=1)
    env_allowlist: list[str] = Field(default_factory=lambda: list(defaults.DEFAULT_ENV_ALLOWLIST))
    role_models: dict[str, str] = Field(default_factory=lambda: dict(defaults.DEFAULT_ROLE_MODELS))
    allowed_executables: list[str] | None = None  # None allows every executable
    working_roots: list[str] | None = None
    instructions: str | None = None  # shared text prepended to every role prompt


class TrackerConfig(BaseModel):
    history_size: int = Field(default=defaults.DEFAULT_HISTORY_SIZE, ge=1)
    top_tools: int = Field(default=defaults.DEFAULT_TOP_TOOLS, ge=1)


class DebateConfig(BaseModel):
    """Debate protocol configuration."""

    min_participants: int = Field(default=defaults.DEFAULT_MIN_PARTICIPANTS, ge=2)
    max_rounds: int = Field(default=defaults.DEFAULT_MAX_ROUNDS, ge=1)
    consensus_threshold: float = Field(default=defaults.DEFAULT_CONSENSUS_THRESHOLD, gt=0, le=1)
    round_timeout: float = Field(default=defaults.DEFAULT_ROUND_TIMEOUT, gt=0)
    allow_proposal_modifications: bool = True
    auto_advance: bool = False


class GlobalConfig(BaseModel):
    """Global convene configuration."""

    default_agent: str = defaults.DEFAULT_AGENT
    color: bool = True
    verbose: bool = False


class ConveneConfig(BaseModel):
    """Root configuration model for convene."""

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    retry: RetryConfig = Field(default_factory=RetryConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    debate: DebateConfig = Field(default_factory=DebateConfig)

    class Config:
        populate_by_name = True

    @classmethod
    def default(cls) -> "ConveneConfig":
        """Create default configuration."""
        return cls()


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    return Path.home() / ".config" / "convene"


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.toml"
