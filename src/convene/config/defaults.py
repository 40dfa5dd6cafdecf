"""Default configuration values."""

# Parent environment variables a worker process may inherit
DEFAULT_ENV_ALLOWLIST = [
    "PATH",
    "HOME",
    "USER",
    "LOGNAME",
    "SHELL",
    "LANG",
    "LC_*",
    "TERM",
    "TMPDIR",
    "TZ",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "CLAUDE_CONFIG_DIR",
]

# Always set in the worker environment
DEFAULT_ENV_OVERRIDES = {"NO_COLOR": "1"}

DEFAULT_AGENT = "claude"

DEFAULT_ROLE_MODELS = {
    "planner": "opus",
    "coder": "sonnet",
    "verifier": "sonnet",
}

# Failure kinds worth another attempt for every role
DEFAULT_RETRYABLE_KINDS = ["timeout", "exit_nonzero", "signal", "worker_error"]

DEFAULT_ROLE_RETRY = {
    "planner": {"max_attempts": 3, "backoff": "exponential", "base_delay": 1.0},
    "coder": {"max_attempts": 2, "backoff": "fixed", "base_delay": 2.0},
    "verifier": {"max_attempts": 5, "backoff": "linear", "base_delay": 0.5},
}

# Supervisor limits
DEFAULT_TIMEOUT = 300.0
DEFAULT_KILL_GRACE = 5.0
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_STDERR_BYTES = 64 * 1024
DEFAULT_MAX_PROCESSES = 20
DEFAULT_MAX_PER_GROUP = 5

# Retry limits
DEFAULT_MAX_ACTIVE_RETRIES = 10
DEFAULT_CIRCUIT_WINDOW = 300.0
DEFAULT_CIRCUIT_THRESHOLD = 0.8
DEFAULT_CIRCUIT_MIN_SAMPLES = 5

# Tracker
DEFAULT_HISTORY_SIZE = 1000
DEFAULT_TOP_TOOLS = 5

# Debate
DEFAULT_MIN_PARTICIPANTS = 2
DEFAULT_MAX_ROUNDS = 3
DEFAULT_CONSENSUS_THRESHOLD = 2 / 3
DEFAULT_ROUND_TIMEOUT = 300.0
