"""convene - supervise agent worker processes, retry them, and make them debate."""

__version__ = "0.1.0"
