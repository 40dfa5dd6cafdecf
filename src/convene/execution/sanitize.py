"""Strip sensitive detail from worker failures before they leave the supervisor.

Full detail is only ever written to the module logger at DEBUG level; the
text produced here is what callers, events and UIs see.
"""
import getpass
import logging
import re
from pathlib import Path

from convene.execution.models import FailureKind, SanitizedError

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
MAX_STACK_FRAMES = 3

REDACTED = "***"

_CREDENTIAL_PATTERNS: list[tuple[re.Pattern, str]] = [
    (
        re.compile(
            r"-----BEGIN [A-Z ]+ PRIVATE KEY-----.*?-----END [A-Z ]+ PRIVATE KEY-----",
            re.DOTALL,
        ),
        "*** PRIVATE KEY REDACTED ***",
    ),
    (re.compile(r"\beyJ[\w-]*\.eyJ[\w-]*\.[\w-]*"), "*** JWT REDACTED ***"),
    (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer ***"),
    (re.compile(r"\bAKIA[0-9A-Z]{16}\b"), "AKIA***"),
    (re.compile(r"([a-z][a-z0-9+.-]*://[^:/\s@]+):([^@\s]+)@", re.IGNORECASE), r"\1:***@"),
    (
        re.compile(
            r"\b(password|passwd|token|api[_-]?key|secret|auth)([=:\s]+)['\"]?[^'\"\s&]+",
            re.IGNORECASE,
        ),
        r"\1\2***",
    ),
]

# Absolute POSIX paths not part of a URL, a relative path or "~/..."
_ABSOLUTE_PATH = re.compile(r"(?<![\w:/.~-])/(?:[^\s/\"')]+/)*[^\s/\"')]*")
_WINDOWS_PATH = re.compile(r"\b[A-Za-z]:\\[^\s)\"']*")

_STACK_FRAME = re.compile(r"^\s*(File \"|at )")


def redact_credentials(text: str) -> str:
    for pattern, replacement in _CREDENTIAL_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redact_path(match: re.Match) -> str:
    name = match.group(0).rstrip("/").rsplit("/", 1)[-1]
    return f"<path>/{name}" if name else "<path>"


def redact_paths(text: str, working_directory: str | None = None) -> str:
    """Relativize paths under ``working_directory``, shorten home, hide the rest."""
    if working_directory:
        root = str(Path(working_directory)).rstrip("/")
        if root:
            text = text.replace(root + "/", "./")
            text = re.sub(re.escape(root) + r"(?![\w/.-])", ".", text)

    home = str(Path.home()).rstrip("/")
    if home:
        text = text.replace(home + "/", "~/")
        text = re.sub(re.escape(home) + r"(?![\w/.-])", "~", text)

    text = _WINDOWS_PATH.sub("<path>", text)
    return _ABSOLUTE_PATH.sub(_redact_path, text)


def redact_user(text: str) -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        return text
    if len(user) < 3:
        return text
    return re.sub(rf"\b{re.escape(user)}\b", "<user>", text)


def limit_stack_frames(text: str, max_frames: int = MAX_STACK_FRAMES) -> str:
    """Keep at most ``max_frames`` stack frame lines (and the line after each)."""
    kept: list[str] = []
    frames = 0
    dropped = 0
    skip_next = False
    for line in text.splitlines():
        if _STACK_FRAME.match(line):
            frames += 1
            if frames > max_frames:
                dropped += 1
                # Python frames are followed by the source line
                skip_next = line.lstrip().startswith("File ")
                continue
            skip_next = False
        elif skip_next:
            skip_next = False
            continue
        kept.append(line)
    if dropped:
        kept.append(f"... {dropped} more frame(s) omitted")
    return "\n".join(kept)


def sanitize_message(
    text: str,
    working_directory: str | None = None,
    max_length: int = MAX_MESSAGE_LENGTH,
) -> str:
    text = redact_credentials(text)
    text = redact_paths(text, working_directory)
    text = redact_user(text)
    text = limit_stack_frames(text).strip()
    if len(text) > max_length:
        text = text[:max_length].rstrip() + "... [truncated]"
    return text


def sanitize_error(
    kind: FailureKind,
    detail: str,
    working_directory: str | None = None,
) -> SanitizedError:
    """Build a ``SanitizedError``; the raw ``detail`` only goes to DEBUG logs."""
    logger.debug("Worker failure (%s) raw detail: %s", kind.value, detail)
    message = sanitize_message(detail or kind.value, working_directory)
    return SanitizedError(kind=kind, message=message or kind.value)
