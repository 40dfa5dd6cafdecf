"""Claude Code CLI agent adapter."""

import json
from typing import Any

from convene.agents.base import BaseAgent
from convene.agents.protocol import AgentCapabilities, RecordKind, WorkerRecord


def _text_of(blocks: list[Any]) -> str:
    return "".join(
        block["text"]
        for block in blocks
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def decode_stream_json(line: str) -> WorkerRecord | None:
    """Decode one ``--output-format stream-json`` line.

    Tool results arrive either as ``tool_result`` blocks inside ``user``
    messages or as top-level ``tool_result`` records.
    """
    line = line.strip()
    if not line:
        return None
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    record_type = data.get("type")
    message = data.get("message")
    content = message.get("content") if isinstance(message, dict) else None

    if record_type == "assistant":
        blocks = content if isinstance(content, list) else []
        return WorkerRecord(
            kind=RecordKind.ASSISTANT,
            text=_text_of(blocks),
            blocks=blocks,
            raw=data,
        )

    if record_type == "user":
        results = [
            block
            for block in (content if isinstance(content, list) else [])
            if isinstance(block, dict) and block.get("type") == "tool_result"
        ]
        if not results:
            return WorkerRecord(kind=RecordKind.OTHER, raw=data)
        return WorkerRecord(kind=RecordKind.TOOL_RESULT, tool_results=results, raw=data)

    if record_type == "tool_result":
        return WorkerRecord(kind=RecordKind.TOOL_RESULT, tool_results=[data], raw=data)

    if record_type == "result":
        result = data.get("result")
        return WorkerRecord(
            kind=RecordKind.RESULT,
            text=result if isinstance(result, str) else "",
            is_error=bool(data.get("is_error")) or data.get("subtype", "success") != "success",
            raw=data,
        )

    if record_type == "system":
        return WorkerRecord(kind=RecordKind.SYSTEM, raw=data)

    return WorkerRecord(kind=RecordKind.OTHER, raw=data)


class ClaudeAgent(BaseAgent):
    """Adapter for the Claude Code CLI.

    Runs ``claude --print --output-format stream-json --verbose`` with the
    prompt on stdin. Stream JSON requires ``--verbose`` together with
    ``--print``.
    """

    def __init__(self, skip_permissions: bool = True):
        self.skip_permissions = skip_permissions

    @property
    def name(self) -> str:
        return "claude"

    @property
    def display_name(self) -> str:
        return "Claude Code"

    @property
    def cli_name(self) -> str:
        return "claude"

    def get_capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(
            supports_streaming=True,
            supports_tools=True,
            supports_model_selection=True,
            task_strengths=["code", "refactoring", "debugging", "architecture"],
        )

    def build_command(self, model: str | None = None) -> list[str]:
        cmd = [self.executable, "--print", "--output-format", "stream-json", "--verbose"]
        if model:
            cmd.extend(["--model", model])
        if self.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        return cmd

    def decode_line(self, line: str) -> WorkerRecord | None:
        return decode_stream_json(line)
