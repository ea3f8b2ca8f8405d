"""Claude Code CLI backend."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from ticketpilot.agents.base import AgentAdapter
from ticketpilot.agents.exceptions import ToolError

if TYPE_CHECKING:
    from ticketpilot.config import ClaudeConfig


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(_content_text(item) for item in content)
    if isinstance(content, dict):
        return str(content.get("text") or content.get("content") or "")
    return ""


class ClaudeAgent(AgentAdapter):
    """Runs ``claude -p`` with ``stream-json`` output.

    Every output line is a JSON event. A result with ``is_error`` fails the
    run; otherwise the text of the last assistant message is the summary.
    """

    name = "claude"
    documentation_file = "CLAUDE.md"

    def __init__(self, config: ClaudeConfig, logger: logging.Logger | None = None) -> None:
        super().__init__(config.cli_path, config.timeout, logger)
        self.config = config

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.cli_path]
        if self.config.disallowed_tools:
            cmd += ["--disallowedTools", self.config.disallowed_tools]
        if self.config.allowed_tools:
            cmd += ["--allowedTools", self.config.allowed_tools]
        if self.config.dangerously_skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        cmd += ["--output-format", "stream-json", "--verbose", "-p", prompt]
        return cmd

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        if self.config.api_key:
            env["ANTHROPIC_API_KEY"] = self.config.api_key
        return env

    def parse_output(self, output: str) -> str:
        summary: str | None = None
        result_text = ""
        for raw_line in output.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                self.logger.debug("Skipping non-JSON line: %s", line[:200])
                continue
            if not isinstance(event, dict):
                continue

            if event.get("is_error"):
                raise ToolError(f"claude CLI returned an error: {event.get('result', '')}")

            message = event.get("message")
            if event.get("type") == "assistant" and isinstance(message, dict):
                texts = [
                    item.get("text", "")
                    for item in message.get("content") or []
                    if isinstance(item, dict) and item.get("type") == "text"
                ]
                if texts:
                    summary = "\n".join(texts)
                for item in message.get("content") or []:
                    if isinstance(item, dict) and item.get("type") == "tool_use":
                        self.logger.debug("tool_use: %s(%s)", item.get("name"), item.get("id"))
            elif event.get("type") == "user" and isinstance(message, dict):
                for item in message.get("content") or []:
                    if isinstance(item, dict) and item.get("type") == "tool_result":
                        self.logger.debug(
                            "tool_result: %s", _content_text(item.get("content"))[:200]
                        )
            elif event.get("type") == "result":
                result_text = str(event.get("result") or "")

        if summary is None and not result_text:
            raise ToolError("no valid response found in stream-json output")
        return summary if summary is not None else result_text
