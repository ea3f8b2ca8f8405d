"""Data models for AI agent adapters."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class AgentResult:
    """Outcome of one agent invocation.

    Attributes:
        changed: Whether the working copy differs afterwards.
        summary: The agent's final message, used as PR and reply text.
        output: Raw CLI output, for logging.
    """

    changed: bool
    summary: str
    output: str = ""


@dataclass
class AgentOptions:
    """Per-invocation overrides.

    Attributes:
        timeout: Seconds before the CLI is killed; None uses the backend default.
        label: Context for log lines, usually the ticket key.
        env: Extra environment variables for the CLI process.
    """

    timeout: int | None = None
    label: str = ""
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class StreamingResult:
    """Result from streaming subprocess execution."""

    returncode: int
    output: str
