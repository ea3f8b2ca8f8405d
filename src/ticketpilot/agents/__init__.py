"""AI agent adapters - Claude and Gemini coding CLIs behind one interface."""

from ticketpilot.agents.base import AgentAdapter, add_to_git_exclude
from ticketpilot.agents.claude import ClaudeAgent
from ticketpilot.agents.exceptions import AgentError, AgentTimeoutError, ToolError
from ticketpilot.agents.factory import build_agent
from ticketpilot.agents.gemini import GeminiAgent
from ticketpilot.agents.models import AgentOptions, AgentResult
from ticketpilot.agents.retry import RetryPolicy

__all__ = [
    "AgentAdapter",
    "AgentError",
    "AgentOptions",
    "AgentResult",
    "AgentTimeoutError",
    "ClaudeAgent",
    "GeminiAgent",
    "RetryPolicy",
    "ToolError",
    "add_to_git_exclude",
    "build_agent",
]
