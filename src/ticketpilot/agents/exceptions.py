"""Custom exceptions for AI agent adapters."""

from ticketpilot.exceptions import TicketPilotError


class AgentError(TicketPilotError):
    """Base exception for agent invocation errors."""


class AgentTimeoutError(AgentError):
    """The agent CLI did not finish within its timeout."""


class ToolError(AgentError):
    """The agent CLI is missing, exited non-zero, or reported an error result."""
