"""Backend selection for the configured AI provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ticketpilot.agents.claude import ClaudeAgent
from ticketpilot.agents.gemini import GeminiAgent
from ticketpilot.exceptions import ConfigError

if TYPE_CHECKING:
    from ticketpilot.agents.base import AgentAdapter
    from ticketpilot.config import Config


def build_agent(config: Config, logger: logging.Logger | None = None) -> AgentAdapter:
    """Create the single agent backend named by ``ai_provider``.

    Raises:
        ConfigError: For an unsupported provider.
    """
    if config.ai_provider == "claude":
        return ClaudeAgent(config.claude, logger)
    if config.ai_provider == "gemini":
        return GeminiAgent(config.gemini, logger)
    raise ConfigError(f"Unsupported AI provider: {config.ai_provider}")
