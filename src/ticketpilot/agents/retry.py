"""RetryPolicy - bounded re-invocation of an AI agent."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from ticketpilot.agents.exceptions import AgentTimeoutError, ToolError
from ticketpilot.exceptions import AIGenerationEmpty, AIGenerationFailure
from ticketpilot.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketpilot.agents.models import AgentResult
    from ticketpilot.config import AIConfig


class RetryPolicy:
    """Retries an agent call until it changes the working copy.

    An attempt is retried when it produced no change or raised
    ``AgentTimeoutError`` / ``ToolError``. ``AuthenticationError`` and any
    other exception propagate immediately. Attempts stop at ``max_retries``
    or when the next one would start after ``max_total_seconds``.
    """

    def __init__(
        self,
        max_retries: int = 5,
        delay_seconds: float = 2.0,
        max_total_seconds: float = 1800.0,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.delay_seconds = delay_seconds
        self.max_total_seconds = max_total_seconds
        self.logger = logger or get_logger("agents.retry")
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: AIConfig, logger: logging.Logger | None = None) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            delay_seconds=config.retry_delay_seconds,
            max_total_seconds=config.max_total_seconds,
            logger=logger,
        )

    def run(
        self,
        attempt_fn: Callable[[int], AgentResult],
        label: str = "",
        accept: Callable[[AgentResult], bool] | None = None,
    ) -> AgentResult:
        """Call ``attempt_fn(attempt)`` until it produces an acceptable result.

        Args:
            attempt_fn: Performs one invocation; receives the 1-based attempt number.
            label: Context for log lines.
            accept: Decides whether a result ends the loop. Defaults to
                ``result.changed``.

        Returns:
            The first accepted result.

        Raises:
            AIGenerationEmpty: The final attempt completed without changes.
            AIGenerationFailure: The final attempt failed with an agent error.
        """
        started = self._clock()
        last_error: Exception | None = None
        attempts = 0
        for attempt in range(1, self.max_retries + 1):
            attempts = attempt
            try:
                result = attempt_fn(attempt)
            except (AgentTimeoutError, ToolError) as e:
                last_error = e
                self.logger.warning(
                    "AI attempt %d/%d for %s failed: %s", attempt, self.max_retries, label, e
                )
            else:
                if (accept or _changed)(result):
                    if attempt > 1:
                        self.logger.info("AI produced changes for %s on attempt %d", label, attempt)
                    return result
                last_error = None
                self.logger.warning(
                    "AI attempt %d/%d for %s produced no changes", attempt, self.max_retries, label
                )

            if attempt == self.max_retries:
                break
            elapsed = self._clock() - started
            if elapsed + self.delay_seconds >= self.max_total_seconds:
                self.logger.warning(
                    "AI retry budget of %.0fs exhausted for %s after %d attempts",
                    self.max_total_seconds,
                    label,
                    attempt,
                )
                break
            self._sleep(self.delay_seconds)

        if last_error is not None:
            raise AIGenerationFailure(
                f"AI generation failed after {attempts} attempts: {last_error}"
            ) from last_error
        raise AIGenerationEmpty(f"AI produced no changes after {attempts} attempts")


def _changed(result: AgentResult) -> bool:
    return result.changed
